from __future__ import annotations

from typing import Any

import allure

from ..emulator.monitor import EmulatorOutputLog
from ..utils.logging import per_test_log_path

# Lines of emulator output attached to a failed test
OUTPUT_TAIL_LINES = 200


def _attach(body: str, name: str) -> None:
    try:
        allure.attach(body, name=name, attachment_type=allure.attachment_type.TEXT)
    except Exception:
        # Reporting must not change the test outcome
        pass


def _failure_attachments(item: Any) -> list[tuple[str, str]]:
    found: list[tuple[str, str]] = []

    emulator = getattr(item, "funcargs", {}).get("pubsub_emulator")
    if emulator is not None:
        output = EmulatorOutputLog(emulator.settings.output_log).tail(OUTPUT_TAIL_LINES)
        if output:
            found.append(("Pub/Sub emulator output", output))

    name = getattr(item, "name", None)
    if name:
        path = per_test_log_path(name)
        if path.is_file():
            found.append(("Structured log", path.read_text(encoding="utf-8", errors="replace")))
    return found


def pytest_runtest_makereport(item: Any, call: Any) -> None:
    """
    Attach diagnostics to Allure when the call phase of a test fails.

    Tests that used the emulator fixture get the tail of its output log; any
    test with records in its per-test JSON log gets that file too.
    """
    if getattr(call, "when", None) != "call" or getattr(call, "excinfo", None) is None:
        return
    try:
        attachments = _failure_attachments(item)
    except Exception:
        return
    for name, body in attachments:
        _attach(body, name)
