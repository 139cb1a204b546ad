from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

_DEFAULT_LOG_DIR = "artifacts/logs"
_MAIN_LOG_NAME = "pubsubemu.log"
# Numeric level below DEBUG
_TRACE = 5

_write_lock = threading.Lock()
_CONFIGURED = False


def log_dir() -> Path:
    """Directory for JSON log files, PUBSUBEMU_LOG_DIR or artifacts/logs."""
    return Path(os.getenv("PUBSUBEMU_LOG_DIR") or _DEFAULT_LOG_DIR)


def _level_from_env() -> int:
    raw = os.getenv("PUBSUBEMU_LOG_LEVEL", "INFO").strip().upper()
    if raw == "TRACE":
        return _TRACE
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def _test_file_name(test_name: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in test_name)
    return f"test_{cleaned}.log"


def per_test_log_path(test_name: str) -> Path:
    """Per-test JSON log file under log_dir()."""
    return log_dir() / _test_file_name(test_name)


def _errors_to_text(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    # Supervisor records pass exceptions as values: keep the text, add the class
    for key, value in list(event_dict.items()):
        if isinstance(value, BaseException):
            event_dict[key] = str(value) or type(value).__name__
            event_dict.setdefault(f"{key}_type", type(value).__name__)
    return event_dict


def _finalize(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("message", event_dict.get("event"))
    return {k: v for k, v in event_dict.items() if v is not None}


def _write_files(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """
    Append the record to <log_dir>/pubsubemu.log and, inside a test, to
    <log_dir>/test_<name>.log.
    """
    directory = log_dir()
    targets = [directory / _MAIN_LOG_NAME]
    test_name = event_dict.get("test")
    if isinstance(test_name, str) and test_name:
        targets.append(per_test_log_path(test_name))

    line = json.dumps(event_dict, ensure_ascii=False, default=str) + "\n"
    try:
        with _write_lock:
            directory.mkdir(parents=True, exist_ok=True)
            for target in targets:
                with target.open("a", encoding="utf-8") as fh:
                    fh.write(line)
    except OSError:
        # Stdout still gets the record
        pass
    return event_dict


def bind_context(*, settings: Any | None = None, test_name: str | None = None) -> None:
    """
    Bind emulator project/port and the current test name into the logging context.

    Accepts either the root Settings or an EmulatorSettings section. Only the
    values that are known get bound, so a test name does not erase the
    session's project and port.
    """
    values: dict[str, Any] = {}
    if settings is not None:
        emulator = getattr(settings, "emulator", settings)
        values["project"] = getattr(emulator, "project_id", None)
        values["port"] = getattr(emulator, "port", None)
    if test_name:
        values["test"] = test_name
    bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def setup_logging() -> None:
    """
    Configure structlog once for the whole process.

    Records are rendered as JSON lines on stdout and appended to the files
    under log_dir(). Level comes from PUBSUBEMU_LOG_LEVEL.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = _level_from_env()
    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.CallsiteParameterAdder(
                [structlog.processors.CallsiteParameter.MODULE]
            ),
            structlog.processors.format_exc_info,
            _errors_to_text,
            _finalize,
            _write_files,
            structlog.processors.JSONRenderer(default=str),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger().setLevel(level)
    _CONFIGURED = True


def get_logger(name: str | None = None) -> Any:
    """structlog logger; configures logging on first use."""
    if not _CONFIGURED:
        setup_logging()
    return structlog.get_logger(name or __name__)


__all__ = [
    "bind_context",
    "clear_contextvars",
    "get_logger",
    "log_dir",
    "setup_logging",
    "per_test_log_path",
]
