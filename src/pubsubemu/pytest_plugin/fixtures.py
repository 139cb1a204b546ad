from __future__ import annotations

from collections.abc import Generator

import allure
import pytest

from ..config.loader import load_emulator_settings
from ..config.models import EmulatorSettings
from ..emulator.errors import EmulatorError
from ..emulator.supervisor import PubSubEmulator
from ..utils.logging import bind_context, clear_contextvars, get_logger, setup_logging

_logger = get_logger(__name__)


@pytest.fixture(scope="session")
def emulator_settings(pytestconfig: pytest.Config) -> EmulatorSettings:
    """
    Load emulator configuration once per session.

    Command-line options override the file: --emulator-config, --emulator-port,
    --emulator-aggressive-cleanup and --emulator-export-env.
    """
    with allure.step("Load emulator configuration"):
        return load_emulator_settings(
            pytestconfig.getoption("--emulator-config"),
            port=pytestconfig.getoption("--emulator-port"),
            aggressive_cleanup=pytestconfig.getoption("--emulator-aggressive-cleanup"),
            export_env=pytestconfig.getoption("--emulator-export-env"),
        )


@pytest.fixture(scope="session")
def pubsub_emulator(emulator_settings: EmulatorSettings) -> Generator[PubSubEmulator, None, None]:
    """
    Manage lifecycle of a local Pub/Sub emulator at pytest session level.

    - Start the emulator and wait until it reports readiness.
    - Fail dependent tests with the startup error if it does not come up.
    - On session end, stop the emulator and everything it spawned.
    """
    emulator = PubSubEmulator(emulator_settings)
    with allure.step(f"Start Pub/Sub emulator on port {emulator_settings.port}"):
        try:
            emulator.start()
        except EmulatorError as e:
            _logger.error("Pub/Sub emulator fixture failed to start", error=str(e))
            pytest.fail(f"Failed to start Pub/Sub emulator: {e}", pytrace=False)
    try:
        yield emulator
    finally:
        with allure.step("Stop Pub/Sub emulator"):
            emulator.stop()


@pytest.fixture(scope="session")
def pubsub_emulator_host(pubsub_emulator: PubSubEmulator) -> str:
    """Endpoint ("localhost:<port>") for building Pub/Sub clients against the emulator."""
    return pubsub_emulator.host


# ----- Logging: initialization and context -----
@pytest.fixture(scope="session", autouse=True)
def _setup_structlog() -> None:
    """One-time structured logging setup for the entire test session."""
    setup_logging()


@pytest.fixture(autouse=True)
def _bind_test_logging_context(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """
    Bind the test name to the logging context.

    Updates contextvars at the start of each test and clears them afterwards.
    """
    try:
        bind_context(test_name=request.node.name)
    except Exception:
        pass
    try:
        yield
    finally:
        try:
            clear_contextvars()
        except Exception:
            pass
