from __future__ import annotations

import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    """Command-line overrides for the session emulator fixture."""
    group = parser.getgroup("pubsubemu", "Pub/Sub emulator")
    group.addoption(
        "--emulator-config",
        metavar="PATH",
        default=None,
        help="YAML file with an 'emulator:' section (default: PUBSUBEMU_CONFIG)",
    )
    group.addoption(
        "--emulator-port",
        metavar="PORT",
        type=int,
        default=None,
        help="Port the emulator binds to",
    )
    # None keeps the configured value
    group.addoption(
        "--emulator-aggressive-cleanup",
        action="store_true",
        default=None,
        help="Also kill leftover java/emulator/gcloud processes on teardown",
    )
    group.addoption(
        "--emulator-export-env",
        action="store_true",
        default=None,
        help="Export PUBSUB_EMULATOR_HOST while the emulator runs",
    )
