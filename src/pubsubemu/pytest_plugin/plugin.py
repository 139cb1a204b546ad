"""pytest entry point (``pytest11``) bundling the emulator options, hooks and fixtures."""

from .fixtures import (
    _bind_test_logging_context,
    _setup_structlog,
    emulator_settings,
    pubsub_emulator,
    pubsub_emulator_host,
)
from .hooks import pytest_runtest_makereport
from .options import pytest_addoption

__all__ = [
    "_bind_test_logging_context",
    "_setup_structlog",
    "emulator_settings",
    "pubsub_emulator",
    "pubsub_emulator_host",
    "pytest_addoption",
    "pytest_runtest_makereport",
]
