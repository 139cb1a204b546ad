from .base import EmulatorManager
from .coordinator import ReadinessCoordinator, Resolution, SignalChannel, WaitState
from .errors import (
    ConfigurationError,
    EarlyExit,
    EmulatorError,
    EmulatorStateError,
    OutputStreamError,
    PortConflict,
    StartupCancelled,
    StartupTimeout,
    UnexpectedCrash,
)
from .launcher import ProcessLauncher
from .monitor import EmulatorOutputLog, OutputMonitor
from .registry import EndpointRegistry, registry
from .shutdown import ShutdownStrategy
from .supervisor import EmulatorState, PubSubEmulator
from .watcher import ProcessWatcher

__all__ = [
    "ConfigurationError",
    "EarlyExit",
    "EmulatorError",
    "EmulatorManager",
    "EmulatorOutputLog",
    "EmulatorState",
    "EmulatorStateError",
    "EndpointRegistry",
    "OutputMonitor",
    "OutputStreamError",
    "PortConflict",
    "ProcessLauncher",
    "ProcessWatcher",
    "PubSubEmulator",
    "ReadinessCoordinator",
    "Resolution",
    "ShutdownStrategy",
    "SignalChannel",
    "StartupCancelled",
    "StartupTimeout",
    "UnexpectedCrash",
    "WaitState",
    "registry",
]
