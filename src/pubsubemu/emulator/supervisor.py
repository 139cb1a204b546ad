from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..config.models import EmulatorSettings
from ..utils.logging import get_logger
from ..utils.net import owner_info
from .base import EmulatorManager
from .coordinator import Event, ReadinessCoordinator, SignalChannel
from .errors import (
    ConfigurationError,
    EmulatorError,
    EmulatorStateError,
    PortConflict,
    StartupCancelled,
)
from .launcher import ProcessLauncher
from .monitor import EmulatorOutputLog, OutputMonitor, OutputSink
from .registry import EndpointRegistry
from .registry import registry as default_registry
from .shutdown import ShutdownStrategy
from .watcher import ProcessWatcher, classify_exit


class EmulatorState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"  # Exited after RUNNING; stop() still has to clean up
    STOPPED = "stopped"
    FAILED = "failed"  # Terminal


# States in which a launched process may still need tearing down
_LAUNCHED = frozenset({EmulatorState.STARTING, EmulatorState.RUNNING, EmulatorState.CRASHED})

# How long an exit during startup waits for the output readers to reach EOF
OUTPUT_DRAIN_SEC = 0.5


class PubSubEmulator(EmulatorManager):
    """
    Supervises a local `gcloud beta emulators pubsub start` process.

    - start() launches the process, reads both output streams and waits for the
      readiness marker, a fatal error, the startup budget or cancellation.
      Any failure tears the process down before the error is raised.
    - stop() runs the shutdown strategy once; further calls are no-ops.
    - A crash after startup is reported on `faults`; stop() must still be called.

    One lock serializes state transitions and teardown. It is not held while
    waiting for readiness, so stop() and is_running() stay responsive during
    startup. `_shutdown_locked()` expects the caller to hold it.
    """

    def __init__(
        self,
        settings: EmulatorSettings | None = None,
        *,
        launcher: ProcessLauncher | None = None,
        coordinator: ReadinessCoordinator | None = None,
        shutdown: ShutdownStrategy | None = None,
        registry: EndpointRegistry | None = None,
        sink: OutputSink | None = None,
        owner_lookup: Callable[[int], str] = owner_info,
    ) -> None:
        self.settings = settings or EmulatorSettings()
        s = self.settings
        self._registry = registry or default_registry
        self._launcher = launcher or ProcessLauncher(s)
        self._coordinator = coordinator or ReadinessCoordinator(s.grace_period, s.start_timeout)
        self._shutdown = shutdown or ShutdownStrategy(
            s.port,
            host_os=self._launcher.host_os,
            aggressive=s.aggressive_cleanup,
            registry=self._registry,
        )
        self._sink: OutputSink = sink or EmulatorOutputLog(s.output_log)
        self._owner_lookup = owner_lookup

        self._lock = threading.Lock()
        self._state = EmulatorState.NOT_STARTED
        self._host: str | None = None
        self._proc: Any | None = None
        self._channel: SignalChannel | None = None
        self._monitors: list[OutputMonitor] = []
        self._watcher: ProcessWatcher | None = None
        self._faults: queue.Queue[EmulatorError] = queue.Queue(maxsize=1)
        self._log = get_logger(__name__).bind(project=s.project_id, port=s.port)

    # ------------------------
    # Public API
    # ------------------------
    @property
    def state(self) -> EmulatorState:
        return self._state

    @property
    def host(self) -> str:
        """Resolved "host:port" endpoint; empty until the first start() prepares it."""
        return self._host or ""

    @property
    def faults(self) -> queue.Queue[EmulatorError]:
        """Single-slot queue receiving UnexpectedCrash after a successful start."""
        return self._faults

    def wait_for_fault(self, timeout: float | None = None) -> EmulatorError | None:
        try:
            return self._faults.get(timeout=timeout)
        except queue.Empty:
            return None

    def is_running(self) -> bool:
        with self._lock:
            return self._state is EmulatorState.RUNNING

    def start(self, cancel: threading.Event | None = None) -> str:
        """
        Launch the emulator and wait until it reports readiness.

        Args:
            cancel: Set it from another thread to abort the wait.

        Returns:
            str: The endpoint ("localhost:<port>"), also published to the registry.

        Raises:
            EmulatorStateError: already starting/running, or a previous start failed.
            ConfigurationError: data dir, executable or pipes could not be set up.
            PortConflict | EarlyExit | StartupTimeout | StartupCancelled | OutputStreamError:
                startup failed; the process has already been torn down.
        """
        with self._lock:
            channel, proc = self._launch_locked()

        try:
            resolution = self._coordinator.resolve(channel, cancel)
        except BaseException as e:
            with self._lock:
                if self._proc is proc:
                    self._log.error(
                        "Waiting for the Pub/Sub emulator failed",
                        action="emulator_start_failed",
                        error=e,
                    )
                    self._shutdown_locked(EmulatorState.FAILED)
            raise

        error = resolution.error
        if isinstance(error, PortConflict) and error.owner is None:
            error = PortConflict(error.port, self._owner_lookup(error.port))

        with self._lock:
            if resolution.ok and self._state is EmulatorState.STARTING and self._proc is proc:
                self._state = EmulatorState.RUNNING
                endpoint = self.host
                s = self.settings
                self._registry.publish(endpoint, export_as=s.env_var if s.export_env else None)
                self._log.info(
                    "Pub/Sub emulator is ready",
                    action="emulator_ready",
                    endpoint=endpoint,
                    elapsed=round(resolution.elapsed, 3),
                )
                return endpoint

            if self._state is not EmulatorState.STARTING or error is None:
                error = StartupCancelled("emulator was stopped while starting")
            self._log.error(
                "Pub/Sub emulator failed to start",
                action="emulator_start_failed",
                error=str(error),
                error_type=type(error).__name__,
                elapsed=round(resolution.elapsed, 3),
            )
            # Already STOPPED when stop() won the race
            self._shutdown_locked(EmulatorState.FAILED)
        raise error

    def stop(self) -> None:
        """Tear the emulator down. Safe to call any number of times, from any thread."""
        with self._lock:
            if self._state is EmulatorState.STARTING and self._channel is not None:
                # Wakes an in-flight start(); its failure path then finds nothing left to do
                self._channel.offer(
                    Event.failure(StartupCancelled("emulator was stopped while starting"), "stop")
                )
            self._shutdown_locked(EmulatorState.STOPPED)

    # ------------------------
    # Helper methods
    # ------------------------
    def _launch_locked(self) -> tuple[SignalChannel, Any]:
        if self._state in _LAUNCHED:
            raise EmulatorStateError(f"emulator already running (state={self._state.value})")
        if self._state is EmulatorState.FAILED:
            raise EmulatorStateError(
                "emulator failed to start earlier; create a new instance to retry"
            )

        self._log.info(
            "Starting Pub/Sub emulator",
            action="emulator_start",
            data_dir=str(self.settings.data_dir),
        )
        try:
            self._launcher.prepare_data_dir()
            if self._host is None:
                self._host = self._launcher.host_port
            proc = self._launcher.launch()
        except ConfigurationError as e:
            self._state = EmulatorState.FAILED
            self._log.error("Emulator launch failed", action="emulator_start_failed", error=str(e))
            raise

        self._proc = proc
        self._state = EmulatorState.STARTING
        # A fault from an earlier run does not belong to this one
        while True:
            try:
                self._faults.get_nowait()
            except queue.Empty:
                break
        channel = SignalChannel()
        self._channel = channel
        port = self.settings.port
        self._monitors = [
            OutputMonitor(proc.stderr, "stderr", channel, self._sink, port=port, detect_ready=True),
            OutputMonitor(proc.stdout, "stdout", channel, self._sink, port=port),
        ]
        for monitor in self._monitors:
            monitor.start()
        self._watcher = ProcessWatcher(
            proc, lambda rc, elapsed: self._on_process_exit(proc, channel, rc, elapsed)
        )
        self._watcher.start()
        return channel, proc

    def _on_process_exit(
        self, proc: Any, channel: SignalChannel, returncode: int | None, elapsed: float
    ) -> None:
        with self._lock:
            if proc is not self._proc:
                return
            if self._state is EmulatorState.RUNNING:
                self._report_crash_locked(returncode, elapsed)
                return
            if self._state is not EmulatorState.STARTING:
                return
            monitors = list(self._monitors)

        # Output written just before the exit (a bind conflict) outranks the exit itself
        deadline = time.monotonic() + OUTPUT_DRAIN_SEC
        for monitor in monitors:
            monitor.join(max(0.0, deadline - time.monotonic()))

        with self._lock:
            if proc is not self._proc:
                return
            if self._state is EmulatorState.RUNNING:
                # Readiness won while the readers drained
                self._report_crash_locked(returncode, elapsed)
            elif self._state is EmulatorState.STARTING:
                early = classify_exit(
                    returncode,
                    elapsed,
                    running=False,
                    early_exit_window=self.settings.early_exit_window,
                )
                channel.offer(Event.failure(early, "watcher"))

    def _report_crash_locked(self, returncode: int | None, elapsed: float) -> None:
        self._state = EmulatorState.CRASHED
        crash = classify_exit(returncode, elapsed, running=True)
        self._log.error("Pub/Sub emulator crashed", action="emulator_crashed", error=str(crash))
        try:
            self._faults.put_nowait(crash)
        except queue.Full:
            pass

    def _shutdown_locked(self, final_state: EmulatorState) -> bool:
        """Run the shutdown strategy once per launch. The caller holds `self._lock`."""
        if self._state not in _LAUNCHED:
            return False

        self._log.info("Stopping Pub/Sub emulator", action="emulator_stop", state=self._state.value)
        self._shutdown.run(self._proc, self._host)
        self._release_streams()
        self._state = final_state
        self._log.info("Pub/Sub emulator stopped", action="emulator_stopped")
        return True

    def _release_streams(self) -> None:
        """Close output read ends once their readers have drained after the kill."""
        # One deadline for all readers so teardown under the lock stays bounded
        deadline = time.monotonic() + self.settings.stop_join_timeout
        for monitor in self._monitors:
            if monitor.join(max(0.0, deadline - time.monotonic())):
                monitor.close()
            else:
                # Closing under a blocked read would block here as well
                self._log.warning(
                    "Emulator output reader still attached after teardown", stream=monitor.name
                )
        self._monitors = []
