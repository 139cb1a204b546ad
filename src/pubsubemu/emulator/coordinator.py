"""
Startup resolution for the emulator process.

Output readers and the process watcher offer READY/ERROR events on a
`SignalChannel`; `ReadinessCoordinator.resolve()` runs a single event loop that
adds the timing events (grace window elapsed, overall budget elapsed) and
caller cancellation, and drives the wait through `TRANSITIONS`:

    GRACE --READY--> RUNNING
    GRACE --ERROR | BUDGET_ELAPSED | CANCELLED--> FAILED
    GRACE --GRACE_ELAPSED--> REMAINING
    REMAINING --READY--> RUNNING
    REMAINING --ERROR | BUDGET_ELAPSED | CANCELLED--> FAILED

The short grace window reports the common failure (port already bound,
usually within milliseconds) quickly without shrinking the overall budget
needed by slow machines.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..utils.logging import get_logger
from .errors import EmulatorError, StartupCancelled, StartupTimeout

_log = get_logger(__name__)


class EventKind(str, Enum):
    READY = "ready"
    ERROR = "error"
    GRACE_ELAPSED = "grace_elapsed"
    BUDGET_ELAPSED = "budget_elapsed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Event:
    kind: EventKind
    error: EmulatorError | None = None
    source: str | None = None  # "stderr", "stdout", "watcher"

    @classmethod
    def ready(cls, source: str) -> Event:
        return cls(EventKind.READY, source=source)

    @classmethod
    def failure(cls, error: EmulatorError, source: str) -> Event:
        return cls(EventKind.ERROR, error=error, source=source)


class SignalChannel:
    """
    Delivery of READY and ERROR events from the background threads.

    Each kind has a single slot: only the first offer of a kind is delivered,
    later ones are dropped. Offers never block.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[Event] = queue.Queue()
        self._lock = threading.Lock()
        self._delivered: set[EventKind] = set()

    def offer(self, event: Event) -> bool:
        with self._lock:
            if event.kind in self._delivered:
                return False
            self._delivered.add(event.kind)
            self._queue.put_nowait(event)
            return True

    def get(self, timeout: float) -> Event | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def poll(self) -> Event | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None


class WaitState(str, Enum):
    GRACE = "grace"
    REMAINING = "remaining"
    RUNNING = "running"
    FAILED = "failed"


TERMINAL_STATES = frozenset({WaitState.RUNNING, WaitState.FAILED})

TRANSITIONS: dict[tuple[WaitState, EventKind], WaitState] = {
    (WaitState.GRACE, EventKind.READY): WaitState.RUNNING,
    (WaitState.GRACE, EventKind.ERROR): WaitState.FAILED,
    (WaitState.GRACE, EventKind.GRACE_ELAPSED): WaitState.REMAINING,
    (WaitState.GRACE, EventKind.BUDGET_ELAPSED): WaitState.FAILED,
    (WaitState.GRACE, EventKind.CANCELLED): WaitState.FAILED,
    (WaitState.REMAINING, EventKind.READY): WaitState.RUNNING,
    (WaitState.REMAINING, EventKind.ERROR): WaitState.FAILED,
    (WaitState.REMAINING, EventKind.BUDGET_ELAPSED): WaitState.FAILED,
    (WaitState.REMAINING, EventKind.CANCELLED): WaitState.FAILED,
}


@dataclass(frozen=True, slots=True)
class Resolution:
    state: WaitState
    error: EmulatorError | None = None
    elapsed: float = 0.0
    event: EventKind | None = None  # Event that caused the terminal transition

    @property
    def ok(self) -> bool:
        return self.state is WaitState.RUNNING


class ReadinessCoordinator:
    """Resolves startup into RUNNING or FAILED within the grace window and overall budget."""

    POLL_INTERVAL_SEC = 0.05  # Granularity of cancellation checks

    def __init__(
        self,
        grace_period: float = 3.0,
        start_timeout: float = 30.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.grace_period = grace_period
        self.start_timeout = start_timeout
        self._clock = clock

    def resolve(
        self, channel: SignalChannel, cancel: threading.Event | None = None
    ) -> Resolution:
        started = self._clock()
        grace_deadline = started + self.grace_period
        budget_deadline = started + self.start_timeout

        state = WaitState.GRACE
        while True:
            event = self._next_event(state, channel, cancel, grace_deadline, budget_deadline)
            next_state = TRANSITIONS.get((state, event.kind))
            if next_state is None:
                _log.debug("Ignoring startup event", state=state.value, kind=event.kind.value)
                continue

            _log.debug(
                "Startup transition",
                action="emulator_wait",
                source=event.source,
                kind=event.kind.value,
                from_state=state.value,
                to_state=next_state.value,
            )
            state = next_state
            if state in TERMINAL_STATES:
                return Resolution(
                    state=state,
                    error=self._error_for(event) if state is WaitState.FAILED else None,
                    elapsed=self._clock() - started,
                    event=event.kind,
                )

    def _next_event(
        self,
        state: WaitState,
        channel: SignalChannel,
        cancel: threading.Event | None,
        grace_deadline: float,
        budget_deadline: float,
    ) -> Event:
        while True:
            if cancel is not None and cancel.is_set():
                return Event(EventKind.CANCELLED)

            now = self._clock()
            if now >= budget_deadline:
                return Event(EventKind.BUDGET_ELAPSED)

            if state is WaitState.GRACE and now >= grace_deadline:
                # A signal that raced with the window's expiry still counts as phase one
                return channel.poll() or Event(EventKind.GRACE_ELAPSED)

            deadline = grace_deadline if state is WaitState.GRACE else budget_deadline
            wait = min(deadline, budget_deadline) - now
            event = channel.get(timeout=min(wait, self.POLL_INTERVAL_SEC))
            if event is not None:
                return event

    def _error_for(self, event: Event) -> EmulatorError:
        if event.kind is EventKind.BUDGET_ELAPSED:
            return StartupTimeout(self.start_timeout)
        if event.kind is EventKind.CANCELLED:
            return StartupCancelled("emulator startup cancelled by caller")
        if event.error is not None:
            return event.error
        return EmulatorError(f"emulator startup failed ({event.kind.value})")
