from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

from ..utils.logging import get_logger
from .errors import EarlyExit, EmulatorError, UnexpectedCrash

ExitCallback = Callable[[int | None, float], None]


def classify_exit(
    returncode: int | None, elapsed: float, *, running: bool, early_exit_window: float = 3.0
) -> EmulatorError:
    """
    Map a process exit to an error.

    After the emulator was reported running the exit is an UnexpectedCrash.
    Before that it is an EarlyExit; exits inside `early_exit_window` are the
    "exited immediately" case.
    """
    if running:
        return UnexpectedCrash(returncode)
    return EarlyExit(returncode, elapsed, immediate=elapsed < early_exit_window)


class ProcessWatcher:
    """Waits for the emulator process to exit and reports (returncode, seconds since launch)."""

    def __init__(
        self,
        proc: Any,
        on_exit: ExitCallback,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._proc = proc
        self._on_exit = on_exit
        self._clock = clock
        self.started_at = clock()
        self._thread: threading.Thread | None = None
        self._log = get_logger(__name__)

    def start(self) -> threading.Thread:
        t = threading.Thread(target=self.run, name="pubsub-watcher", daemon=True)
        self._thread = t
        t.start()
        return t

    def run(self) -> None:
        returncode: int | None
        try:
            returncode = self._proc.wait()
        except Exception as e:
            self._log.warning("Waiting for emulator process failed", error=str(e))
            returncode = None
        elapsed = self._clock() - self.started_at
        self._log.info(
            "Emulator process exited",
            action="emulator_exited",
            pid=getattr(self._proc, "pid", None),
            returncode=returncode,
            elapsed=round(elapsed, 3),
        )
        self._on_exit(returncode, elapsed)

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is not None:
            self._thread.join(timeout)
        return self._thread is None or not self._thread.is_alive()
