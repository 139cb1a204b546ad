from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import IO

from ..utils.logging import get_logger
from .coordinator import Event, SignalChannel
from .errors import OutputStreamError, PortConflict

# The emulator logs through java.util.logging to stderr
READY_MARKER = "Server started"
BIND_CONFLICT_MARKERS = ("Address already in use", "BindException", "already in use: bind")

OutputSink = Callable[[str, str], None]


def is_ready_line(line: str) -> bool:
    return READY_MARKER in line


def is_bind_conflict(line: str) -> bool:
    return any(marker in line for marker in BIND_CONFLICT_MARKERS)


class EmulatorOutputLog:
    """
    Default output sink: a debug record per emulator line plus a raw log file.

    Lines keep their order within one stream; stdout and stderr are not
    interleaved in any guaranteed order.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._log = get_logger(__name__)

    def __call__(self, stream: str, line: str) -> None:
        self._log.debug("emulator_output", stream=stream, line=line)
        if self.path is None:
            return
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(f"[{stream}] {line}\n")
        except OSError:
            # Never break monitoring because of log write issues
            pass

    def tail(self, lines: int = 200) -> str:
        """Last `lines` lines of the raw log, or "" when there is none."""
        if self.path is None or not self.path.exists():
            return ""
        try:
            with self.path.open(encoding="utf-8", errors="ignore") as f:
                return "".join(f.readlines()[-lines:])
        except OSError:
            return ""


class OutputMonitor:
    """
    Reads one emulator output stream line by line.

    Every line goes to the sink. On the readiness stream the first line with the
    readiness marker offers READY; on any stream a bind-conflict line offers
    ERROR(PortConflict) before anything else happens and stops reading; the
    supervisor looks up who owns the port. A read failure that was not caused
    by `close()` offers ERROR(OutputStreamError).
    """

    def __init__(
        self,
        stream: IO[str],
        name: str,
        channel: SignalChannel,
        sink: OutputSink,
        *,
        port: int,
        detect_ready: bool = False,
    ) -> None:
        self.stream = stream
        self.name = name
        self.port = port
        self.detect_ready = detect_ready
        self._channel = channel
        self._sink = sink
        self._ready_seen = False
        self._closing = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = get_logger(__name__)

    def start(self) -> threading.Thread:
        t = threading.Thread(target=self.run, name=f"pubsub-{self.name}", daemon=True)
        self._thread = t
        t.start()
        return t

    def run(self) -> None:
        try:
            for raw in self.stream:
                line = raw.rstrip("\r\n")

                if is_bind_conflict(line):
                    # The process exits right after this line; offer before the watcher does
                    self._channel.offer(Event.failure(PortConflict(self.port), self.name))
                    self._forward(line)
                    self._log.error(
                        "Emulator port is already in use",
                        action="emulator_port_conflict",
                        stream=self.name,
                        port=self.port,
                    )
                    return

                if self.detect_ready and not self._ready_seen and is_ready_line(line):
                    self._ready_seen = True
                    self._channel.offer(Event.ready(self.name))
                self._forward(line)
        except (OSError, ValueError) as e:
            if self._closing.is_set():
                return
            self._log.warning("Failed to read emulator output", stream=self.name, error=str(e))
            self._channel.offer(Event.failure(OutputStreamError(self.name, e), self.name))
        finally:
            self._log.debug("Emulator output reader finished", stream=self.name)

    def _forward(self, line: str) -> None:
        try:
            self._sink(self.name, line)
        except Exception as e:
            self._log.warning("Output sink failed", stream=self.name, error=str(e))

    @property
    def finished(self) -> bool:
        return self._thread is None or not self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the reader thread; True when it has finished."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.finished

    def close(self) -> None:
        """Close the read end of the stream; later read errors are not reported."""
        self._closing.set()
        try:
            self.stream.close()
        except (OSError, ValueError):
            pass
