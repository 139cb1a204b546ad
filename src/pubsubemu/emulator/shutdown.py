from __future__ import annotations

import os
import signal
from collections.abc import Callable, Iterable
from typing import Any, cast

from ..platform import HostOS
from ..utils.cli import Completed, run_cmd
from ..utils.logging import get_logger
from ..utils.platform import detect_host_os
from .registry import EndpointRegistry
from .registry import registry as default_registry


def parse_pids(lines: Iterable[str]) -> list[int]:
    """Unique positive integer PIDs from `lsof -t` style output, in order of appearance."""
    pids: list[int] = []
    for line in lines:
        token = line.strip()
        if token.isdigit() and int(token) > 0 and int(token) not in pids:
            pids.append(int(token))
    return pids


def parse_netstat_pids(lines: Iterable[str], port: int) -> list[int]:
    """
    PIDs owning a local address on `port` in `netstat -aon` output.

    Rows look like: "TCP  127.0.0.1:8085  0.0.0.0:0  LISTENING  1234".
    """
    suffix = f":{port}"
    owners: list[str] = []
    for line in lines:
        parts = line.split()
        if len(parts) >= 4 and parts[1].endswith(suffix):
            owners.append(parts[-1])
    return parse_pids(owners)


class ShutdownStrategy:
    """
    Ordered, best-effort teardown of the emulator and everything it spawned.

    Steps (each failure is logged and ignored):
      1. kill the launched process handle
      2. kill whatever is bound to the emulator port
      3. kill the Java runtime by name            (aggressive only)
      4. kill emulator/pubsub/gcloud by name      (aggressive only)
      5. kill the process group/tree captured at spawn time
      6. clear the published endpoint

    The name-based steps can hit unrelated processes on the host, so they only
    run when `aggressive` is enabled.
    """

    RUNTIME_NAMES = {HostOS.POSIX: "java", HostOS.WINDOWS: "java.exe"}
    NAME_FRAGMENTS = ("emulator", "pubsub", "gcloud")
    COMMAND_TIMEOUT_SEC = 10

    def __init__(
        self,
        port: int,
        *,
        host_os: HostOS | None = None,
        aggressive: bool = False,
        registry: EndpointRegistry | None = None,
    ) -> None:
        self.port = port
        self.host_os = host_os or detect_host_os()
        self.aggressive = aggressive
        self.registry = registry or default_registry
        self._log = get_logger(__name__)

    def run(self, proc: Any | None, endpoint: str | None = None) -> list[str]:
        """Run every step and return the names of the steps that were attempted."""
        steps: list[tuple[str, Callable[[], None]]] = [
            ("kill_process", lambda: self.kill_process(proc)),
            ("kill_port_owners", self.kill_port_owners),
        ]
        if self.aggressive:
            steps += [
                ("kill_runtime", self.kill_runtime),
                ("kill_name_fragments", self.kill_name_fragments),
            ]
        steps += [
            ("kill_process_tree", lambda: self.kill_process_tree(getattr(proc, "pid", None))),
            ("clear_endpoint", lambda: self.registry.clear(endpoint)),
        ]

        attempted: list[str] = []
        for name, step in steps:
            attempted.append(name)
            try:
                step()
            except Exception as e:
                self._log.debug("Shutdown step failed", step=name, error=str(e))
        return attempted

    # ------------------------
    # Steps
    # ------------------------
    def kill_process(self, proc: Any | None) -> None:
        if proc is None or proc.poll() is not None:
            return
        self._log.info("Killing main emulator process", pid=getattr(proc, "pid", None))
        proc.kill()

    def kill_port_owners(self) -> None:
        self._log.info("Killing processes using the emulator port", port=self.port)
        own_pid = os.getpid()
        if self.host_os is HostOS.WINDOWS:
            out = self._run(["netstat", "-aon"])
            for pid in parse_netstat_pids(out.lines(), self.port):
                if pid != own_pid:
                    self._run(["taskkill", "/F", "/PID", str(pid)])
        else:
            out = self._run(["lsof", "-ti", f"tcp:{self.port}", "-sTCP:LISTEN"])
            for pid in parse_pids(out.lines()):
                if pid != own_pid:
                    self._run(["kill", "-9", str(pid)])

    def kill_runtime(self) -> None:
        name = self.RUNTIME_NAMES[self.host_os]
        self._log.warning("Killing processes by runtime name", name=name)
        if self.host_os is HostOS.WINDOWS:
            self._run(["taskkill", "/F", "/IM", name])
        else:
            self._run(["pkill", "-f", name])

    def kill_name_fragments(self) -> None:
        self._log.warning("Killing processes by name fragments", fragments=self.NAME_FRAGMENTS)
        for fragment in self.NAME_FRAGMENTS:
            if self.host_os is HostOS.WINDOWS:
                self._run(["taskkill", "/F", "/FI", f"WINDOWTITLE eq *{fragment}*"])
            else:
                self._run(["pkill", "-f", fragment])

    def kill_process_tree(self, pid: int | None) -> None:
        if not pid or pid <= 0:
            return
        self._log.info("Killing emulator process tree", pid=pid)
        if self.host_os is HostOS.WINDOWS:
            self._run(["taskkill", "/F", "/T", "/PID", str(pid)])
            return
        # The child leads its own session, so its process group id is its pid
        try:
            os.killpg(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
        except (ProcessLookupError, PermissionError):
            pass
        self._run(["pkill", "-P", str(pid)])

    def _run(self, args: list[str]) -> Completed:
        return cast(Completed, run_cmd(args, check=False, timeout=self.COMMAND_TIMEOUT_SEC))
