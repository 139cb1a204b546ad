from __future__ import annotations

import os
import subprocess
import threading
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from pubsubemu.config.models import EmulatorSettings
from pubsubemu.emulator.coordinator import ReadinessCoordinator
from pubsubemu.emulator.launcher import ProcessLauncher
from pubsubemu.emulator.registry import EndpointRegistry
from pubsubemu.emulator.shutdown import ShutdownStrategy
from pubsubemu.emulator.supervisor import PubSubEmulator
from pubsubemu.platform import HostOS


class FakeProcess:
    """
    Popen stand-in backed by real OS pipes.

    Lines written with emit() are read by the supervisor's output monitors;
    exit() closes the write ends (EOF for the readers) and releases wait().
    """

    def __init__(self, pid: int = 4_000_001) -> None:
        r_out, self._w_out = os.pipe()
        r_err, self._w_err = os.pipe()
        self.stdout = os.fdopen(r_out, "r", encoding="utf-8", errors="replace")
        self.stderr = os.fdopen(r_err, "r", encoding="utf-8", errors="replace")
        self.pid = pid
        self.returncode: int | None = None
        self.kill_calls = 0
        self._exited = threading.Event()
        self._lock = threading.Lock()

    def emit(self, stream: str, *lines: str) -> None:
        fd = self._w_err if stream == "stderr" else self._w_out
        with self._lock:
            if self.returncode is not None:
                return
            for line in lines:
                os.write(fd, (line + "\n").encode("utf-8"))

    def exit(self, code: int = 0) -> None:
        with self._lock:
            if self.returncode is not None:
                return
            self.returncode = code
            for fd in (self._w_out, self._w_err):
                try:
                    os.close(fd)
                except OSError:
                    pass
        self._exited.set()

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("fake-emulator", timeout or 0)
        assert self.returncode is not None
        return self.returncode

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)

    def terminate(self) -> None:
        self.exit(-15)

    def close(self) -> None:
        """Release the read ends a test left open (never-started or abandoned launches)."""
        for stream in (self.stdout, self.stderr):
            if not stream.closed:
                stream.close()


Script = Callable[[FakeProcess], None]


class FakeLauncher(ProcessLauncher):
    """
    Hands out a FakeProcess and plays `script` against it in the background.

    A relaunch after the previous process exited gets a fresh FakeProcess.
    """

    def __init__(
        self, settings: EmulatorSettings, proc: FakeProcess, script: Script | None = None
    ) -> None:
        super().__init__(settings, host_os=HostOS.POSIX)
        self.proc = proc
        self.script = script
        self.launches = 0

    def launch(self) -> Any:
        self.launches += 1
        if self.proc.returncode is not None:
            self.proc = FakeProcess()
        if self.script is not None:
            threading.Thread(target=self.script, args=(self.proc,), daemon=True).start()
        return self.proc


class RecordingShutdown(ShutdownStrategy):
    """ShutdownStrategy that counts full runs."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.runs = 0

    def run(self, proc: Any | None, endpoint: str | None = None) -> list[str]:
        self.runs += 1
        return super().run(proc, endpoint)


class FakeResult:
    def __init__(self, stdout: str = "", returncode: int = 0) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = ""

    def lines(self) -> list[str]:
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class CommandRecorder:
    """Replaces run_cmd/os.killpg in the shutdown module; nothing real gets killed."""

    def __init__(self) -> None:
        self.commands: list[tuple[str, ...]] = []
        self.killpg_calls: list[tuple[int, int]] = []
        self.outputs: dict[str, str] = {}  # program name -> stdout
        self.fail_with: BaseException | None = None

    def run_cmd(self, args: list[str], **kw: Any) -> FakeResult:
        self.commands.append(tuple(args))
        if self.fail_with is not None:
            raise self.fail_with
        return FakeResult(self.outputs.get(args[0], ""))

    def killpg(self, pgid: int, sig: int) -> None:
        self.killpg_calls.append((pgid, sig))
        if self.fail_with is not None:
            raise ProcessLookupError(pgid)

    def programs(self) -> list[str]:
        return [c[0] for c in self.commands]


@pytest.fixture(autouse=True)
def recorded_commands(monkeypatch: pytest.MonkeyPatch) -> CommandRecorder:
    """Never let a test run real kill/lsof/taskkill commands."""
    rec = CommandRecorder()
    monkeypatch.setattr("pubsubemu.emulator.shutdown.run_cmd", rec.run_cmd)
    monkeypatch.setattr("pubsubemu.emulator.shutdown.os.killpg", rec.killpg, raising=False)
    return rec


@pytest.fixture
def registry() -> EndpointRegistry:
    return EndpointRegistry()


@pytest.fixture
def make_emulator(
    tmp_path: Path, registry: EndpointRegistry
) -> Generator[Callable[..., tuple[PubSubEmulator, FakeProcess, RecordingShutdown]], None, None]:
    """
    Build a PubSubEmulator over a FakeProcess.

    Timing defaults are short; pass grace/timeout to use the real budget.
    """
    created: list[tuple[PubSubEmulator, FakeProcess]] = []

    def factory(
        script: Script | None = None,
        *,
        grace: float = 0.5,
        timeout: float = 2.0,
        early_exit_window: float = 3.0,
        coordinator: ReadinessCoordinator | None = None,
        owner_lookup: Callable[[int], str] = lambda port: "unknown",
        **overrides: Any,
    ) -> tuple[PubSubEmulator, FakeProcess, RecordingShutdown]:
        values: dict[str, Any] = {
            "project_id": "test-project",
            "data_dir": tmp_path / "data",
            "output_log": str(tmp_path / "emulator.log"),
            "stop_join_timeout": 1.0,
            **overrides,
        }
        settings = EmulatorSettings(
            grace_period=grace,
            start_timeout=timeout,
            early_exit_window=early_exit_window,
            **values,
        )
        proc = FakeProcess()
        shutdown = RecordingShutdown(settings.port, host_os=HostOS.POSIX, registry=registry)
        emulator = PubSubEmulator(
            settings,
            launcher=FakeLauncher(settings, proc, script),
            coordinator=coordinator,
            shutdown=shutdown,
            registry=registry,
            owner_lookup=owner_lookup,
        )
        created.append((emulator, proc))
        return emulator, proc, shutdown

    yield factory

    for emulator, proc in created:
        emulator.stop()
        proc.exit()
        proc.close()
