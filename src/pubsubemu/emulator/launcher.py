from __future__ import annotations

import subprocess
from pathlib import Path
from shutil import which
from typing import Any, cast

from ..config.models import EmulatorSettings
from ..platform import HostOS
from ..utils.cli import run_cmd
from ..utils.logging import get_logger
from ..utils.platform import detect_host_os, process_group_kwargs
from .errors import ConfigurationError


class ProcessLauncher:
    """
    Prepares and spawns `gcloud beta emulators pubsub start`.

    The child gets both output streams as line-buffered text pipes and its own
    process group, so the shutdown strategy can terminate the whole tree
    (gcloud wraps a Java server).
    """

    def __init__(self, settings: EmulatorSettings, host_os: HostOS | None = None) -> None:
        self.settings = settings
        self.host_os = host_os or detect_host_os()
        self._log = get_logger(__name__)

    @property
    def host_port(self) -> str:
        return self.settings.host_port

    def prepare_data_dir(self) -> Path:
        """Create the data directory if it does not exist (it is never removed)."""
        data_dir = Path(self.settings.data_dir)
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"failed to create data directory {data_dir}: {e}") from e
        return data_dir

    def build_command(self, executable: str | None = None) -> list[str]:
        s = self.settings
        return [
            executable or s.executable,
            "beta",
            "emulators",
            "pubsub",
            "start",
            f"--project={s.project_id}",
            f"--host-port={self.host_port}",
            f"--data-dir={s.data_dir}",
        ]

    def launch(self) -> subprocess.Popen[str]:
        """
        Spawn the emulator with captured stdout/stderr.

        Raises:
            ConfigurationError: the executable is not on PATH, the process could not
                be spawned, or its output pipes are missing.
        """
        resolved = which(self.settings.executable)
        if resolved is None:
            raise ConfigurationError(
                f"{self.settings.executable} not found in PATH. "
                "Install the Google Cloud SDK with the pubsub-emulator component."
            )

        cmd = self.build_command(resolved)
        popen_kwargs: dict[str, Any] = {
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "stdin": subprocess.DEVNULL,
            "text": True,
            "encoding": "utf-8",
            "errors": "replace",
            "bufsize": 1,
            **process_group_kwargs(self.host_os),
        }
        try:
            proc = cast(subprocess.Popen[str], run_cmd(cmd, spawn=True, **popen_kwargs))
        except OSError as e:
            raise ConfigurationError(f"failed to spawn {cmd[0]}: {e}") from e

        if proc.stdout is None or proc.stderr is None:
            try:
                proc.kill()
            except OSError:
                pass
            raise ConfigurationError("emulator output streams could not be captured")

        self._log.info(
            "Emulator process started",
            action="emulator_spawned",
            pid=getattr(proc, "pid", None),
            cmd=" ".join(cmd),
        )
        return proc
