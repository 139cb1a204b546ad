from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .logging import get_logger

_log = get_logger(__name__)


def _text(data: str | bytes | bytearray | None) -> str:
    if isinstance(data, bytes | bytearray):
        return data.decode(errors="ignore")
    return data or ""


@dataclass(frozen=True)
class Completed:
    """Finished helper command (lsof, netstat, kill, pkill, taskkill) with text output."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @classmethod
    def from_process(cls, proc: subprocess.CompletedProcess) -> Completed:
        return cls(
            args=tuple(str(a) for a in proc.args),
            returncode=proc.returncode,
            stdout=_text(proc.stdout),
            stderr=_text(proc.stderr),
        )

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> list[str]:
        """Non-empty, stripped stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


def run_cmd(
    args: Sequence[str],
    *,
    check: bool = True,
    spawn: bool = False,
    timeout: float | None = None,
    **popen_kwargs: Any,
) -> Completed | subprocess.Popen:
    """
    Run a command, or start it in the background.

    Args:
        args: Program and its arguments.
        check: Raise CalledProcessError on a nonzero exit (ignored with spawn).
        spawn: Return the Popen object right away instead of waiting.
        timeout: Seconds to wait for a non-spawned command.
        **popen_kwargs: Passed to subprocess.Popen when spawning (pipes, process group flags).

    Raises:
        subprocess.CalledProcessError: check=True and the command failed.
        subprocess.TimeoutExpired: The command outlived timeout.
        OSError: The program could not be executed.
    """
    argv = list(args)
    if spawn:
        return subprocess.Popen(argv, **popen_kwargs)

    result = Completed.from_process(
        subprocess.run(argv, capture_output=True, timeout=timeout, check=False)
    )
    _log.debug("Command finished", action="run_cmd", args=argv, returncode=result.returncode)

    if check and not result.ok:
        raise subprocess.CalledProcessError(result.returncode, argv, result.stdout, result.stderr)
    return result
