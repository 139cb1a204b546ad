from __future__ import annotations


class EmulatorError(RuntimeError):
    """Base class for all emulator supervisor failures."""


class ConfigurationError(EmulatorError):
    """Data directory, executable or pipe setup could not be prepared."""


class EmulatorStateError(EmulatorError):
    """start() was called on an instance that is starting, running or failed."""


class PortConflict(EmulatorError):
    """The emulator reported that its bind port is already occupied."""

    def __init__(self, port: int, owner: str | None = None) -> None:
        self.port = port
        self.owner = owner
        message = f"emulator failed to start: port {port} already in use"
        if owner and owner != "unknown":
            message += f" ({owner})"
        super().__init__(message)


class EarlyExit(EmulatorError):
    """The process terminated before it ever reported readiness."""

    def __init__(self, returncode: int | None, elapsed: float, *, immediate: bool = True) -> None:
        self.returncode = returncode
        self.elapsed = elapsed
        self.immediate = immediate
        how = "exited immediately" if immediate else "exited before becoming ready"
        super().__init__(
            f"emulator process {how} (exit code {returncode}, after {elapsed:.1f}s)"
        )


class StartupTimeout(EmulatorError):
    """No readiness marker within the overall startup budget."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            "timeout waiting for emulator to start "
            f"(no 'Server started' message detected within {timeout:g} seconds)"
        )


class StartupCancelled(EmulatorError):
    """The caller aborted startup."""


class UnexpectedCrash(EmulatorError):
    """The process exited after the emulator had been reported running."""

    def __init__(self, returncode: int | None) -> None:
        self.returncode = returncode
        super().__init__(f"emulator process exited unexpectedly (exit code {returncode})")


class OutputStreamError(EmulatorError):
    """Reading one of the emulator output streams failed."""

    def __init__(self, stream: str, cause: BaseException) -> None:
        self.stream = stream
        super().__init__(f"error reading emulator {stream}: {cause}")
