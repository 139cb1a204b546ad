from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from types import TracebackType


class EmulatorManager(ABC):
    """
    Abstract base class for emulator managers.

    Defines the interface collaborators rely on: start with optional
    cancellation, idempotent stop, the resolved endpoint and a liveness check.
    Usable as a context manager that starts on enter and stops on exit.
    """

    @abstractmethod
    def start(self, cancel: threading.Event | None = None) -> str:
        """
        Start the emulator and block until it is ready.

        Returns:
            str: The "host:port" endpoint clients should connect to.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """
        Stop the emulator.

        Implementations must be idempotent and never raise on already stopped instances.
        """
        ...

    @abstractmethod
    def is_running(self) -> bool: ...

    @property
    @abstractmethod
    def host(self) -> str: ...

    def __enter__(self) -> EmulatorManager:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
