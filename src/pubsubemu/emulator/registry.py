from __future__ import annotations

import os
import threading

from ..utils.logging import get_logger


class EndpointRegistry:
    """
    Published address of the running emulator.

    Components that build Pub/Sub clients read the endpoint from here (or take
    it from the return value of `PubSubEmulator.start()`). Mirroring it into the
    environment variable Google client libraries look at is opt-in per publish.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._endpoint: str | None = None
        self._exported_as: str | None = None
        self._log = get_logger(__name__)

    def publish(self, endpoint: str, *, export_as: str | None = None) -> None:
        """Publish `endpoint`; when `export_as` is given, also set that env var."""
        with self._lock:
            self._endpoint = endpoint
            if export_as:
                os.environ[export_as] = endpoint
                self._exported_as = export_as
        self._log.info("Emulator endpoint published", endpoint=endpoint, env_var=export_as)

    def clear(self, endpoint: str | None = None) -> None:
        """
        Forget the endpoint and remove the env var it was exported as, if any.

        With `endpoint`, only clear when that endpoint is the one published.
        """
        with self._lock:
            if endpoint is not None and endpoint != self._endpoint:
                return
            self._endpoint = None
            if self._exported_as:
                os.environ.pop(self._exported_as, None)
                self._exported_as = None

    def current(self) -> str | None:
        with self._lock:
            return self._endpoint


# Process-wide default, used when a supervisor is not given its own registry
registry = EndpointRegistry()
