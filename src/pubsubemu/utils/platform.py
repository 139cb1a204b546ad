from __future__ import annotations

import os
import subprocess
from typing import Any

from ..platform import HostOS


def detect_host_os(name: str | None = None) -> HostOS:
    """
    Return the host OS family.

    `name` mirrors `os.name` ("nt" or "posix") and may be passed explicitly in tests.
    """
    name = name if name is not None else os.name
    return HostOS.WINDOWS if name == "nt" else HostOS.POSIX


def process_group_kwargs(host_os: HostOS | None = None) -> dict[str, Any]:
    """
    Popen keyword arguments that place the child in its own process group,
    so the whole tree can be terminated later.
    """
    host_os = host_os or detect_host_os()
    if host_os is HostOS.WINDOWS:
        return {"creationflags": int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))}
    return {"start_new_session": True}
