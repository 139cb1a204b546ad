from enum import Enum


class HostOS(str, Enum):
    """
    Host operating system families with distinct process management commands.

    Used to pick the teardown command set (lsof/pkill vs netstat/taskkill)
    and the process group flags passed at spawn time.
    """

    POSIX = "posix"
    WINDOWS = "windows"
