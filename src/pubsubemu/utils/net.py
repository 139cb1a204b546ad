from __future__ import annotations

import socket

import psutil

UNKNOWN_OWNER = "unknown"


def is_listening(host: str, port: int, timeout: float = 0.6) -> bool:
    """True when a TCP connection to host:port succeeds within timeout seconds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def get_free_port() -> int:
    """Port the OS currently considers free on 127.0.0.1. It may be taken again before use."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


def _describe(pid: int) -> str:
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            return f"PID {pid}, name '{proc.name()}', user '{proc.username()}'"
    except psutil.Error:
        return f"PID {pid}"


def owner_info(port: int) -> str:
    """
    Describe the process listening on a TCP port, for PortConflict messages.

    Gives "PID <pid>, name '<name>', user '<user>'", just "PID <pid>" when the
    process details are not readable, and "unknown" when no listener is visible
    (nothing bound, or the OS refuses to enumerate sockets).
    """
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.Error, OSError):
        return UNKNOWN_OWNER

    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
            continue
        return _describe(conn.pid) if conn.pid else UNKNOWN_OWNER
    return UNKNOWN_OWNER
