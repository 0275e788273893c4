"""Interruptible readiness polling for the receive loops."""

from __future__ import annotations

import select
import socket
import threading
from typing import Optional

__all__ = ["wait_for_read_ready"]


def wait_for_read_ready(
    sock: socket.socket,
    *,
    timeout: float,
    stop: Optional[threading.Event] = None,
) -> bool:
    """Return ``True`` if ``sock`` has a datagram waiting.

    Parameters
    ----------
    sock:
        The UDP socket owned by a receive loop.
    timeout:
        Upper bound for a single wait.  Loops call this repeatedly so the
        value also bounds how long a stop request can go unnoticed.
    stop:
        Optional event; when it is already set the call returns ``False``
        without waiting.
    """

    if stop is not None and stop.is_set():
        return False
    if sock.fileno() < 0:
        return False
    try:
        readable, _, _ = select.select([sock], [], [], max(timeout, 0.0))
    except (OSError, ValueError):
        # The socket was closed while waiting.
        return False
    return bool(readable)
