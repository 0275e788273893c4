"""Exception hierarchy shared by the codec, discovery and session layers."""

from __future__ import annotations

__all__ = [
    "ConfigurationError",
    "DatarefDesyncError",
    "DecodeError",
    "MessageTooLargeError",
    "TruncatedMessageError",
    "XPlaneError",
]


class XPlaneError(RuntimeError):
    """Base class for every error raised by :mod:`xplane_udp`."""


class DecodeError(XPlaneError, ValueError):
    """Raised when an inbound datagram cannot be decoded."""


class TruncatedMessageError(DecodeError):
    """Raised when a read runs past the end of the received bytes."""

    def __init__(self, requested: int, offset: int, size: int) -> None:
        super().__init__(
            f"Truncated message: {requested} byte(s) requested at offset {offset} "
            f"but only {max(size - offset, 0)} available"
        )
        self.requested = requested
        self.offset = offset
        self.size = size


class MessageTooLargeError(XPlaneError, ValueError):
    """Raised when an outbound message exceeds its fixed capacity."""


class DatarefDesyncError(XPlaneError):
    """Raised when a dataref value arrives for a slot that was never watched.

    This means the simulator and the session disagree about the slot table,
    which is a protocol error rather than an expected, ignorable message.
    """

    def __init__(self, index: int, value: float) -> None:
        super().__init__(f"Received value {value!r} for unknown dataref slot {index}")
        self.index = index
        self.value = value


class ConfigurationError(XPlaneError):
    """Raised when discovery or session settings are invalid."""
