"""Readers and writers for X-Plane's fixed-layout binary messages.

X-Plane encodes every multi-byte number in the byte order of the machine
it runs on and pads strings into fixed-width fields.  :class:`DataReader`
consumes such a payload sequentially while :class:`DataWriter` builds one.
Both default to the host's native byte order; pass ``byte_order="little"``
(or ``"big"``) to pin the layout explicitly.
"""

from __future__ import annotations

import struct
from functools import lru_cache
from typing import Optional

from xplane_udp.errors import MessageTooLargeError, TruncatedMessageError

__all__ = [
    "BYTE_ORDERS",
    "DataReader",
    "DataWriter",
    "resolve_byte_order",
]


BYTE_ORDERS = {
    "native": "=",
    "little": "<",
    "big": ">",
    "=": "=",
    "<": "<",
    ">": ">",
}

_ENCODING = "latin-1"
_NUL = 0
_PAD = 0x20


def resolve_byte_order(byte_order: str) -> str:
    """Return the :mod:`struct` prefix for ``byte_order``.

    Accepts the names ``native``, ``little`` and ``big`` as well as the raw
    ``=``, ``<`` and ``>`` prefixes.
    """

    try:
        return BYTE_ORDERS[str(byte_order).strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported byte order {byte_order!r}; expected one of "
            f"{sorted(name for name in BYTE_ORDERS if name.isalpha())}"
        ) from None


@lru_cache(maxsize=None)
def _struct(prefix: str, code: str) -> struct.Struct:
    return struct.Struct(prefix + code)


class DataReader:
    """Sequential reader over a received datagram."""

    __slots__ = ("_data", "_offset", "_prefix")

    def __init__(self, data: bytes, *, byte_order: str = "native", offset: int = 0) -> None:
        self._data = memoryview(bytes(data))
        self._offset = offset
        self._prefix = resolve_byte_order(byte_order)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return max(len(self._data) - self._offset, 0)

    def _unpack(self, code: str) -> int | float:
        layout = _struct(self._prefix, code)
        self._require(layout.size)
        (value,) = layout.unpack_from(self._data, self._offset)
        self._offset += layout.size
        return value

    def _require(self, count: int) -> None:
        if self._offset + count > len(self._data):
            raise TruncatedMessageError(count, self._offset, len(self._data))

    def _next_byte(self) -> int:
        self._require(1)
        value = self._data[self._offset]
        self._offset += 1
        return value

    def read_u8(self) -> int:
        return int(self._unpack("B"))

    def read_i8(self) -> int:
        return int(self._unpack("b"))

    def read_u16(self) -> int:
        return int(self._unpack("H"))

    def read_i16(self) -> int:
        return int(self._unpack("h"))

    def read_u32(self) -> int:
        return int(self._unpack("I"))

    def read_i32(self) -> int:
        return int(self._unpack("i"))

    def read_u64(self) -> int:
        return int(self._unpack("Q"))

    def read_i64(self) -> int:
        return int(self._unpack("q"))

    def read_f32(self) -> float:
        return float(self._unpack("f"))

    def read_f64(self) -> float:
        return float(self._unpack("d"))

    def read_bytes(self, count: int) -> bytes:
        self._require(count)
        chunk = bytes(self._data[self._offset : self._offset + count])
        self._offset += count
        return chunk

    def read_string(self, max_length: int) -> str:
        """Read a NUL-terminated string of at most ``max_length`` characters.

        The terminating NUL is consumed.  When ``max_length`` characters are
        collected before a NUL is seen, reading stops without consuming more.
        """

        collected = bytearray()
        while len(collected) < max_length:
            value = self._next_byte()
            if value == _NUL:
                break
            collected.append(value)
        return collected.decode(_ENCODING)

    def read_fixed_string(self, length: int) -> str:
        """Read a fixed-width string field of exactly ``length`` bytes.

        The text ends at the first NUL or after ``length - 1`` bytes; the
        rest of the field is skipped.
        """

        if length <= 0:
            return ""
        self._require(length)
        field = bytes(self._data[self._offset : self._offset + length])
        self._offset += length
        text = field[: length - 1]
        terminator = text.find(b"\0")
        if terminator >= 0:
            text = text[:terminator]
        return text.decode(_ENCODING)


class DataWriter:
    """Builder for outbound messages.

    ``max_size`` mirrors the fixed buffers X-Plane expects; writing beyond it
    raises :class:`~xplane_udp.errors.MessageTooLargeError`.
    """

    __slots__ = ("_buffer", "_prefix", "_max_size")

    def __init__(self, *, byte_order: str = "native", max_size: Optional[int] = None) -> None:
        self._buffer = bytearray()
        self._prefix = resolve_byte_order(byte_order)
        self._max_size = max_size

    def __len__(self) -> int:
        return len(self._buffer)

    def _append(self, chunk: bytes) -> None:
        if self._max_size is not None and len(self._buffer) + len(chunk) > self._max_size:
            raise MessageTooLargeError(
                f"Message exceeds maximum size of {self._max_size} bytes "
                f"({len(self._buffer) + len(chunk)} requested)"
            )
        self._buffer.extend(chunk)

    def _pack(self, code: str, value: int | float) -> None:
        try:
            packed = _struct(self._prefix, code).pack(value)
        except struct.error as exc:
            raise ValueError(f"{value!r} does not fit a {code!r} field: {exc}") from exc
        self._append(packed)

    def write_u8(self, value: int) -> None:
        self._pack("B", value)

    def write_i8(self, value: int) -> None:
        self._pack("b", value)

    def write_u16(self, value: int) -> None:
        self._pack("H", value)

    def write_i16(self, value: int) -> None:
        self._pack("h", value)

    def write_u32(self, value: int) -> None:
        self._pack("I", value)

    def write_i32(self, value: int) -> None:
        self._pack("i", value)

    def write_u64(self, value: int) -> None:
        self._pack("Q", value)

    def write_i64(self, value: int) -> None:
        self._pack("q", value)

    def write_f32(self, value: float) -> None:
        self._pack("f", value)

    def write_f64(self, value: float) -> None:
        self._pack("d", value)

    def write_string(self, text: str) -> None:
        """Write ``text`` followed by a terminating NUL."""

        self._append(_encode(text) + b"\0")

    def write_fixed_string(self, text: str, length: int) -> None:
        """Write ``text`` into a field of exactly ``length`` bytes.

        The text is truncated to ``length - 1`` bytes, terminated with NUL
        and padded with spaces.
        """

        if length <= 0:
            return
        encoded = _encode(text)[: length - 1] + b"\0"
        self._append(encoded.ljust(length, bytes((_PAD,))))

    def export(self) -> bytes:
        return bytes(self._buffer)


def _encode(text: str) -> bytes:
    return text.encode(_ENCODING, errors="replace")
