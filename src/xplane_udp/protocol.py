"""X-Plane UDP message layouts.

Every datagram starts with a five byte tag (four ASCII letters plus a
terminator) followed by a fixed payload:

* ``BECN`` beacons multicast by running simulators,
* ``RPOS`` position requests and replies,
* ``RREF`` dataref subscriptions and values,
* ``CMND`` one-shot commands,
* ``ALRT`` four-line alert messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from xplane_udp.codec import DataReader, DataWriter

__all__ = [
    "ALERT_LINE_LENGTH",
    "ALERT_LINES",
    "BEACON_HOST_LENGTH",
    "BEACON_TAG",
    "COMMAND_MAX_SIZE",
    "DATAREF_PATH_LENGTH",
    "DISCOVERY_PORT",
    "MAX_FREQUENCY",
    "MULTICAST_GROUP",
    "POSITION_REQUEST_MAX_SIZE",
    "TAG_ALERT",
    "TAG_BEACON",
    "TAG_COMMAND",
    "TAG_DATAREF",
    "TAG_LENGTH",
    "TAG_POSITION",
    "Beacon",
    "Position",
    "clamp_frequency",
    "decode_dataref_values",
    "encode_alert",
    "encode_command",
    "encode_dataref_request",
    "encode_position_request",
    "parse_beacon",
    "read_tag",
]


MULTICAST_GROUP = "239.255.1.1"
DISCOVERY_PORT = 49707

TAG_LENGTH = 5
TAG_BEACON = "BECN"
TAG_POSITION = "RPOS"
TAG_DATAREF = "RREF"
TAG_COMMAND = "CMND"
TAG_ALERT = "ALRT"
BEACON_TAG = b"BECN\0"

BEACON_HOST_LENGTH = 500
DATAREF_PATH_LENGTH = 400
ALERT_LINE_LENGTH = 240
ALERT_LINES = 4
POSITION_REQUEST_MAX_SIZE = 8
COMMAND_MAX_SIZE = 500
DATAREF_REQUEST_SIZE = TAG_LENGTH + 4 + 4 + DATAREF_PATH_LENGTH
ALERT_SIZE = TAG_LENGTH + ALERT_LINES * ALERT_LINE_LENGTH
MAX_FREQUENCY = 99


@dataclass(frozen=True, slots=True)
class Beacon:
    """Decoded ``BECN`` announcement."""

    major_version: int
    minor_version: int
    application_host_id: int
    version_number: int
    role: int
    port: int
    host: str

    @property
    def xplane_version(self) -> Tuple[int, int, int]:
        """Return ``(major, minor, revision)`` parsed from ``version_number``.

        ``113506`` is X-Plane 11.35r6. Division truncates toward zero, so
        every component of a negative number carries its sign.
        """

        sign = -1 if self.version_number < 0 else 1
        number = abs(self.version_number)
        return sign * (number // 10000), sign * (number % 10000 // 100), sign * (number % 100)

    @classmethod
    def from_reader(cls, reader: DataReader) -> "Beacon":
        return cls(
            major_version=reader.read_u8(),
            minor_version=reader.read_u8(),
            application_host_id=reader.read_i32(),
            version_number=reader.read_i32(),
            role=reader.read_u32(),
            port=reader.read_u16(),
            host=reader.read_string(BEACON_HOST_LENGTH),
        )


@dataclass(frozen=True, slots=True)
class Position:
    """Aircraft position and attitude carried by an ``RPOS`` reply."""

    longitude: float
    latitude: float
    elevation_msl: float
    elevation_agl: float
    pitch: float
    heading: float
    roll: float
    speed_x: float
    speed_y: float
    speed_z: float
    roll_rate: float
    pitch_rate: float
    yaw_rate: float

    @classmethod
    def from_reader(cls, reader: DataReader) -> "Position":
        longitude = reader.read_f64()
        latitude = reader.read_f64()
        elevation_msl = reader.read_f64()
        return cls(
            longitude,
            latitude,
            elevation_msl,
            *(reader.read_f32() for _ in range(10)),
        )


def parse_beacon(payload: bytes, *, byte_order: str = "native") -> Optional[Beacon]:
    """Decode ``payload`` as a beacon, returning ``None`` for other datagrams.

    Raises :class:`~xplane_udp.errors.DecodeError` when the payload carries
    the beacon tag but is truncated.
    """

    if not payload.startswith(BEACON_TAG):
        return None
    reader = DataReader(payload, byte_order=byte_order, offset=len(BEACON_TAG))
    return Beacon.from_reader(reader)


def read_tag(reader: DataReader) -> str:
    """Read the five byte message tag at the reader's position."""

    return reader.read_fixed_string(TAG_LENGTH)


def decode_dataref_values(reader: DataReader) -> Iterator[Tuple[int, float]]:
    """Yield ``(slot, value)`` pairs from an ``RREF`` payload.

    The first pair is mandatory; further complete pairs are decoded while
    enough bytes remain.
    """

    yield reader.read_i32(), reader.read_f32()
    while reader.remaining >= 8:
        yield reader.read_i32(), reader.read_f32()


def clamp_frequency(frequency: int) -> int:
    """Limit a position frequency to the ``[0, 99]`` range X-Plane accepts."""

    return min(max(int(frequency), 0), MAX_FREQUENCY)


def encode_position_request(frequency: int, *, byte_order: str = "native") -> bytes:
    writer = DataWriter(byte_order=byte_order, max_size=POSITION_REQUEST_MAX_SIZE)
    writer.write_string(TAG_POSITION)
    writer.write_string(str(clamp_frequency(frequency)))
    return writer.export()


def encode_command(name: str, *, byte_order: str = "native") -> bytes:
    writer = DataWriter(byte_order=byte_order, max_size=COMMAND_MAX_SIZE)
    writer.write_string(TAG_COMMAND)
    writer.write_string(name)
    return writer.export()


def encode_dataref_request(
    path: str, slot: int, frequency: int, *, byte_order: str = "native"
) -> bytes:
    writer = DataWriter(byte_order=byte_order, max_size=DATAREF_REQUEST_SIZE)
    writer.write_string(TAG_DATAREF)
    writer.write_i32(int(frequency))
    writer.write_i32(int(slot))
    writer.write_fixed_string(path, DATAREF_PATH_LENGTH)
    return writer.export()


def encode_alert(
    line1: Optional[str] = None,
    line2: Optional[str] = None,
    line3: Optional[str] = None,
    line4: Optional[str] = None,
    *,
    byte_order: str = "native",
) -> bytes:
    writer = DataWriter(byte_order=byte_order, max_size=ALERT_SIZE)
    writer.write_string(TAG_ALERT)
    for line in (line1, line2, line3, line4):
        writer.write_fixed_string(line or "", ALERT_LINE_LENGTH)
    return writer.export()
