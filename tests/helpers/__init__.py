"""Convenience re-exports for test helpers."""

from __future__ import annotations

from tests.helpers.packets import (
    DEFAULT_POSITION,
    build_beacon_payload,
    build_dataref_payload,
    build_position_payload,
)
from tests.helpers.udp import (
    FakeClock,
    QueueUDPSocket,
    RecordingDiscoveryListener,
    RecordingSessionListener,
    loopback_channel_factory,
    make_wait_stub,
    patch_wait_for_read_ready,
    wait_until,
)

__all__ = [
    "DEFAULT_POSITION",
    "FakeClock",
    "QueueUDPSocket",
    "RecordingDiscoveryListener",
    "RecordingSessionListener",
    "build_beacon_payload",
    "build_dataref_payload",
    "build_position_payload",
    "loopback_channel_factory",
    "make_wait_stub",
    "patch_wait_for_read_ready",
    "wait_until",
]
