"""Client library for X-Plane's UDP interface.

Find running simulators with :class:`XPlaneDiscovery`, then talk to one
through an :class:`XPlaneSession`::

    from xplane_udp import CallbackDiscoveryListener, default_discovery

    discovery = default_discovery()
    discovery.add_listener(CallbackDiscoveryListener(found=print, lost=print))
"""

from xplane_udp._version import __version__
from xplane_udp.codec import DataReader, DataWriter
from xplane_udp.configuration import DiscoverySettings, SessionSettings
from xplane_udp.discovery import (
    CallbackDiscoveryListener,
    DiscoveredInstance,
    DiscoveryListener,
    XPlaneDiscovery,
    default_discovery,
)
from xplane_udp.errors import (
    ConfigurationError,
    DatarefDesyncError,
    DecodeError,
    MessageTooLargeError,
    TruncatedMessageError,
    XPlaneError,
)
from xplane_udp.protocol import Beacon, Position
from xplane_udp.session import XPlaneListener, XPlaneSession, connect

__all__ = [
    "Beacon",
    "CallbackDiscoveryListener",
    "ConfigurationError",
    "DataReader",
    "DataWriter",
    "DatarefDesyncError",
    "DecodeError",
    "DiscoveredInstance",
    "DiscoveryListener",
    "DiscoverySettings",
    "MessageTooLargeError",
    "Position",
    "SessionSettings",
    "TruncatedMessageError",
    "XPlaneDiscovery",
    "XPlaneError",
    "XPlaneListener",
    "XPlaneSession",
    "__version__",
    "connect",
    "default_discovery",
]
