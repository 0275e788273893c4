"""Network interface selection and multicast beacon channels."""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional

import psutil

__all__ = [
    "BeaconChannel",
    "NetworkInterface",
    "eligible_interfaces",
    "open_beacon_channel",
]


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    """A local interface beacons can be received on."""

    name: str
    address: str


def _is_loopback(name: str, addresses: List[str], flags: str) -> bool:
    if "loopback" in flags.split(","):
        return True
    if name == "lo":
        return True
    return any(ipaddress.ip_address(address).is_loopback for address in addresses)


def _is_virtual(name: str) -> bool:
    # Aliases such as ``eth0:1`` are sub-interfaces of a physical device.
    return ":" in name


def eligible_interfaces() -> List[NetworkInterface]:
    """Return interfaces that are up, physical, not loopback and carry IPv4.

    The first IPv4 address of each interface is used to join the beacon
    multicast group.
    """

    try:
        all_addresses = psutil.net_if_addrs()
        all_stats = psutil.net_if_stats()
    except OSError as exc:
        logger.warning(
            "Unable to enumerate network interfaces.",
            extra={"event": "network.enumeration_failed", "error": str(exc)},
        )
        return []

    eligible: List[NetworkInterface] = []
    for name in sorted(all_addresses):
        stats = all_stats.get(name)
        if stats is None or not stats.isup:
            continue
        if _is_virtual(name):
            continue
        ipv4 = [
            record.address
            for record in all_addresses[name]
            if record.family == socket.AF_INET
        ]
        if not ipv4:
            continue
        if _is_loopback(name, ipv4, getattr(stats, "flags", "") or ""):
            continue
        eligible.append(NetworkInterface(name=name, address=ipv4[0]))
    logger.debug(
        "Eligible interfaces resolved.",
        extra={
            "event": "network.interfaces",
            "interfaces": [interface.name for interface in eligible],
        },
    )
    return eligible


@dataclass(slots=True)
class BeaconChannel:
    """A socket that joined the beacon multicast group on one interface."""

    interface: NetworkInterface
    sock: socket.socket
    membership: Optional[bytes] = None

    def leave(self) -> None:
        """Drop the multicast membership if one was established."""

        if self.membership is None:
            return
        membership, self.membership = self.membership, None
        try:
            self.sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, membership)
        except OSError as exc:
            logger.debug(
                "Leaving the beacon multicast group failed.",
                extra={
                    "event": "network.leave_failed",
                    "interface": self.interface.name,
                    "error": str(exc),
                },
            )

    def close(self) -> None:
        try:
            self.leave()
        finally:
            self.sock.close()


def open_beacon_channel(
    interface: NetworkInterface,
    *,
    group: str,
    port: int,
) -> BeaconChannel:
    """Bind the discovery port and join ``group`` on ``interface``.

    Raises :class:`OSError` when binding or joining fails; the socket is
    closed before the error propagates.
    """

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(("", port))
        local = socket.inet_aton(interface.address)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, local)
        membership = socket.inet_aton(group) + local
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return BeaconChannel(interface=interface, sock=sock, membership=membership)
