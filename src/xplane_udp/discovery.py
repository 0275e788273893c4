"""Discovery of X-Plane instances through multicast beacons.

Every running simulator multicasts a ``BECN`` datagram roughly once per
second.  :class:`XPlaneDiscovery` listens for those beacons on every
eligible interface, keeps a registry of the instances it has heard from and
notifies subscribed :class:`DiscoveryListener` objects when an instance
appears or falls silent for longer than the configured timeout.

The engine runs only while it has subscribers: the first
:meth:`XPlaneDiscovery.add_listener` starts the receive threads and removing
the last listener stops them and forgets every instance.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Tuple

from xplane_udp._socket_poll import wait_for_read_ready
from xplane_udp.errors import DecodeError
from xplane_udp.network import (
    BeaconChannel,
    NetworkInterface,
    eligible_interfaces,
    open_beacon_channel,
)
from xplane_udp.protocol import DISCOVERY_PORT, MULTICAST_GROUP, Beacon, parse_beacon

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from xplane_udp.configuration import DiscoverySettings, SessionSettings
    from xplane_udp.session import XPlaneSession

__all__ = [
    "CallbackDiscoveryListener",
    "DiscoveredInstance",
    "DiscoveryListener",
    "XPlaneDiscovery",
    "default_discovery",
]


logger = logging.getLogger(__name__)

BEACON_BUFFER_SIZE = 1024
DEFAULT_TIMEOUT = 30.0
DEFAULT_EVICTION_INTERVAL = 1.0
DEFAULT_POLL_INTERVAL = 0.25

Address = Tuple[str, int]
Clock = Callable[[], float]
InterfaceProvider = Callable[[], Sequence[NetworkInterface]]
ChannelFactory = Callable[[NetworkInterface], BeaconChannel]


@dataclass(frozen=True, slots=True)
class DiscoveredInstance:
    """An X-Plane instance announced by beacons from ``source``."""

    source: Address
    address: Address
    beacon: Beacon
    name: str

    @classmethod
    def from_beacon(cls, source: Address, beacon: Beacon) -> "DiscoveredInstance":
        """Build an instance whose control address is the beacon's port on ``source``."""

        host = str(source[0])
        major, minor, revision = beacon.xplane_version
        name = (
            f"{beacon.host} {host}:{beacon.port} "
            f"(X-Plane {major}.{minor}r{revision})"
        )
        return cls(
            source=(host, int(source[1])),
            address=(host, beacon.port),
            beacon=beacon,
            name=name,
        )

    @property
    def host(self) -> str:
        return self.beacon.host

    @property
    def version(self) -> Tuple[int, int, int]:
        return self.beacon.xplane_version

    def connect(self, *, settings: Optional["SessionSettings"] = None) -> "XPlaneSession":
        """Open a session to this instance's control address."""

        from xplane_udp.session import connect

        return connect(self.address, name=self.name, settings=settings)

    def __str__(self) -> str:
        return self.name


class DiscoveryListener:
    """Receives discovery notifications.

    Callbacks run on the engine's threads while its registry lock is held,
    so implementations must return quickly and must not call back into the
    engine.
    """

    def found_instance(self, instance: DiscoveredInstance) -> None:
        """Called once when ``instance`` is first heard from."""

    def lost_instance(self, instance: DiscoveredInstance) -> None:
        """Called once when ``instance`` has been silent past the timeout."""


class CallbackDiscoveryListener(DiscoveryListener):
    """Adapt two plain callables to the :class:`DiscoveryListener` interface."""

    def __init__(
        self,
        found: Optional[Callable[[DiscoveredInstance], None]] = None,
        lost: Optional[Callable[[DiscoveredInstance], None]] = None,
    ) -> None:
        self._found = found
        self._lost = lost

    def found_instance(self, instance: DiscoveredInstance) -> None:
        if self._found is not None:
            self._found(instance)

    def lost_instance(self, instance: DiscoveredInstance) -> None:
        if self._lost is not None:
            self._lost(instance)


class XPlaneDiscovery:
    """Multicast beacon listener and registry of live X-Plane instances."""

    def __init__(
        self,
        *,
        group: str = MULTICAST_GROUP,
        port: int = DISCOVERY_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        eviction_interval: float = DEFAULT_EVICTION_INTERVAL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        byte_order: str = "native",
        clock: Clock = time.monotonic,
        interface_provider: InterfaceProvider = eligible_interfaces,
        channel_factory: Optional[ChannelFactory] = None,
    ) -> None:
        """Create a stopped discovery engine.

        Parameters
        ----------
        group, port:
            Multicast group and UDP port beacons are sent to.
        timeout:
            Seconds of silence after which an instance is considered lost.
        eviction_interval:
            Seconds between two sweeps for silent instances.
        poll_interval:
            Upper bound on how long a receive thread waits before checking
            whether it was asked to stop.
        byte_order:
            Byte order used to decode beacon payloads.
        clock:
            Monotonic time source used for last-seen bookkeeping.
        interface_provider:
            Returns the interfaces to listen on; defaults to
            :func:`~xplane_udp.network.eligible_interfaces`.
        channel_factory:
            Opens a :class:`~xplane_udp.network.BeaconChannel` for an
            interface; defaults to joining ``group`` on ``port``.
        """

        self._group = group
        self._port = int(port)
        for label, value in (
            ("timeout", timeout),
            ("eviction_interval", eviction_interval),
            ("poll_interval", poll_interval),
        ):
            if float(value) <= 0.0:
                raise ValueError(f"{label} must be positive, got {value!r}")
        self._timeout = float(timeout)
        self._eviction_interval = float(eviction_interval)
        self._poll_interval = float(poll_interval)
        self._byte_order = byte_order
        self._clock = clock
        self._interface_provider = interface_provider
        if channel_factory is None:
            channel_factory = functools.partial(
                open_beacon_channel, group=self._group, port=self._port
            )
        self._channel_factory = channel_factory

        self._lock = threading.Lock()
        self._lifecycle = threading.RLock()
        self._listeners: List[DiscoveryListener] = []
        self._instances: Dict[Address, DiscoveredInstance] = {}
        self._last_seen: Dict[Address, float] = {}
        self._channels: List[BeaconChannel] = []
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()
        self._running = False
        self._beacons = 0
        self._malformed = 0

    @classmethod
    def from_settings(cls, settings: "DiscoverySettings", **overrides: object) -> "XPlaneDiscovery":
        """Create an engine configured from :class:`DiscoverySettings`."""

        options: Dict[str, object] = {
            "group": settings.group,
            "port": settings.port,
            "timeout": settings.timeout,
            "eviction_interval": settings.eviction_interval,
            "poll_interval": settings.poll_interval,
            "byte_order": settings.byte_order,
        }
        options.update(overrides)
        return cls(**options)  # type: ignore[arg-type]

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def instances(self) -> List[DiscoveredInstance]:
        """Snapshot of the instances currently considered alive."""

        with self._lock:
            return list(self._instances.values())

    @property
    def interfaces(self) -> List[str]:
        """Names of the interfaces the engine is listening on."""

        with self._lock:
            return [channel.interface.name for channel in self._channels]

    @property
    def statistics(self) -> dict[str, int]:
        with self._lock:
            return {
                "beacons": self._beacons,
                "malformed": self._malformed,
                "instances": len(self._instances),
                "listeners": len(self._listeners),
            }

    def add_listener(self, listener: DiscoveryListener) -> bool:
        """Subscribe ``listener`` and return whether the engine is running.

        A listener added while the engine runs immediately receives
        ``found_instance`` for every known instance.  Adding the first
        listener (or any listener after a failed start) starts the engine.
        """

        with self._lifecycle:
            with self._lock:
                if listener not in self._listeners:
                    self._listeners.append(listener)
                    if self._running:
                        for instance in list(self._instances.values()):
                            self._notify(listener, "found_instance", instance)
                running = self._running
            if not running:
                running = self._start()
            return running

    def remove_listener(self, listener: DiscoveryListener) -> None:
        """Unsubscribe ``listener``; removing the last one stops the engine.

        Stopping blocks until every receive thread has exited.
        """

        with self._lifecycle:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    return
                if self._listeners:
                    return
            self._shutdown()

    def process_beacon(self, source: Address, beacon: Beacon) -> DiscoveredInstance:
        """Record a beacon from ``source`` and announce new instances."""

        key = (str(source[0]), int(source[1]))
        now = self._clock()
        with self._lock:
            self._beacons += 1
            self._last_seen[key] = now
            instance = self._instances.get(key)
            if instance is not None:
                return instance
            instance = DiscoveredInstance.from_beacon(key, beacon)
            self._instances[key] = instance
            logger.info(
                "X-Plane instance found.",
                extra={
                    "event": "discovery.instance_found",
                    "instance": instance.name,
                    "source": f"{key[0]}:{key[1]}",
                },
            )
            for listener in list(self._listeners):
                self._notify(listener, "found_instance", instance)
            return instance

    def evict_lost_instances(self) -> List[DiscoveredInstance]:
        """Forget instances silent for longer than the timeout.

        Returns the evicted instances; each listener is told about every one
        of them exactly once.
        """

        cutoff = self._clock() - self._timeout
        with self._lock:
            expired = [key for key, seen in self._last_seen.items() if seen < cutoff]
            lost: List[DiscoveredInstance] = []
            for key in expired:
                del self._last_seen[key]
                instance = self._instances.pop(key, None)
                if instance is not None:
                    lost.append(instance)
            listeners = list(self._listeners)
            for instance in lost:
                logger.info(
                    "X-Plane instance lost.",
                    extra={
                        "event": "discovery.instance_lost",
                        "instance": instance.name,
                        "timeout": self._timeout,
                    },
                )
                for listener in listeners:
                    self._notify(listener, "lost_instance", instance)
        return lost

    def _notify(self, listener: DiscoveryListener, method: str, instance: DiscoveredInstance) -> None:
        try:
            getattr(listener, method)(instance)
        except Exception:
            logger.exception(
                "Discovery listener raised an exception.",
                extra={
                    "event": "discovery.listener_failed",
                    "callback": method,
                    "instance": instance.name,
                },
            )

    def _start(self) -> bool:
        channels: List[BeaconChannel] = []
        try:
            interfaces = list(self._interface_provider())
        except OSError as exc:
            logger.warning(
                "Unable to enumerate interfaces for discovery.",
                extra={"event": "discovery.enumeration_failed", "error": str(exc)},
            )
            interfaces = []
        for interface in interfaces:
            try:
                channels.append(self._channel_factory(interface))
            except OSError as exc:
                logger.warning(
                    "Unable to join the beacon group on interface.",
                    extra={
                        "event": "discovery.join_failed",
                        "interface": interface.name,
                        "address": interface.address,
                        "group": self._group,
                        "port": self._port,
                        "error": str(exc),
                    },
                )
        if not channels:
            logger.warning(
                "Discovery not started: no interface could receive beacons.",
                extra={"event": "discovery.no_interfaces", "candidates": len(interfaces)},
            )
            return False

        stop = threading.Event()
        threads = [
            threading.Thread(
                target=self._listen,
                args=(channel, stop),
                name=f"xplane-discovery-{channel.interface.name}",
                daemon=True,
            )
            for channel in channels
        ]
        threads.append(
            threading.Thread(
                target=self._evict_periodically,
                args=(stop,),
                name="xplane-discovery-eviction",
                daemon=True,
            )
        )
        with self._lock:
            self._stop = stop
            self._channels = channels
            self._threads = threads
            self._running = True
        for thread in threads:
            thread.start()
        logger.info(
            "Discovery started.",
            extra={
                "event": "discovery.started",
                "interfaces": [channel.interface.name for channel in channels],
                "group": self._group,
                "port": self._port,
            },
        )
        return True

    def _shutdown(self) -> None:
        with self._lock:
            stop = self._stop
            threads = list(self._threads)
            was_running = self._running
        stop.set()
        for thread in threads:
            thread.join()
        with self._lock:
            self._threads = []
            self._channels = []
            self._instances.clear()
            self._last_seen.clear()
            self._running = False
        if was_running:
            logger.info("Discovery stopped.", extra={"event": "discovery.stopped"})

    def _listen(self, channel: BeaconChannel, stop: threading.Event) -> None:
        sock = channel.sock
        try:
            while not stop.is_set():
                if sock.fileno() < 0:
                    break
                if not wait_for_read_ready(sock, timeout=self._poll_interval, stop=stop):
                    continue
                try:
                    payload, source = sock.recvfrom(BEACON_BUFFER_SIZE)
                except BlockingIOError:
                    continue
                except OSError as exc:
                    if not stop.is_set():
                        logger.error(
                            "Beacon receive failed; interface listener exits.",
                            extra={
                                "event": "discovery.receive_failed",
                                "interface": channel.interface.name,
                                "error": str(exc),
                            },
                        )
                    break
                self._handle_datagram(payload, source)
        finally:
            channel.close()

    def _handle_datagram(self, payload: bytes, source: Address) -> None:
        try:
            beacon = parse_beacon(payload, byte_order=self._byte_order)
        except DecodeError as exc:
            with self._lock:
                self._malformed += 1
            logger.warning(
                "Dropping malformed beacon.",
                extra={
                    "event": "discovery.decode_failed",
                    "source": f"{source[0]}:{source[1]}",
                    "size": len(payload),
                    "error": str(exc),
                },
            )
            return
        if beacon is None:
            return
        self.process_beacon(source, beacon)

    def _evict_periodically(self, stop: threading.Event) -> None:
        while not stop.wait(self._eviction_interval):
            self.evict_lost_instances()


_default_discovery: Optional[XPlaneDiscovery] = None
_default_lock = threading.Lock()


def default_discovery() -> XPlaneDiscovery:
    """Return the process-wide engine, creating it on first use."""

    global _default_discovery
    with _default_lock:
        if _default_discovery is None:
            _default_discovery = XPlaneDiscovery()
        return _default_discovery
