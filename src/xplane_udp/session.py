"""UDP session with a single X-Plane instance.

:class:`XPlaneSession` sends position, dataref, command and alert requests
to the simulator's control port and decodes the ``RPOS``/``RREF`` replies on
a background thread, forwarding them to registered :class:`XPlaneListener`
objects.
"""

from __future__ import annotations

import errno
import logging
import socket
import threading
from types import TracebackType
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from xplane_udp._socket_poll import wait_for_read_ready
from xplane_udp.codec import DataReader, resolve_byte_order
from xplane_udp.errors import DatarefDesyncError, DecodeError
from xplane_udp.protocol import (
    TAG_ALERT,
    TAG_COMMAND,
    TAG_DATAREF,
    TAG_POSITION,
    Position,
    decode_dataref_values,
    encode_alert,
    encode_command,
    encode_dataref_request,
    encode_position_request,
    read_tag,
)

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from xplane_udp.configuration import SessionSettings

__all__ = ["XPlaneListener", "XPlaneSession", "connect"]


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_RECEIVE_BUFFER = 1500
MAX_RECEIVE_FAILURES = 10

# Errors that mean the socket itself is unusable.
_FATAL_RECEIVE_ERRNOS = frozenset({errno.EBADF, errno.ENOTSOCK, errno.EINVAL})

Address = Tuple[str, int]


class XPlaneListener:
    """Receives decoded telemetry from an :class:`XPlaneSession`.

    Callbacks run on the session's receive thread.
    """

    def received_position(self, position: Position) -> None:
        pass

    def received_dataref(self, path: str, value: float) -> None:
        pass

    def dataref_desync(self, error: DatarefDesyncError) -> None:
        """Called when the simulator reports a slot this session never assigned."""


class XPlaneSession:
    """Control and telemetry channel to one simulator instance."""

    def __init__(
        self,
        address: Address,
        *,
        name: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        receive_buffer: int = DEFAULT_RECEIVE_BUFFER,
        byte_order: str = "native",
        sock: Optional[socket.socket] = None,
        start: bool = True,
    ) -> None:
        """Open a session towards ``address``.

        Parameters
        ----------
        address:
            ``(host, port)`` of the simulator's control port.
        name:
            Label used in logs; defaults to ``host:port``.
        poll_interval:
            Upper bound on how long the receive thread waits before checking
            whether the session was closed.
        receive_buffer:
            Largest datagram accepted from the simulator.
        byte_order:
            Byte order of encoded requests and decoded replies.
        sock:
            Pre-built UDP socket.  A non-blocking socket bound to an
            ephemeral port is created when omitted.
        start:
            Start the receive thread immediately.
        """

        resolve_byte_order(byte_order)
        self._address: Address = (str(address[0]), int(address[1]))
        self._name = name or f"{self._address[0]}:{self._address[1]}"
        if float(poll_interval) <= 0.0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval!r}")
        self._poll_interval = float(poll_interval)
        self._receive_buffer = int(receive_buffer)
        self._byte_order = byte_order
        if sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.bind(("", 0))
                sock.setblocking(False)
            except OSError:
                sock.close()
                raise
        self._socket = sock

        self._lock = threading.Lock()
        self._paths: List[str] = []
        self._slots: Dict[str, int] = {}
        self._listeners: List[XPlaneListener] = []
        self._counters: Dict[str, int] = {
            "received": 0,
            "positions": 0,
            "datarefs": 0,
            "unknown_messages": 0,
            "decode_errors": 0,
            "desyncs": 0,
            "send_errors": 0,
            "receive_errors": 0,
        }
        self._stop = threading.Event()
        self._closed = False
        self._thread: Optional[threading.Thread] = None
        if start:
            self.start()

    @classmethod
    def from_settings(
        cls, address: Address, settings: "SessionSettings", **overrides: object
    ) -> "XPlaneSession":
        options: Dict[str, object] = {
            "poll_interval": settings.poll_interval,
            "receive_buffer": settings.receive_buffer,
            "byte_order": settings.byte_order,
        }
        options.update(overrides)
        return cls(address, **options)  # type: ignore[arg-type]

    @property
    def address(self) -> Address:
        return self._address

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_address(self) -> Address:
        host, port = self._socket.getsockname()[:2]
        return host, port

    @property
    def watched_datarefs(self) -> List[str]:
        """Every path ever watched, in slot order."""

        with self._lock:
            return list(self._paths)

    @property
    def statistics(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def slot_for(self, path: str) -> Optional[int]:
        with self._lock:
            return self._slots.get(path)

    def start(self) -> None:
        """Start the receive thread if it is not running yet."""

        if self._thread is not None or self._closed:
            return
        self._thread = threading.Thread(
            target=self._receive_loop,
            name=f"xplane-session-{self._name}",
            daemon=True,
        )
        self._thread.start()

    def add_listener(self, listener: XPlaneListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: XPlaneListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # Outbound requests -------------------------------------------------

    def watch_position(self, frequency: int) -> None:
        """Ask for ``RPOS`` replies ``frequency`` times per second (0 stops)."""

        self._send(
            encode_position_request(frequency, byte_order=self._byte_order),
            TAG_POSITION,
        )

    def unwatch_position(self) -> None:
        self.watch_position(0)

    def watch_dataref(self, path: str, frequency: int) -> int:
        """Subscribe to ``path`` and return the slot it is reported under.

        The first watch of a path assigns the next free slot; later watches
        (including unsubscriptions with ``frequency=0``) reuse it.

        Raises :class:`ValueError` when ``frequency`` does not fit a signed
        32-bit integer; the slot table is left unchanged.
        """

        with self._lock:
            slot = self._slots.get(path)
            assigned = slot is None
            if assigned:
                slot = len(self._paths)
            payload = encode_dataref_request(path, slot, frequency, byte_order=self._byte_order)
            if assigned:
                self._paths.append(path)
                self._slots[path] = slot
        self._send(payload, TAG_DATAREF)
        return slot

    def unwatch_dataref(self, path: str) -> None:
        self.watch_dataref(path, 0)

    def send_command(self, name: str) -> None:
        """Trigger the simulator command ``name`` once.

        Raises :class:`~xplane_udp.errors.MessageTooLargeError` when the
        encoded request exceeds 500 bytes.
        """

        self._send(encode_command(name, byte_order=self._byte_order), TAG_COMMAND)

    def send_alert(
        self,
        line1: Optional[str] = None,
        line2: Optional[str] = None,
        line3: Optional[str] = None,
        line4: Optional[str] = None,
    ) -> None:
        """Show a four-line alert in the simulator; lines are cut to 239 bytes."""

        self._send(
            encode_alert(line1, line2, line3, line4, byte_order=self._byte_order),
            TAG_ALERT,
        )

    def _send(self, payload: bytes, request: str) -> None:
        try:
            self._socket.sendto(payload, self._address)
        except OSError as exc:
            with self._lock:
                self._counters["send_errors"] += 1
            logger.warning(
                "Failed to send request to X-Plane.",
                extra={
                    "event": "session.send_failed",
                    "session": self._name,
                    "request": request,
                    "size": len(payload),
                    "error": str(exc),
                },
            )

    # Inbound telemetry -------------------------------------------------

    def _receive_loop(self) -> None:
        """Receive and dispatch datagrams until closed or the socket fails.

        An isolated receive error is logged and retried after one poll
        interval. A socket-level error, or :data:`MAX_RECEIVE_FAILURES`
        failures in a row, ends the loop.
        """

        sock = self._socket
        failures = 0
        while not self._stop.is_set():
            if sock.fileno() < 0:
                break
            if not wait_for_read_ready(sock, timeout=self._poll_interval, stop=self._stop):
                continue
            try:
                payload, _source = sock.recvfrom(self._receive_buffer)
            except BlockingIOError:
                continue
            except OSError as exc:
                if self._stop.is_set():
                    break
                failures += 1
                with self._lock:
                    self._counters["receive_errors"] += 1
                fatal = exc.errno in _FATAL_RECEIVE_ERRNOS or failures >= MAX_RECEIVE_FAILURES
                logger.log(
                    logging.ERROR if fatal else logging.WARNING,
                    "Receiving from X-Plane failed.",
                    extra={
                        "event": "session.receive_failed",
                        "session": self._name,
                        "error": str(exc),
                        "failures": failures,
                        "stopped": fatal,
                    },
                )
                if fatal:
                    break
                self._stop.wait(self._poll_interval)
                continue
            failures = 0
            self._dispatch(payload)

    def _dispatch(self, payload: bytes) -> None:
        """Decode one datagram and forward it to the listeners."""

        with self._lock:
            self._counters["received"] += 1
        reader = DataReader(payload, byte_order=self._byte_order)
        try:
            tag = read_tag(reader)
            if tag == TAG_POSITION:
                self._deliver_position(Position.from_reader(reader))
            elif tag == TAG_DATAREF:
                for slot, value in decode_dataref_values(reader):
                    self._deliver_dataref(slot, value)
            else:
                with self._lock:
                    self._counters["unknown_messages"] += 1
                logger.warning(
                    "Ignoring message with unknown tag.",
                    extra={
                        "event": "session.unknown_message",
                        "session": self._name,
                        "tag": tag,
                        "size": len(payload),
                    },
                )
        except DecodeError as exc:
            with self._lock:
                self._counters["decode_errors"] += 1
            logger.warning(
                "Dropping malformed datagram.",
                extra={
                    "event": "session.decode_failed",
                    "session": self._name,
                    "size": len(payload),
                    "error": str(exc),
                },
            )

    def _path_for_slot(self, slot: int, value: float) -> str:
        with self._lock:
            if 0 <= slot < len(self._paths):
                return self._paths[slot]
        raise DatarefDesyncError(slot, value)

    def _deliver_position(self, position: Position) -> None:
        with self._lock:
            self._counters["positions"] += 1
            listeners = list(self._listeners)
        for listener in listeners:
            self._call(listener.received_position, position)

    def _deliver_dataref(self, slot: int, value: float) -> None:
        try:
            path = self._path_for_slot(slot, value)
        except DatarefDesyncError as error:
            with self._lock:
                self._counters["desyncs"] += 1
                listeners = list(self._listeners)
            logger.error(
                "Received a dataref value for an unknown slot.",
                extra={
                    "event": "session.dataref_desync",
                    "session": self._name,
                    "slot": error.index,
                    "value": error.value,
                },
            )
            for listener in listeners:
                self._call(listener.dataref_desync, error)
            return
        with self._lock:
            self._counters["datarefs"] += 1
            listeners = list(self._listeners)
        for listener in listeners:
            self._call(listener.received_dataref, path, value)

    def _call(self, callback, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(
                "Session listener raised an exception.",
                extra={
                    "event": "session.listener_failed",
                    "session": self._name,
                    "callback": getattr(callback, "__name__", repr(callback)),
                },
            )

    # Lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """Stop every stream, end the receive thread and close the socket.

        Calling :meth:`close` more than once has no further effect.
        """

        with self._lock:
            if self._closed:
                return
            self._closed = True
            paths = list(self._paths)
        self.unwatch_position()
        for path in paths:
            self.unwatch_dataref(path)
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._socket.close()
        logger.info(
            "Session closed.",
            extra={"event": "session.closed", "session": self._name, **self.statistics},
        )

    def __enter__(self) -> "XPlaneSession":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def connect(
    address: Address,
    *,
    name: Optional[str] = None,
    settings: Optional["SessionSettings"] = None,
    **options: object,
) -> XPlaneSession:
    """Open an :class:`XPlaneSession` to ``address``.

    ``settings`` supplies defaults that keyword ``options`` may override.
    """

    if settings is not None:
        return XPlaneSession.from_settings(address, settings, name=name, **options)
    return XPlaneSession(address, name=name, **options)  # type: ignore[arg-type]
