"""Tests for the X-Plane UDP session."""

from __future__ import annotations

import errno
import logging
import threading
import socket
import struct
from typing import Iterator

import pytest

from tests.helpers import (
    DEFAULT_POSITION,
    QueueUDPSocket,
    RecordingSessionListener,
    build_dataref_payload,
    build_position_payload,
    patch_wait_for_read_ready,
    wait_until,
)
from xplane_udp import session as session_module
from xplane_udp.configuration import SessionSettings
from xplane_udp.errors import DatarefDesyncError, MessageTooLargeError
from xplane_udp.protocol import Position, encode_dataref_request, encode_position_request
from xplane_udp.session import XPlaneListener, XPlaneSession, connect

SIM_ADDRESS = ("192.168.1.20", 49000)


@pytest.fixture
def fake_socket() -> QueueUDPSocket:
    return QueueUDPSocket()


@pytest.fixture
def session(fake_socket: QueueUDPSocket) -> Iterator[XPlaneSession]:
    client = XPlaneSession(SIM_ADDRESS, sock=fake_socket, start=False)  # type: ignore[arg-type]
    yield client
    client.close()


def test_watch_position_sends_clamped_frequency(
    session: XPlaneSession, fake_socket: QueueUDPSocket
) -> None:
    session.watch_position(10)
    session.watch_position(500)
    session.unwatch_position()

    assert fake_socket.sent == [
        (b"RPOS\x0010\x00", SIM_ADDRESS),
        (b"RPOS\x0099\x00", SIM_ADDRESS),
        (b"RPOS\x000\x00", SIM_ADDRESS),
    ]


def test_dataref_slots_are_assigned_in_first_watch_order(
    session: XPlaneSession, fake_socket: QueueUDPSocket
) -> None:
    assert session.watch_dataref("sim/a", 5) == 0
    assert session.watch_dataref("sim/b", 5) == 1
    assert session.watch_dataref("sim/a", 10) == 0

    session.unwatch_dataref("sim/a")
    assert session.watch_dataref("sim/c", 1) == 2

    assert session.watched_datarefs == ["sim/a", "sim/b", "sim/c"]


def test_out_of_range_frequency_leaves_slot_table_unchanged(
    session: XPlaneSession, fake_socket: QueueUDPSocket
) -> None:
    with pytest.raises(ValueError):
        session.watch_dataref("sim/a", 2**31)

    assert session.watched_datarefs == []
    assert session.slot_for("sim/a") is None
    assert fake_socket.sent == []
    assert session.watch_dataref("sim/b", 1) == 0
    assert session.slot_for("sim/b") == 1
    assert session.slot_for("sim/unknown") is None
    assert fake_socket.payloads == [
        encode_dataref_request("sim/a", 0, 5),
        encode_dataref_request("sim/b", 1, 5),
        encode_dataref_request("sim/a", 0, 10),
        encode_dataref_request("sim/a", 0, 0),
        encode_dataref_request("sim/c", 2, 1),
    ]


def test_dataref_request_carries_frequency_slot_and_path(
    fake_socket: QueueUDPSocket,
) -> None:
    client = XPlaneSession(
        SIM_ADDRESS, sock=fake_socket, start=False, byte_order="little"  # type: ignore[arg-type]
    )
    client.watch_dataref("sim/flightmodel/position/indicated_airspeed", 20)

    payload = fake_socket.payloads[0]
    assert len(payload) == 413
    assert payload[5:13] == struct.pack("<ii", 20, 0)
    assert payload[13:].startswith(b"sim/flightmodel/position/indicated_airspeed\0 ")


def test_send_command_and_limit(session: XPlaneSession, fake_socket: QueueUDPSocket) -> None:
    session.send_command("sim/operation/pause_toggle")

    with pytest.raises(MessageTooLargeError):
        session.send_command("x" * 600)

    assert fake_socket.payloads == [b"CMND\0sim/operation/pause_toggle\0"]


def test_send_alert_pads_four_lines(session: XPlaneSession, fake_socket: QueueUDPSocket) -> None:
    session.send_alert("Line one", "Line two")

    payload = fake_socket.payloads[0]
    assert len(payload) == 965
    assert payload[5:245] == b"Line one\0".ljust(240, b" ")
    assert payload[245:485] == b"Line two\0".ljust(240, b" ")
    assert payload[485:725] == b"\0" + b" " * 239


def test_send_failure_is_logged_and_counted(caplog: pytest.LogCaptureFixture) -> None:
    failing = QueueUDPSocket(send_error=OSError("network unreachable"))
    client = XPlaneSession(SIM_ADDRESS, sock=failing, start=False)  # type: ignore[arg-type]

    with caplog.at_level(logging.WARNING, logger="xplane_udp.session"):
        client.watch_position(5)

    assert client.statistics["send_errors"] == 1
    assert caplog.records[-1].event == "session.send_failed"
    assert caplog.records[-1].request == "RPOS"


def test_close_unwatches_everything_once(
    session: XPlaneSession, fake_socket: QueueUDPSocket
) -> None:
    session.watch_position(5)
    session.watch_dataref("sim/a", 5)
    session.watch_dataref("sim/b", 5)
    session.unwatch_dataref("sim/b")
    sent_before_close = len(fake_socket.sent)

    session.close()
    session.close()

    assert fake_socket.payloads[sent_before_close:] == [
        encode_position_request(0),
        encode_dataref_request("sim/a", 0, 0),
        encode_dataref_request("sim/b", 1, 0),
    ]
    assert fake_socket.closed
    assert session.closed


def test_context_manager_closes_session(fake_socket: QueueUDPSocket) -> None:
    with XPlaneSession(SIM_ADDRESS, sock=fake_socket, start=False) as client:  # type: ignore[arg-type]
        client.watch_position(1)

    assert client.closed
    assert fake_socket.closed


def test_position_reply_reaches_listeners(session: XPlaneSession) -> None:
    listener = RecordingSessionListener()
    session.add_listener(listener)

    session._dispatch(build_position_payload())

    assert listener.positions == [Position(*DEFAULT_POSITION)]
    assert session.statistics["positions"] == 1


def test_position_reply_in_explicit_byte_order(fake_socket: QueueUDPSocket) -> None:
    client = XPlaneSession(
        SIM_ADDRESS, sock=fake_socket, start=False, byte_order="big"  # type: ignore[arg-type]
    )
    listener = RecordingSessionListener()
    client.add_listener(listener)

    client._dispatch(build_position_payload(order=">", padding=39))

    assert listener.positions[0].latitude == DEFAULT_POSITION[1]


def test_dataref_values_are_delivered_by_path(session: XPlaneSession) -> None:
    listener = RecordingSessionListener()
    session.add_listener(listener)
    session.watch_dataref("sim/a", 5)
    session.watch_dataref("sim/b", 5)

    session._dispatch(build_dataref_payload([(1, 2.5), (0, -1.0)]))

    assert listener.datarefs == [("sim/b", 2.5), ("sim/a", -1.0)]
    assert session.statistics["datarefs"] == 2


def test_unknown_slot_is_reported_as_desync(
    session: XPlaneSession, caplog: pytest.LogCaptureFixture
) -> None:
    listener = RecordingSessionListener()
    session.add_listener(listener)
    session.watch_dataref("sim/a", 5)

    with caplog.at_level(logging.WARNING, logger="xplane_udp.session"):
        session._dispatch(build_dataref_payload([(7, 3.0), (0, 4.0)]))

    assert len(listener.desyncs) == 1
    error = listener.desyncs[0]
    assert isinstance(error, DatarefDesyncError)
    assert (error.index, error.value) == (7, 3.0)
    assert listener.datarefs == [("sim/a", 4.0)]
    desync_records = [
        r for r in caplog.records if getattr(r, "event", None) == "session.dataref_desync"
    ]
    assert desync_records and desync_records[0].levelno == logging.ERROR
    assert session.statistics["desyncs"] == 1


def test_unknown_tag_is_ignored_with_warning(
    session: XPlaneSession, caplog: pytest.LogCaptureFixture
) -> None:
    listener = RecordingSessionListener()
    session.add_listener(listener)

    with caplog.at_level(logging.WARNING, logger="xplane_udp.session"):
        session._dispatch(b"DATA*" + b"\0" * 36)

    assert listener.positions == listener.datarefs == listener.desyncs == []
    record = caplog.records[-1]
    assert record.event == "session.unknown_message"
    assert record.levelno == logging.WARNING
    assert record.tag == "DATA"
    assert session.statistics["unknown_messages"] == 1


def test_truncated_datagram_is_dropped(session: XPlaneSession) -> None:
    listener = RecordingSessionListener()
    session.add_listener(listener)

    session._dispatch(build_position_payload()[:40])
    session._dispatch(b"")

    assert listener.positions == []
    assert session.statistics["decode_errors"] == 2
    assert session.statistics["received"] == 2


def test_removed_listener_is_not_called(session: XPlaneSession) -> None:
    listener = RecordingSessionListener()
    session.add_listener(listener)
    session.add_listener(listener)
    session.remove_listener(listener)
    session.remove_listener(listener)

    session._dispatch(build_position_payload())

    assert listener.positions == []


def test_failing_listener_does_not_stop_delivery(
    session: XPlaneSession, caplog: pytest.LogCaptureFixture
) -> None:
    class Exploding(XPlaneListener):
        def received_position(self, position: Position) -> None:
            raise RuntimeError("boom")

    healthy = RecordingSessionListener()
    session.add_listener(Exploding())
    session.add_listener(healthy)

    with caplog.at_level(logging.ERROR, logger="xplane_udp.session"):
        session._dispatch(build_position_payload())

    assert len(healthy.positions) == 1
    assert caplog.records[-1].event == "session.listener_failed"


def test_receive_loop_drains_queued_datagrams(
    monkeypatch: pytest.MonkeyPatch, fake_socket: QueueUDPSocket
) -> None:
    fake_socket.queue.extend([build_position_payload(), build_position_payload()])
    client = XPlaneSession(SIM_ADDRESS, sock=fake_socket, start=False)  # type: ignore[arg-type]
    listener = RecordingSessionListener()
    client.add_listener(listener)

    def stop_when_drained(_sock: object, _timeout: float) -> bool:
        if not fake_socket.queue:
            client._stop.set()
            return False
        return True

    timeouts = patch_wait_for_read_ready(monkeypatch, session_module, hook=stop_when_drained)
    client._receive_loop()

    assert len(listener.positions) == 2
    assert timeouts and timeouts[0] == pytest.approx(0.25)


def test_from_settings_and_connect_apply_settings(fake_socket: QueueUDPSocket) -> None:
    settings = SessionSettings(poll_interval=0.05, receive_buffer=2048, byte_order="little")

    client = connect(
        SIM_ADDRESS, name="cockpit", settings=settings, sock=fake_socket, start=False
    )

    assert client.name == "cockpit"
    assert client.address == SIM_ADDRESS
    assert client._receive_buffer == 2048
    assert client._byte_order == "little"
    client.close()


def test_default_name_is_host_and_port(fake_socket: QueueUDPSocket) -> None:
    client = XPlaneSession(("10.0.0.1", 49000), sock=fake_socket, start=False)  # type: ignore[arg-type]

    assert client.name == "10.0.0.1:49000"
    client.close()


def test_round_trip_with_simulator_over_loopback() -> None:
    simulator = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    simulator.bind(("127.0.0.1", 0))
    simulator.settimeout(2.0)
    listener = RecordingSessionListener()
    client = XPlaneSession(simulator.getsockname(), poll_interval=0.01)
    try:
        client.add_listener(listener)
        slot = client.watch_dataref("sim/time/total_running_time_sec", 10)
        request, session_address = simulator.recvfrom(1024)
        assert session_address[1] == client.local_address[1]
        assert request == encode_dataref_request("sim/time/total_running_time_sec", slot, 10)

        simulator.sendto(build_dataref_payload([(slot, 12.5)]), session_address)
        simulator.sendto(build_position_payload(), session_address)

        assert wait_until(lambda: listener.datarefs and listener.positions)
        assert listener.datarefs == [("sim/time/total_running_time_sec", 12.5)]
        assert listener.positions == [Position(*DEFAULT_POSITION)]
    finally:
        client.close()

    unwatch_position, _ = simulator.recvfrom(1024)
    unwatch_dataref, _ = simulator.recvfrom(1024)
    simulator.close()
    assert unwatch_position == encode_position_request(0)
    assert unwatch_dataref == encode_dataref_request("sim/time/total_running_time_sec", slot, 0)
    assert client._thread is not None and not client._thread.is_alive()


def test_socket_failure_ends_receive_loop(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    broken = QueueUDPSocket(recv_error=OSError(errno.EBADF, "Bad file descriptor"))
    client = XPlaneSession(SIM_ADDRESS, sock=broken, start=False)  # type: ignore[arg-type]
    patch_wait_for_read_ready(monkeypatch, session_module)

    with caplog.at_level(logging.WARNING, logger="xplane_udp.session"):
        client._receive_loop()

    assert broken.recv_calls == 1
    assert client.statistics["receive_errors"] == 1
    failures = [r for r in caplog.records if getattr(r, "event", None) == "session.receive_failed"]
    assert len(failures) == 1
    assert failures[0].levelno == logging.ERROR
    assert failures[0].stopped is True
    client.close()


def test_repeated_receive_errors_end_loop_after_limit(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    flaky = QueueUDPSocket(recv_error=OSError(errno.ENETDOWN, "Network is down"))
    client = XPlaneSession(
        SIM_ADDRESS, sock=flaky, start=False, poll_interval=0.001  # type: ignore[arg-type]
    )
    patch_wait_for_read_ready(monkeypatch, session_module)

    with caplog.at_level(logging.WARNING, logger="xplane_udp.session"):
        client._receive_loop()

    assert flaky.recv_calls == session_module.MAX_RECEIVE_FAILURES
    levels = [
        r.levelno for r in caplog.records if getattr(r, "event", None) == "session.receive_failed"
    ]
    assert levels == [logging.WARNING] * (session_module.MAX_RECEIVE_FAILURES - 1) + [
        logging.ERROR
    ]
    client.close()


def test_isolated_receive_error_is_tolerated(
    monkeypatch: pytest.MonkeyPatch, fake_socket: QueueUDPSocket
) -> None:
    fake_socket.recv_error = OSError(errno.ECONNREFUSED, "Connection refused")
    fake_socket.queue.append(build_position_payload())
    client = XPlaneSession(
        SIM_ADDRESS, sock=fake_socket, start=False, poll_interval=0.001  # type: ignore[arg-type]
    )
    listener = RecordingSessionListener()
    client.add_listener(listener)

    def recover_then_stop(_sock: object, _timeout: float) -> bool:
        if fake_socket.recv_calls == 1:
            fake_socket.recv_error = None
        if fake_socket.recv_calls >= 2 and not fake_socket.queue:
            client._stop.set()
            return False
        return True

    patch_wait_for_read_ready(monkeypatch, session_module, hook=recover_then_stop)
    client._receive_loop()

    assert len(listener.positions) == 1
    assert client.statistics["receive_errors"] == 1
    client.close()


@pytest.mark.parametrize("poll_interval", [0, -0.5])
def test_non_positive_poll_interval_is_rejected(
    fake_socket: QueueUDPSocket, poll_interval: float
) -> None:
    with pytest.raises(ValueError, match="poll_interval must be positive"):
        XPlaneSession(
            SIM_ADDRESS, sock=fake_socket, poll_interval=poll_interval, start=False  # type: ignore[arg-type]
        )


def test_concurrent_watches_get_unique_consecutive_slots(session: XPlaneSession) -> None:
    workers = 8
    per_worker = 25
    barrier = threading.Barrier(workers)
    slots: dict[str, int] = {}
    slots_lock = threading.Lock()

    def watch_many(worker: int) -> None:
        barrier.wait()
        for index in range(per_worker):
            path = f"sim/test/worker{worker}/value{index}"
            slot = session.watch_dataref(path, 1)
            with slots_lock:
                slots[path] = slot

    threads = [threading.Thread(target=watch_many, args=(worker,)) for worker in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(slots.values()) == list(range(workers * per_worker))
    assert [slots[path] for path in session.watched_datarefs] == list(
        range(workers * per_worker)
    )
