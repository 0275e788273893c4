"""Command handlers for the xplane-udp CLI.

Each handler receives the parsed namespace and the loaded configuration and
returns the summary printed once the command finishes.  Live events are
written to standard output as they arrive.
"""

from __future__ import annotations

import argparse
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator, List, Mapping, Optional, Tuple

from xplane_udp.cli.errors import CliError
from xplane_udp.configuration import DiscoverySettings, SessionSettings
from xplane_udp.discovery import (
    CallbackDiscoveryListener,
    DiscoveredInstance,
    XPlaneDiscovery,
)
from xplane_udp.errors import ConfigurationError, DatarefDesyncError, MessageTooLargeError
from xplane_udp.protocol import ALERT_LINES, Position
from xplane_udp.session import XPlaneListener, XPlaneSession, connect

__all__ = [
    "handle_alert",
    "handle_command",
    "handle_discover",
    "handle_watch",
]


def _emit(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


def _wait(duration: Optional[float]) -> None:
    """Block for ``duration`` seconds, or until interrupted when ``None``."""

    try:
        if duration is None:
            while True:
                time.sleep(3600)
        else:
            time.sleep(duration)
    except KeyboardInterrupt:
        _emit("Interrupted.")


def _discovery_settings(config: Mapping[str, Any]) -> DiscoverySettings:
    try:
        return DiscoverySettings.from_mapping(config)
    except ConfigurationError as exc:
        raise CliError(str(exc), category="usage") from exc


def _session_settings(config: Mapping[str, Any]) -> SessionSettings:
    try:
        return SessionSettings.from_mapping(config)
    except ConfigurationError as exc:
        raise CliError(str(exc), category="usage") from exc


def _create_discovery(settings: DiscoverySettings) -> XPlaneDiscovery:
    return XPlaneDiscovery.from_settings(settings)


def _open_session(
    address: Tuple[str, int], settings: SessionSettings, *, start: bool = True
) -> XPlaneSession:
    return connect(address, settings=settings, start=start)


@contextmanager
def _session(
    namespace: argparse.Namespace, config: Mapping[str, Any], *, start: bool = True
) -> Iterator[XPlaneSession]:
    settings = _session_settings(config)
    address = (namespace.host, namespace.port)
    try:
        session = _open_session(address, settings, start=start)
    except OSError as exc:
        raise CliError(
            f"Unable to open a UDP socket: {exc}",
            category="io",
            context={"host": namespace.host, "port": namespace.port},
        ) from exc
    with session:
        yield session


def format_position(position: Position) -> str:
    return (
        f"position lat={position.latitude:.6f} lon={position.longitude:.6f} "
        f"msl={position.elevation_msl:.1f}m agl={position.elevation_agl:.1f}m "
        f"hdg={position.heading:.1f} pitch={position.pitch:.1f} roll={position.roll:.1f}"
    )


class _PrintingListener(XPlaneListener):
    def received_position(self, position: Position) -> None:
        _emit(format_position(position))

    def received_dataref(self, path: str, value: float) -> None:
        _emit(f"{path} = {value:g}")

    def dataref_desync(self, error: DatarefDesyncError) -> None:
        _emit(f"desync: {error}")


def handle_discover(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    settings = _discovery_settings(config)
    discovery = _create_discovery(settings)
    found: List[DiscoveredInstance] = []

    def on_found(instance: DiscoveredInstance) -> None:
        found.append(instance)
        _emit(f"found {instance.name}")

    def on_lost(instance: DiscoveredInstance) -> None:
        _emit(f"lost {instance.name}")

    listener = CallbackDiscoveryListener(found=on_found, lost=on_lost)
    if not discovery.add_listener(listener):
        discovery.remove_listener(listener)
        raise CliError(
            "Discovery could not start: no network interface joined the beacon group.",
            category="io",
            context={"group": settings.group, "port": settings.port},
        )
    try:
        _emit(
            f"Listening for X-Plane beacons on {', '.join(discovery.interfaces)} "
            f"({settings.group}:{settings.port})"
        )
        _wait(namespace.duration)
    finally:
        discovery.remove_listener(listener)
    return f"{len(found)} instance(s) discovered."


def handle_watch(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    if namespace.position_frequency <= 0 and not namespace.datarefs:
        raise CliError(
            "Nothing to watch: pass --position and/or --dataref.",
            category="usage",
        )
    with _session(namespace, config) as session:
        session.add_listener(_PrintingListener())
        if namespace.position_frequency > 0:
            session.watch_position(namespace.position_frequency)
        for path in namespace.datarefs:
            session.watch_dataref(path, namespace.frequency)
        _wait(namespace.duration)
        statistics = session.statistics
    return (
        f"Received {statistics['positions']} position(s) and "
        f"{statistics['datarefs']} dataref value(s) from {namespace.host}:{namespace.port}."
    )


def handle_command(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    with _session(namespace, config, start=False) as session:
        try:
            session.send_command(namespace.name)
        except MessageTooLargeError as exc:
            raise CliError(str(exc), category="usage", context={"command": namespace.name}) from exc
    return f"Sent command {namespace.name} to {namespace.host}:{namespace.port}."


def handle_alert(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    lines = list(namespace.lines)
    if len(lines) > ALERT_LINES:
        raise CliError(
            f"An alert holds at most {ALERT_LINES} lines, got {len(lines)}.",
            category="usage",
        )
    with _session(namespace, config, start=False) as session:
        session.send_alert(*lines)
    return f"Sent alert to {namespace.host}:{namespace.port}."
