"""Argument parsing helpers for the xplane-udp CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Mapping, Optional

from xplane_udp.cli.commands import (
    handle_alert,
    handle_command,
    handle_discover,
    handle_watch,
)
from xplane_udp.protocol import ALERT_LINES


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port {value!r}") from None
    if not 0 < port <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _duration(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid duration {value!r}") from None
    if seconds < 0:
        raise argparse.ArgumentTypeError("duration must not be negative")
    return seconds


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("host", help="Address of the X-Plane instance.")
    parser.add_argument("port", type=_port, help="X-Plane UDP control port (usually 49000).")


def build_parser(config: Optional[Mapping[str, Any]] = None) -> argparse.ArgumentParser:
    config = dict(config or {})
    logging_cfg = dict(config.get("logging", {}))

    parser = argparse.ArgumentParser(
        prog="xplane-udp",
        description="Discover and talk to X-Plane instances over UDP.",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to a TOML configuration file or a pyproject.toml.",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=logging_cfg.get("level", "info"),
        help="Logging level (e.g. debug, info, warning).",
    )
    parser.add_argument(
        "--log-output",
        dest="log_output",
        default=logging_cfg.get("output", "stderr"),
        help="Logging destination (stdout, stderr or a file path).",
    )
    parser.add_argument(
        "--log-format",
        dest="log_format",
        choices=("json", "text"),
        default=logging_cfg.get("format", "text"),
        help="Logging formatter (json or text).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    discover_parser = subparsers.add_parser(
        "discover",
        help="Listen for X-Plane beacons and report instances as they come and go.",
    )
    discover_parser.add_argument(
        "--duration",
        type=_duration,
        default=None,
        help="Seconds to listen before exiting (default: until interrupted).",
    )
    discover_parser.set_defaults(handler=handle_discover)

    watch_parser = subparsers.add_parser(
        "watch",
        help="Stream the aircraft position and dataref values from an instance.",
    )
    _add_target_arguments(watch_parser)
    watch_parser.add_argument(
        "--position",
        dest="position_frequency",
        type=int,
        default=0,
        metavar="HZ",
        help="Position updates per second (0-99, default: off).",
    )
    watch_parser.add_argument(
        "--dataref",
        dest="datarefs",
        action="append",
        default=[],
        metavar="PATH",
        help="Dataref to subscribe to; may be repeated.",
    )
    watch_parser.add_argument(
        "--frequency",
        type=int,
        default=1,
        metavar="HZ",
        help="Dataref updates per second (default: 1).",
    )
    watch_parser.add_argument(
        "--duration",
        type=_duration,
        default=None,
        help="Seconds to stream before exiting (default: until interrupted).",
    )
    watch_parser.set_defaults(handler=handle_watch)

    command_parser = subparsers.add_parser("command", help="Trigger a simulator command once.")
    _add_target_arguments(command_parser)
    command_parser.add_argument("name", help="Command path, e.g. sim/operation/pause_toggle.")
    command_parser.set_defaults(handler=handle_command)

    alert_parser = subparsers.add_parser("alert", help="Show an alert message in the simulator.")
    _add_target_arguments(alert_parser)
    alert_parser.add_argument(
        "lines",
        nargs="+",
        metavar="LINE",
        help=f"Up to {ALERT_LINES} lines of text.",
    )
    alert_parser.set_defaults(handler=handle_alert)

    return parser
