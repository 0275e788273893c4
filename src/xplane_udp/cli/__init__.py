"""Command line interface for xplane-udp."""

from xplane_udp.cli.app import main, run_cli
from xplane_udp.cli.errors import CliError

__all__ = ["CliError", "main", "run_cli"]
