"""Logging utilities for xplane-udp."""

from xplane_udp.logging.config import JsonFormatter, setup_logging

__all__ = ["JsonFormatter", "setup_logging"]
