"""Error reporting for the xplane-udp command line tool."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

__all__ = ["CliError", "log_cli_error"]


logger = logging.getLogger("xplane_udp.cli")

# Process exit status per error category; unknown categories exit with 1.
EXIT_STATUS: Mapping[str, int] = {
    "runtime": 1,
    "usage": 2,
    "io": 3,
    "not_found": 4,
}


class CliError(RuntimeError):
    """Error raised by command handlers; carries the process exit status."""

    def __init__(
        self,
        message: str,
        *,
        category: str = "runtime",
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.context = {
            key: value if value is None or isinstance(value, (str, int, float)) else str(value)
            for key, value in (context or {}).items()
        }

    @property
    def status_code(self) -> int:
        return EXIT_STATUS.get(self.category, EXIT_STATUS["runtime"])


def log_cli_error(error: CliError, *, exc_info: Optional[BaseException] = None) -> None:
    """Log ``error`` as a ``cli.error`` event."""

    logger.error(
        str(error),
        extra={
            "event": "cli.error",
            "category": error.category,
            "status_code": error.status_code,
            "context": error.context,
        },
        exc_info=exc_info,
    )
