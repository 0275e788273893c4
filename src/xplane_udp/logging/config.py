"""Handler and formatter configuration for the command line tools.

The library modules only create loggers; handlers are installed by
:func:`setup_logging`, which the CLI calls with the ``logging`` table of the
loaded configuration.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

__all__ = ["JsonFormatter", "setup_logging"]


_RESERVED_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_MARKER = "_xplane_udp_handler"


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Standard fields are ``timestamp``, ``level``, ``logger`` and ``message``;
    every ``extra`` attribute attached to the record is added verbatim, with
    values that are not JSON serialisable converted through :func:`str`.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRIBUTES or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, sort_keys=False)


def _resolve_level(value: Any) -> int:
    if isinstance(value, int):
        return value
    name = str(value or "info").strip().upper()
    level = logging.getLevelName(name)
    if isinstance(level, int):
        return level
    raise ValueError(f"Unknown logging level {value!r}")


def _build_handler(output: str) -> logging.Handler:
    target = (output or "stderr").strip()
    if target.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    if target.lower() == "stderr":
        return logging.StreamHandler(sys.stderr)
    path = Path(target).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(
    config: Optional[Mapping[str, Any]] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> logging.Handler:
    """Install a single handler described by ``config["logging"]``.

    Recognised keys are ``level`` (``debug``, ``info``, ...), ``output``
    (``stdout``, ``stderr`` or a file path) and ``format`` (``json`` or
    ``text``).  Calling the function again replaces the handler installed
    by a previous call.  Returns the new handler.
    """

    logging_cfg: Mapping[str, Any] = {}
    if config:
        section = config.get("logging", {})
        if isinstance(section, Mapping):
            logging_cfg = section

    target = logger or logging.getLogger()
    level = _resolve_level(logging_cfg.get("level", "info"))
    handler = _build_handler(str(logging_cfg.get("output", "stderr")))
    fmt = str(logging_cfg.get("format", "json")).strip().lower()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    elif fmt == "text":
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    else:
        handler.close()
        raise ValueError(f"Unknown logging format {fmt!r}; expected 'json' or 'text'")
    setattr(handler, _HANDLER_MARKER, True)

    for existing in list(target.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            target.removeHandler(existing)
            existing.close()
    target.addHandler(handler)
    target.setLevel(level)
    return handler
