"""Helpers to load discovery, session and logging configuration."""

from __future__ import annotations

from collections.abc import Mapping as ABCMapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from xplane_udp.codec import resolve_byte_order
from xplane_udp.errors import ConfigurationError
from xplane_udp.protocol import DISCOVERY_PORT, MULTICAST_GROUP

__all__ = [
    "DiscoverySettings",
    "SessionSettings",
    "load_config",
    "load_project_config",
]


_PROJECT_FILENAME = "pyproject.toml"
_TOOL_SECTION = "xplane_udp"


def _as_dict(payload: ABCMapping[str, Any]) -> dict[str, Any]:
    """Recursively coerce TOML mappings into regular dictionaries."""

    result: dict[str, Any] = {}
    for key, value in payload.items():
        key_str = str(key)
        if isinstance(value, ABCMapping):
            result[key_str] = _as_dict(value)
        elif isinstance(value, list):
            result[key_str] = [
                _as_dict(item) if isinstance(item, ABCMapping) else item for item in value
            ]
        else:
            result[key_str] = value
    return result


def _resolve_pyproject_path(candidate: Path) -> Path | None:
    candidate = candidate.expanduser()
    if candidate.name == _PROJECT_FILENAME:
        return candidate
    if candidate.suffix:
        return None
    return candidate / _PROJECT_FILENAME


def _load_toml_mapping(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in '{path}': {exc}") from exc
    if isinstance(data, ABCMapping):
        return _as_dict(data)
    return None


def load_project_config(path: Path) -> tuple[dict[str, Any], Path] | None:
    """Load the ``[tool.xplane_udp]`` section from ``pyproject.toml``.

    ``path`` may point at the file itself or at the directory holding it.
    Returns ``None`` when the file or the section is missing.
    """

    pyproject_path = _resolve_pyproject_path(Path(path))
    if pyproject_path is None:
        return None

    pyproject_path = pyproject_path.expanduser().resolve(strict=False)
    payload = _load_toml_mapping(pyproject_path)
    if not payload:
        return None

    tool_section = payload.get("tool")
    if not isinstance(tool_section, ABCMapping):
        return None

    section = tool_section.get(_TOOL_SECTION)
    if not isinstance(section, ABCMapping):
        return None

    return _as_dict(section), pyproject_path


def load_config(path: Path | str | None = None) -> dict[str, Any]:
    """Return configuration from ``path`` or from the working directory.

    A ``pyproject.toml`` contributes its ``[tool.xplane_udp]`` table; any
    other TOML file is used as a whole.  Missing files yield an empty
    mapping.  The resolved source is recorded under ``_config_path``.
    """

    if path is None:
        loaded = load_project_config(Path.cwd())
        if loaded is None:
            return {}
        config, source = loaded
        config["_config_path"] = str(source)
        return config

    candidate = Path(path).expanduser()
    if candidate.name == _PROJECT_FILENAME or candidate.is_dir():
        loaded = load_project_config(candidate)
        if loaded is None:
            return {}
        config, source = loaded
        config["_config_path"] = str(source)
        return config

    if not candidate.exists():
        raise ConfigurationError(f"Configuration file '{candidate}' does not exist")
    config = _load_toml_mapping(candidate) or {}
    config["_config_path"] = str(candidate.resolve(strict=False))
    return config


def _section(config: Mapping[str, Any] | None, name: str) -> dict[str, Any]:
    if not config:
        return {}
    section = config.get(name, {})
    if not isinstance(section, ABCMapping):
        raise ConfigurationError(f"'{name}' configuration must be a table")
    return dict(section)


def _positive_float(section: str, key: str, value: Any) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{section}.{key} must be a number, got {value!r}") from None
    if numeric <= 0.0:
        raise ConfigurationError(f"{section}.{key} must be positive, got {value!r}")
    return numeric


def _port(section: str, key: str, value: Any) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{section}.{key} must be an integer, got {value!r}") from None
    if not 0 <= numeric <= 0xFFFF:
        raise ConfigurationError(f"{section}.{key} must be a valid UDP port, got {value!r}")
    return numeric


def _byte_order(section: str, value: Any) -> str:
    try:
        resolve_byte_order(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"{section}.byte_order: {exc}") from None
    return str(value)


def _reject_unknown(section: str, payload: Mapping[str, Any], known: set[str]) -> None:
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {section} option(s): {', '.join(unknown)}"
        )


@dataclass(frozen=True, slots=True)
class DiscoverySettings:
    """Tunables of :class:`~xplane_udp.discovery.XPlaneDiscovery`."""

    group: str = MULTICAST_GROUP
    port: int = DISCOVERY_PORT
    timeout: float = 30.0
    eviction_interval: float = 1.0
    poll_interval: float = 0.25
    byte_order: str = "native"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any] | None) -> "DiscoverySettings":
        """Build settings from the ``discovery`` table of ``config``."""

        payload = _section(config, "discovery")
        _reject_unknown("discovery", payload, {field.name for field in fields(cls)})
        settings = cls()
        updates: dict[str, Any] = {}
        if "group" in payload:
            updates["group"] = str(payload["group"])
        if "port" in payload:
            updates["port"] = _port("discovery", "port", payload["port"])
        for key in ("timeout", "eviction_interval", "poll_interval"):
            if key in payload:
                updates[key] = _positive_float("discovery", key, payload[key])
        if "byte_order" in payload:
            updates["byte_order"] = _byte_order("discovery", payload["byte_order"])
        return replace(settings, **updates)


@dataclass(frozen=True, slots=True)
class SessionSettings:
    """Tunables of :class:`~xplane_udp.session.XPlaneSession`."""

    poll_interval: float = 0.25
    receive_buffer: int = 1500
    byte_order: str = "native"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any] | None) -> "SessionSettings":
        """Build settings from the ``session`` table of ``config``."""

        payload = _section(config, "session")
        _reject_unknown("session", payload, {field.name for field in fields(cls)})
        updates: dict[str, Any] = {}
        if "poll_interval" in payload:
            updates["poll_interval"] = _positive_float(
                "session", "poll_interval", payload["poll_interval"]
            )
        if "receive_buffer" in payload:
            try:
                size = int(payload["receive_buffer"])
            except (TypeError, ValueError):
                size = 0
            if size < 69:
                raise ConfigurationError(
                    "session.receive_buffer must be an integer of at least 69 bytes"
                )
            updates["receive_buffer"] = size
        if "byte_order" in payload:
            updates["byte_order"] = _byte_order("session", payload["byte_order"])
        return replace(cls(), **updates)
