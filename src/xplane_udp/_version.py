"""Package version, read from the installed distribution or the changelog."""

from __future__ import annotations

import re
from importlib import metadata
from pathlib import Path

from packaging.version import InvalidVersion, Version

__all__ = ["__version__"]

DISTRIBUTION = "xplane-udp"

_RELEASE_HEADING = re.compile(r"^## v(\d+\.\d+\.\d+)\b", re.MULTILINE)


def _changelog_version() -> str:
    # Source checkouts keep CHANGELOG.md two levels above this file.
    changelog = Path(__file__).resolve().parents[2] / "CHANGELOG.md"
    if changelog.is_file():
        match = _RELEASE_HEADING.search(changelog.read_text(encoding="utf-8"))
        if match:
            return match.group(1)
    raise RuntimeError(
        f"Cannot determine the {DISTRIBUTION} version: "
        f"not installed and no release heading in {changelog}."
    )


def _load_version() -> str:
    try:
        raw = metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        raw = _changelog_version()
    try:
        release = Version(raw).release
    except InvalidVersion as exc:
        raise RuntimeError(f"Invalid {DISTRIBUTION} version {raw!r}.") from exc
    if len(release) != 3:
        raise RuntimeError(f"{DISTRIBUTION} versions use MAJOR.MINOR.PATCH, got {raw!r}.")
    return raw


__version__ = _load_version()
