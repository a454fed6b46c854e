"""Version and client identity helpers.

Provides the installed package version, the version-based peer_id prefix
and the User-Agent string sent to trackers.
"""

from __future__ import annotations

import importlib.metadata
import os
import re
from typing import Final

NETWORK_CLIENT_NAME: Final[str] = "btannounce"
PEER_ID_LENGTH: Final[int] = 20


def get_version() -> str:
    """Get the installed package version, falling back to ``__version__``."""
    try:
        return importlib.metadata.version("btannounce")
    except importlib.metadata.PackageNotFoundError:
        from btannounce import __version__

        return __version__


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse version string into major, minor, patch components.

    Raises:
        ValueError: If version format is invalid

    """
    version_clean = re.split(r"[-+]", version)[0]
    parts = version_clean.split(".")
    if len(parts) < 2:
        msg = f"Invalid version format: {version} (expected MAJOR.MINOR.PATCH)"
        raise ValueError(msg)

    major = int(parts[0])
    minor = int(parts[1])
    patch = int(parts[2]) if len(parts) > 2 else 0
    return (major, minor, patch)


def get_peer_id_prefix(version: str | None = None) -> bytes:
    """Azureus-style peer_id prefix ``-BA{major:02d}{minor:02d}-``.

    Examples:
        Version 0.1.0 → -BA0001-
        Version 0.1.2 → -BA0001- (patch ignored)
        Version 1.2.3 → -BA0102-

    """
    if version is None:
        version = get_version()
    major, minor, _patch = parse_version(version)
    return f"-BA{major:02d}{minor:02d}-".encode("ascii")


def get_user_agent(version: str | None = None) -> str:
    """User-Agent header value, ``btannounce/{version}``."""
    if version is None:
        version = get_version()
    return f"{NETWORK_CLIENT_NAME}/{version}"


def generate_peer_id(version: str | None = None) -> bytes:
    """Generate a 20-byte peer_id: 8-byte prefix followed by 12 random bytes."""
    prefix = get_peer_id_prefix(version)
    return prefix + os.urandom(PEER_ID_LENGTH - len(prefix))
