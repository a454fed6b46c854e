"""Exception hierarchy for btannounce.

Provides the exception hierarchy used across the announce engine so that
callers can tell transport, protocol, validation and session errors apart.
"""

from __future__ import annotations

from typing import Any


class BTAnnounceError(Exception):
    """Base exception for all btannounce errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize btannounce error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NetworkError(BTAnnounceError):
    """Network-related errors."""


class TrackerError(NetworkError):
    """Tracker communication errors."""


class TrackerTimeoutError(TrackerError):
    """Tracker request exceeded its connect or response deadline."""


class ValidationError(BTAnnounceError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class BencodeError(ValidationError):
    """Bencode encoding/decoding errors."""


class SessionError(BTAnnounceError):
    """Announce session errors."""


class SessionTerminatedError(SessionError):
    """Command issued to a session that has already terminated."""
