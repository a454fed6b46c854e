"""Announce request encoding.

Builds the GET URL for an HTTP tracker announce from the session identity,
the current transfer counters and an optional lifecycle event.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from btannounce.exceptions import ValidationError
from btannounce.models import AnnounceEvent

IDENTITY_LENGTH = 20


@dataclass(frozen=True)
class StatsSnapshot:
    """Transfer counters reported to the tracker, in bytes."""

    uploaded: int = 0
    downloaded: int = 0
    left: int = 0


@runtime_checkable
class StatsSource(Protocol):
    """Supplies the transfer counters at request-build time."""

    def report_to_tracker(self) -> StatsSnapshot:
        """Return the current counters."""
        ...


def encode_binary(value: bytes) -> str:
    """Percent-encode raw bytes per RFC 1738.

    Every byte outside ``A-Z a-z 0-9 - . _ ~`` becomes ``%XX``.
    """
    return urllib.parse.quote(value, safe="")


class AnnounceRequestBuilder:
    """Encodes identity and statistics into a tracker announce URL."""

    def __init__(self, tracker_url: str, info_hash: bytes, peer_id: bytes, port: int):
        """Initialize the request builder.

        Args:
            tracker_url: Announce endpoint
            info_hash: 20-byte SHA-1 of the info dictionary
            peer_id: 20-byte client peer id
            port: Listening port reported to the tracker

        Raises:
            ValidationError: If the identity or port is malformed

        """
        if not tracker_url:
            msg = "Tracker URL cannot be empty"
            raise ValidationError(msg)
        for name, value in (("info_hash", info_hash), ("peer_id", peer_id)):
            if not isinstance(value, bytes) or len(value) != IDENTITY_LENGTH:
                msg = f"{name} must be {IDENTITY_LENGTH} raw bytes"
                raise ValidationError(msg, {name: value})
        if not 0 < port <= 65535:
            msg = f"Invalid listen port: {port}"
            raise ValidationError(msg)

        self.tracker_url = tracker_url
        self.info_hash = info_hash
        self.peer_id = peer_id
        self.port = port

    def build(
        self,
        stats: StatsSnapshot,
        event: AnnounceEvent | None = None,
        tracker_id: str | None = None,
    ) -> str:
        """Build the announce URL.

        Parameters are emitted in a fixed order (``info_hash``, ``peer_id``,
        ``uploaded``, ``downloaded``, ``left``, ``port``, then ``trackerid``
        if given, then ``event`` if given) since some trackers parse the
        query naively.
        """
        params: list[tuple[str, str]] = [
            ("info_hash", encode_binary(self.info_hash)),
            ("peer_id", encode_binary(self.peer_id)),
            ("uploaded", str(int(stats.uploaded))),
            ("downloaded", str(int(stats.downloaded))),
            ("left", str(int(stats.left))),
            ("port", str(self.port)),
        ]
        if tracker_id:
            params.append(("trackerid", urllib.parse.quote(tracker_id, safe="")))
        if event is not None:
            params.append(("event", AnnounceEvent(event).value))

        query = "&".join(f"{key}={value}" for key, value in params)
        separator = "&" if "?" in self.tracker_url else "?"
        return f"{self.tracker_url}{separator}{query}"
