"""Interpretation of tracker announce replies.

A reply body is a bencoded dictionary. The fields read here are:

- ``interval`` - seconds until the next announce (default when absent or invalid)
- ``tracker id`` - sticky session token (``trackerid`` is accepted too)
- ``complete`` / ``incomplete`` - seeder and leecher counts, None when unknown
- ``peers`` - list of ``{ip, peer id, port}`` dictionaries, or the compact
  6-bytes-per-peer string
- ``failure reason`` - marks the reply as a hard failure
- ``warning message`` - marks the reply as degraded but usable
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from btannounce.core.bencode import (
    BencodeDecodeError,
    decode,
    search_dict,
    search_dict_default,
)
from btannounce.logging_config import get_logger
from btannounce.models import PeerEntry

DEFAULT_INTERVAL = 180
MAX_INTERVAL = 86400
COMPACT_PEER_LENGTH = 6

logger = get_logger(__name__)


class ResponseKind(str, Enum):
    """How a reply is processed, in precedence order."""

    FAILURE = "failure"
    WARNING = "warning"
    NORMAL = "normal"


@dataclass
class AnnounceResponse:
    """Structured fields of one tracker reply."""

    interval: int = DEFAULT_INTERVAL
    peers: list[PeerEntry] = field(default_factory=list)
    complete: int | None = None
    incomplete: int | None = None
    tracker_id: str | None = None
    failure_reason: str | None = None
    warning_message: str | None = None

    @property
    def kind(self) -> ResponseKind:
        """Failure wins over warning, warning over normal."""
        if self.failure_reason is not None:
            return ResponseKind.FAILURE
        if self.warning_message is not None:
            return ResponseKind.WARNING
        return ResponseKind.NORMAL


def _text(value: bytes | None) -> str | None:
    if value is None:
        return None
    return value.decode("utf-8", errors="replace")


class ResponseInterpreter:
    """Decodes reply bodies into :class:`AnnounceResponse` values."""

    def __init__(self, default_interval: int = DEFAULT_INTERVAL):
        """Initialize the interpreter.

        Args:
            default_interval: Interval used when the reply has no valid one

        """
        if default_interval <= 0:
            msg = f"default_interval must be positive, got {default_interval}"
            raise ValueError(msg)
        self.default_interval = default_interval

    def decode_body(self, body: bytes) -> dict[bytes, Any]:
        """Decode a reply body into a bencoded dictionary.

        Raises:
            BencodeDecodeError: If the body is not a bencoded dictionary

        """
        tree = decode(body)
        if not isinstance(tree, dict):
            msg = f"Tracker reply is a {type(tree).__name__}, expected a dictionary"
            raise BencodeDecodeError(msg)
        return tree

    def interpret(self, body: bytes) -> AnnounceResponse:
        """Decode and interpret a reply body."""
        return self.interpret_tree(self.decode_body(body))

    def interpret_tree(self, tree: dict[bytes, Any]) -> AnnounceResponse:
        """Interpret an already-decoded reply dictionary."""
        tracker_id = search_dict_default(tree, "tracker id", None, bytes)
        if tracker_id is None:
            tracker_id = search_dict_default(tree, "trackerid", None, bytes)

        return AnnounceResponse(
            interval=self._interval(tree),
            peers=self._peers(tree),
            complete=self._count(tree, "complete"),
            incomplete=self._count(tree, "incomplete"),
            tracker_id=_text(tracker_id),
            failure_reason=_text(search_dict_default(tree, "failure reason", None, bytes)),
            warning_message=_text(search_dict_default(tree, "warning message", None, bytes)),
        )

    def _interval(self, tree: dict[bytes, Any]) -> int:
        interval = search_dict_default(tree, "interval", self.default_interval, int)
        if not 0 < interval <= MAX_INTERVAL:
            logger.debug("Ignoring out-of-range tracker interval %d", interval)
            return self.default_interval
        return interval

    @staticmethod
    def _count(tree: dict[bytes, Any], key: str) -> int | None:
        value = search_dict_default(tree, key, None, int)
        if value is None or value < 0:
            return None
        return value

    def _peers(self, tree: dict[bytes, Any]) -> list[PeerEntry]:
        peers = search_dict(tree, "peers")
        if peers is None:
            return []
        if isinstance(peers, bytes):
            return self._compact_peers(peers)
        if not isinstance(peers, list):
            logger.debug("Ignoring peers field of type %s", type(peers).__name__)
            return []

        entries: list[PeerEntry] = []
        for item in peers:
            ip = search_dict_default(item, "ip", None, bytes)
            port = search_dict_default(item, "port", None, int)
            peer_id = search_dict_default(item, "peer id", None, bytes)
            if not ip or port is None or not 0 < port <= 65535:
                logger.debug("Skipping malformed peer entry %r", item)
                continue
            entries.append(PeerEntry(ip=_text(ip), port=port, peer_id=peer_id))
        return entries

    @staticmethod
    def _compact_peers(data: bytes) -> list[PeerEntry]:
        if len(data) % COMPACT_PEER_LENGTH != 0:
            logger.debug("Compact peer string length %d is not a multiple of 6", len(data))

        entries: list[PeerEntry] = []
        usable = len(data) - len(data) % COMPACT_PEER_LENGTH
        for offset in range(0, usable, COMPACT_PEER_LENGTH):
            chunk = data[offset : offset + COMPACT_PEER_LENGTH]
            port = int.from_bytes(chunk[4:6], byteorder="big")
            if port == 0:
                continue
            ip = str(ipaddress.IPv4Address(chunk[:4]))
            entries.append(PeerEntry(ip=ip, port=port))
        return entries
