"""Shared utilities: clock, background tasks, backoff and client identity."""

from __future__ import annotations

from btannounce.utils.backoff import ExponentialBackoff
from btannounce.utils.tasks import BackgroundTaskGroup
from btannounce.utils.time import Clock
from btannounce.utils.version import generate_peer_id, get_user_agent, get_version

__all__ = [
    "BackgroundTaskGroup",
    "Clock",
    "ExponentialBackoff",
    "generate_peer_id",
    "get_user_agent",
    "get_version",
]
