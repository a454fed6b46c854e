"""HTTP tracker announce engine.

This package builds announce URLs, performs the HTTP GET, classifies the
outcome, interprets the bencoded reply, and drives the periodic announce
schedule of one swarm through :class:`AnnounceSession`.
"""

from __future__ import annotations

from btannounce.tracker.classifier import (
    ErrorClassifier,
    OtherFailure,
    Success,
    TimeoutFailure,
    Transport,
    TransportOutcome,
)
from btannounce.tracker.dispatch import (
    ControlSink,
    EventDispatcher,
    PeerSink,
    StatsSink,
)
from btannounce.tracker.request import (
    AnnounceRequestBuilder,
    StatsSnapshot,
    StatsSource,
    encode_binary,
)
from btannounce.tracker.response import (
    AnnounceResponse,
    ResponseInterpreter,
    ResponseKind,
)
from btannounce.tracker.session import AnnounceSession, SessionState
from btannounce.tracker.transport import HttpTransport

__all__ = [
    "AnnounceRequestBuilder",
    "AnnounceResponse",
    "AnnounceSession",
    "ControlSink",
    "ErrorClassifier",
    "EventDispatcher",
    "HttpTransport",
    "OtherFailure",
    "PeerSink",
    "ResponseInterpreter",
    "ResponseKind",
    "SessionState",
    "StatsSink",
    "StatsSnapshot",
    "StatsSource",
    "Success",
    "TimeoutFailure",
    "Transport",
    "TransportOutcome",
    "encode_binary",
]
