"""Classification of tracker transport outcomes.

Every tracker request ends in exactly one of three outcomes:

- :class:`Success` - HTTP 200 with a body
- :class:`TimeoutFailure` - the connect or response deadline was exceeded
- :class:`OtherFailure` - anything else (DNS failure, connection refused,
  malformed HTTP, non-200 status, undecodable body)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, Union

import aiohttp

from btannounce.exceptions import NetworkError, TrackerTimeoutError
from btannounce.logging_config import get_logger

HTTP_OK = 200

logger = get_logger(__name__)


@dataclass(frozen=True)
class Success:
    """Tracker answered 200 OK."""

    body: bytes


@dataclass(frozen=True)
class TimeoutFailure:
    """Tracker did not answer within the deadline."""

    detail: str = "timed out"


@dataclass(frozen=True)
class OtherFailure:
    """Any transport failure that is not a timeout."""

    detail: str


TransportOutcome = Union[Success, TimeoutFailure, OtherFailure]


class Transport(Protocol):
    """HTTP GET transport used for announces."""

    async def get(self, url: str) -> tuple[int, bytes]:
        """Fetch ``url`` and return ``(status, body)``."""
        ...


_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError, NetworkError)


def is_timeout(exc: BaseException) -> bool:
    """Return True if ``exc`` means a connect or response deadline was exceeded."""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, TrackerTimeoutError)):
        return True
    # aiohttp wraps socket-level connect timeouts in ClientConnectorError
    os_error = getattr(exc, "os_error", None)
    if isinstance(os_error, TimeoutError):
        return True
    return isinstance(exc.__cause__, (asyncio.TimeoutError, TimeoutError))


class ErrorClassifier:
    """Turns transport results and errors into :data:`TransportOutcome` values."""

    def classify_response(self, status: int, body: bytes) -> TransportOutcome:
        """Classify a completed HTTP exchange."""
        if status == HTTP_OK:
            return Success(body)
        return OtherFailure(f"HTTP {status}")

    def classify_exception(self, exc: BaseException) -> TransportOutcome:
        """Classify an error raised by the transport."""
        if is_timeout(exc):
            return TimeoutFailure(str(exc) or type(exc).__name__)
        return OtherFailure(f"{type(exc).__name__}: {exc}")

    async def fetch(self, transport: Transport, url: str) -> TransportOutcome:
        """Perform one GET through ``transport`` and classify the result."""
        try:
            status, body = await transport.get(url)
        except _TRANSPORT_ERRORS as e:
            outcome = self.classify_exception(e)
            logger.debug("Tracker request to %s failed: %r", url, outcome)
            return outcome
        return self.classify_response(status, body)
