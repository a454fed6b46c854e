"""HTTP transport for tracker announces."""

from __future__ import annotations

import urllib.parse

import aiohttp
from yarl import URL

from btannounce.config import get_tracker_config
from btannounce.exceptions import TrackerError
from btannounce.logging_config import get_logger
from btannounce.models import TrackerConfig
from btannounce.utils.version import get_user_agent


class HttpTransport:
    """aiohttp-backed GET transport.

    Usable as an async context manager::

        async with HttpTransport() as transport:
            status, body = await transport.get(url)
    """

    def __init__(self, config: TrackerConfig | None = None):
        """Initialize the transport.

        Args:
            config: Tracker configuration; defaults to the global configuration

        """
        self.config = config or get_tracker_config()
        self.user_agent = self.config.user_agent or get_user_agent()
        self.session: aiohttp.ClientSession | None = None
        self.logger = get_logger(__name__)

    async def start(self) -> None:
        """Open the HTTP session."""
        if self.session is not None:
            return
        timeout = aiohttp.ClientTimeout(
            total=self.config.request_timeout,
            connect=self.config.connect_timeout,
        )
        connector = aiohttp.TCPConnector(
            limit=10,
            ttl_dns_cache=300,  # 5 minute DNS cache
            use_dns_cache=True,
        )
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers={"User-Agent": self.user_agent},
        )
        self.logger.debug("HTTP tracker transport started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self.session is not None:
            await self.session.close()
            self.session = None
            self.logger.debug("HTTP tracker transport stopped")

    async def __aenter__(self) -> HttpTransport:
        """Start the transport."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop the transport."""
        await self.stop()

    async def get(self, url: str) -> tuple[int, bytes]:
        """Perform a GET request and return ``(status, body)``.

        Raises:
            TrackerError: If the transport is not started or the URL scheme is unsupported
            aiohttp.ClientError: On connection, protocol or payload errors
            asyncio.TimeoutError: When the request deadline is exceeded

        """
        if self.session is None:
            msg = "HTTP transport not started"
            raise TrackerError(msg)

        scheme = urllib.parse.urlparse(url).scheme
        if scheme not in ("http", "https"):
            msg = f"Unsupported tracker URL scheme: {scheme or '(none)'}"
            raise TrackerError(msg, {"url": url})

        # The query is already percent-encoded; keep aiohttp from re-encoding it
        async with self.session.get(URL(url, encoded=True)) as response:
            body = await response.read()
            return response.status, body
