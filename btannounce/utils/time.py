"""Time/clock abstraction to aid testability and deterministic sleeps."""

from __future__ import annotations

import asyncio


class Clock:
    """Clock used by announce sessions to wait for their next contact."""

    async def sleep(self, seconds: float) -> None:
        """Async sleep for the specified number of seconds."""
        await asyncio.sleep(seconds)
