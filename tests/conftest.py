"""Pytest configuration and shared fixtures for btannounce tests."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import pytest

from btannounce.config import reset_config
from btannounce.core.bencode import encode
from btannounce.models import PeerEntry
from btannounce.tracker.request import StatsSnapshot
from btannounce.utils.time import Clock

INFO_HASH = bytes(range(20))
PEER_ID = b"-BA0001-" + b"abcdefghijkl"
TRACKER_URL = "http://tracker.example.com/announce"


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("core", "marks tests as core functionality tests"),
        ("tracker", "marks tests as tracker tests"),
        ("session", "marks tests as announce session tests"),
        ("network", "marks tests that open local sockets"),
        ("config", "marks tests as configuration tests"),
        ("cli", "marks tests as CLI tests"),
        ("property", "marks tests as property-based tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    # setup_logging() detaches the package logger from the root; undo it so caplog works
    package_logger = logging.getLogger("btannounce")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep tests away from real config files and BTANNOUNCE_* variables."""
    for name in list(os.environ):
        if name.startswith("BTANNOUNCE_"):
            monkeypatch.delenv(name)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


class FakeClock(Clock):
    """Clock whose sleeps only finish when the test fires them."""

    def __init__(self) -> None:
        self.requested: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future[None]]] = []

    async def sleep(self, seconds: float) -> None:
        self.requested.append(seconds)
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (seconds, waiter)
        self._waiters.append(entry)
        try:
            await waiter
        finally:
            self._waiters.remove(entry)

    @property
    def pending(self) -> list[float]:
        """Durations of sleeps that have neither fired nor been cancelled."""
        return [seconds for seconds, waiter in self._waiters if not waiter.done()]

    def fire(self) -> int:
        """Finish every pending sleep; returns how many were woken."""
        fired = 0
        for _seconds, waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)
                fired += 1
        return fired


def tracker_reply(fields: dict[str, Any], status: int = 200) -> tuple[int, bytes]:
    """Build a ``(status, body)`` pair with a bencoded dictionary body."""
    return status, encode(fields)


class ScriptedTransport:
    """Transport returning scripted results in order.

    Each result is a ``(status, body)`` pair or an exception instance to
    raise. The last result repeats once the script runs out.
    """

    def __init__(self, *results: tuple[int, bytes] | BaseException):
        self.results: list[tuple[int, bytes] | BaseException] = list(results)
        self.urls: list[str] = []
        self.gate: asyncio.Event | None = None

    def push(self, *results: tuple[int, bytes] | BaseException) -> None:
        self.results.extend(results)

    async def get(self, url: str) -> tuple[int, bytes]:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if not self.results:
            return tracker_reply({"interval": 1800})
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingSinks:
    """Peer, stats and control sink recording every call."""

    def __init__(self) -> None:
        self.peers: list[list[PeerEntry]] = []
        self.stats: list[tuple[int | None, int | None]] = []
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def add_peers(self, peers: list[PeerEntry]) -> None:
        self.peers.append(list(peers))

    def report_from_tracker(self, complete: int | None, incomplete: int | None) -> None:
        self.stats.append((complete, incomplete))

    def tracker_error_report(self, message: str) -> None:
        self.errors.append(message)

    def tracker_warning_report(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def calls(self) -> int:
        return len(self.peers) + len(self.stats) + len(self.errors) + len(self.warnings)


class MutableStats:
    """Stats source whose counters tests can change between announces."""

    def __init__(self, uploaded: int = 0, downloaded: int = 0, left: int = 0):
        self.snapshot = StatsSnapshot(uploaded, downloaded, left)
        self.reads = 0

    def report_to_tracker(self) -> StatsSnapshot:
        self.reads += 1
        return self.snapshot


async def settle(session, rounds: int = 5) -> None:
    """Let timers and the session worker run until the queue is drained."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        await session.wait_idle()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sinks() -> RecordingSinks:
    return RecordingSinks()


@pytest.fixture
def stats_source() -> MutableStats:
    return MutableStats(uploaded=100, downloaded=200, left=300)
