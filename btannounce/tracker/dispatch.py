"""Forwarding of interpreted tracker replies to downstream sinks.

Three sinks receive the results of an announce:

- the peer sink gets the peer list
- the stats sink gets the seeder/leecher counts
- the control sink gets tracker errors and warnings

Sinks are called fire-and-forget. A sink method may be a plain function or
a coroutine function; coroutines are scheduled as background tasks and never
awaited by the session. Exceptions raised by sinks are logged and dropped.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from btannounce.logging_config import get_logger
from btannounce.models import PeerEntry
from btannounce.tracker.response import AnnounceResponse, ResponseKind
from btannounce.utils.tasks import BackgroundTaskGroup


@runtime_checkable
class PeerSink(Protocol):
    """Receives peers learned from the tracker."""

    def add_peers(self, peers: list[PeerEntry]) -> Any:
        """Accept a batch of peers."""
        ...


@runtime_checkable
class StatsSink(Protocol):
    """Receives swarm statistics reported by the tracker."""

    def report_from_tracker(self, complete: int | None, incomplete: int | None) -> Any:
        """Accept seeder (``complete``) and leecher (``incomplete``) counts."""
        ...


@runtime_checkable
class ControlSink(Protocol):
    """Receives tracker error and warning reports."""

    def tracker_error_report(self, message: str) -> Any:
        """Accept a tracker failure reason or fatal announce error."""
        ...

    def tracker_warning_report(self, message: str) -> Any:
        """Accept a tracker warning message."""
        ...


class EventDispatcher:
    """Calls the sinks at most once per category for each reply."""

    def __init__(
        self,
        peer_sink: PeerSink,
        stats_sink: StatsSink,
        control_sink: ControlSink,
        tasks: BackgroundTaskGroup | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            peer_sink: Destination for peer lists
            stats_sink: Destination for seeder/leecher counts
            control_sink: Destination for errors and warnings
            tasks: Task group owning coroutine sink calls

        """
        self.peer_sink = peer_sink
        self.stats_sink = stats_sink
        self.control_sink = control_sink
        self._tasks = tasks or BackgroundTaskGroup()
        self.logger = get_logger(__name__)

    def add_peers(self, peers: list[PeerEntry]) -> None:
        """Forward peers to the peer sink."""
        self._deliver("add_peers", self.peer_sink.add_peers, peers)

    def report_stats(self, complete: int | None, incomplete: int | None) -> None:
        """Forward seeder/leecher counts to the stats sink."""
        self._deliver(
            "report_from_tracker",
            self.stats_sink.report_from_tracker,
            complete,
            incomplete,
        )

    def report_error(self, message: str) -> None:
        """Forward an error to the control sink."""
        self._deliver("tracker_error_report", self.control_sink.tracker_error_report, message)

    def report_warning(self, message: str) -> None:
        """Forward a warning to the control sink."""
        self._deliver(
            "tracker_warning_report",
            self.control_sink.tracker_warning_report,
            message,
        )

    def dispatch(self, response: AnnounceResponse) -> ResponseKind:
        """Notify the sinks for one reply, following failure > warning > normal.

        A failure reason suppresses peers and statistics. A warning is
        reported and peers and statistics are still delivered.
        """
        kind = response.kind
        if kind is ResponseKind.FAILURE:
            self.report_error(response.failure_reason or "")
            return kind
        if kind is ResponseKind.WARNING:
            self.report_warning(response.warning_message or "")
        self.add_peers(response.peers)
        self.report_stats(response.complete, response.incomplete)
        return kind

    async def cancel_pending(self) -> None:
        """Cancel coroutine sink calls that are still running."""
        await self._tasks.cancel_and_wait(timeout=1.0)

    def _deliver(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            result = func(*args)
        except Exception:
            self.logger.warning("Sink call %s failed", name, exc_info=True)
            return
        if inspect.isawaitable(result):
            self._tasks.create(self._await_sink(name, result), name=f"sink-{name}")

    async def _await_sink(self, name: str, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception:
            self.logger.warning("Sink call %s failed", name, exc_info=True)
