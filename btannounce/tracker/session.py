"""Long-lived announce session for one tracked swarm.

An :class:`AnnounceSession` is a single sequential actor. Commands (start,
completed, manual contact, stop, and the session's own periodic wake-ups)
go through one queue and are handled strictly in arrival order by one
worker task. While a tracker request is in flight the worker handles
nothing else; a command arriving meanwhile waits in the queue.

State machine::

    IDLE  --start-------------> ARMED       announce "started"
    ARMED --periodic wake-up--> ARMED       announce without event
    ARMED --contact_now-------> ARMED       announce without event
    ARMED --torrent_completed-> ARMED       announce "completed"
    IDLE | ARMED --stop-------> TERMINATED  announce "stopped"

After every announce the session arms exactly one wake-up. Arming bumps a
schedule generation counter, and a wake-up whose generation is no longer
current is discarded, so a superseded timer can never trigger an announce.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum

from btannounce.config import get_network_config, get_tracker_config
from btannounce.exceptions import BencodeError, SessionTerminatedError, TrackerError
from btannounce.logging_config import (
    LoggingContext,
    get_logger,
    log_exception,
    set_correlation_id,
)
from btannounce.models import AnnounceEvent, OtherFailurePolicy, TrackerConfig
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
from btannounce.tracker.request import AnnounceRequestBuilder, StatsSource
from btannounce.tracker.response import (
    AnnounceResponse,
    ResponseInterpreter,
    ResponseKind,
)
from btannounce.utils.backoff import ExponentialBackoff
from btannounce.utils.tasks import BackgroundTaskGroup
from btannounce.utils.time import Clock

logger = get_logger(__name__)


class SessionState(Enum):
    """Announce session lifecycle states."""

    IDLE = "idle"
    ARMED = "armed"
    TERMINATED = "terminated"


class CommandType(Enum):
    """Commands processed by the session worker."""

    START = "start"
    TORRENT_COMPLETED = "torrent_completed"
    PERIODIC_WAKEUP = "periodic_wakeup"
    MANUAL_CONTACT = "manual_contact"
    STOP = "stop"


@dataclass
class _Command:
    kind: CommandType
    generation: int = 0
    reply: asyncio.Future[bool] | None = None


class AnnounceSession:
    """Periodically announces one swarm to one HTTP tracker."""

    def __init__(
        self,
        tracker_url: str,
        info_hash: bytes,
        peer_id: bytes,
        stats_source: StatsSource,
        peer_sink: PeerSink,
        stats_sink: StatsSink,
        control_sink: ControlSink,
        transport: Transport,
        *,
        port: int | None = None,
        config: TrackerConfig | None = None,
        clock: Clock | None = None,
    ):
        """Initialize the session.

        Args:
            tracker_url: Announce endpoint
            info_hash: 20-byte swarm identifier
            peer_id: 20-byte client identifier
            stats_source: Supplies uploaded/downloaded/left at request time
            peer_sink: Receives peer lists
            stats_sink: Receives seeder/leecher counts
            control_sink: Receives tracker errors and warnings
            transport: Performs the HTTP GET
            port: Listening port; defaults to ``network.listen_port``
            config: Tracker settings; defaults to the global configuration
            clock: Clock used to wait for the next contact

        """
        self.config = config or get_tracker_config()
        if port is None:
            port = get_network_config().listen_port

        self.tracker_url = tracker_url
        self.info_hash = info_hash
        self.peer_id = peer_id

        self._builder = AnnounceRequestBuilder(tracker_url, info_hash, peer_id, port)
        self._interpreter = ResponseInterpreter(self.config.default_interval)
        self._classifier = ErrorClassifier()
        self._tasks = BackgroundTaskGroup()
        self._dispatcher = EventDispatcher(
            peer_sink,
            stats_sink,
            control_sink,
            tasks=BackgroundTaskGroup(),
        )
        self._stats_source = stats_source
        self._transport = transport
        self._clock = clock or Clock()
        self._backoff = ExponentialBackoff(
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            jitter=self.config.retry_jitter,
        )

        self.state = SessionState.IDLE
        self.tracker_id: str | None = None
        self.next_interval: int = self.config.default_interval
        self.last_complete: int | None = None
        self.last_incomplete: int | None = None
        self.final_announce_sent = False
        self.failure: TrackerError | None = None
        self.correlation_id = uuid.uuid4().hex[:12]

        self._queue: asyncio.Queue[_Command] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._consecutive_failures = 0

    # -- command surface -------------------------------------------------

    def start(self) -> None:
        """Announce "started" and begin periodic announces."""
        self._enqueue(_Command(CommandType.START))

    def torrent_completed(self) -> None:
        """Announce "completed"."""
        self._enqueue(_Command(CommandType.TORRENT_COMPLETED))

    def contact_now(self) -> None:
        """Announce immediately instead of waiting for the next wake-up."""
        self._enqueue(_Command(CommandType.MANUAL_CONTACT))

    async def stop(self) -> bool:
        """Announce "stopped" and terminate.

        Always returns True, whether or not the tracker could be reached.
        """
        if self.state is SessionState.TERMINATED:
            return True
        reply: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._enqueue(_Command(CommandType.STOP, reply=reply))
        return await reply

    async def wait_idle(self) -> None:
        """Wait until every command queued so far has been handled."""
        await self._queue.join()

    async def wait_closed(self) -> None:
        """Wait for the worker to exit.

        Raises:
            TrackerError: If the session terminated on a transport failure

        """
        if self._worker is not None:
            await asyncio.shield(self._worker)
        if self.failure is not None:
            raise self.failure

    async def aclose(self) -> None:
        """Stop the session if it is running and release its tasks.

        A session that has announced sends "stopped" once; a session that
        already stopped, or ended on a failure, sends nothing more.
        """
        if self.state is SessionState.ARMED and not self.final_announce_sent:
            await self.stop()
        elif self.state is SessionState.IDLE:
            self.state = SessionState.TERMINATED
            self._resolve_pending()
        self._disarm()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
        await self._tasks.cancel_and_wait(timeout=1.0)
        await self._dispatcher.cancel_pending()

    async def __aenter__(self) -> AnnounceSession:
        """Return the session."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the session."""
        await self.aclose()

    @property
    def contact_enabled(self) -> bool:
        """True while a scheduled announce is armed."""
        return (
            self.state is SessionState.ARMED
            and self._timer_task is not None
            and not self._timer_task.done()
        )

    @property
    def generation(self) -> int:
        """Current schedule generation."""
        return self._generation

    # -- worker ----------------------------------------------------------

    def _enqueue(self, command: _Command) -> None:
        if self.state is SessionState.TERMINATED:
            msg = f"Announce session for {self.tracker_url} has terminated"
            raise SessionTerminatedError(msg, {"command": command.kind.value})
        if self._worker is None:
            self._worker = asyncio.create_task(
                self._run(), name=f"announce-{self.correlation_id}"
            )
        self._queue.put_nowait(command)

    async def _run(self) -> None:
        set_correlation_id(self.correlation_id)
        while self.state is not SessionState.TERMINATED:
            command = await self._queue.get()
            try:
                await self._handle(command)
            except Exception as e:
                log_exception(logger, e, f"Announce session for {self.tracker_url} crashed")
                self._terminate(TrackerError(f"Announce session crashed: {e}"))
            finally:
                if command.reply is not None and not command.reply.done():
                    command.reply.set_result(True)
                self._queue.task_done()
        self._resolve_pending()

    def _resolve_pending(self) -> None:
        """Answer queued stops and drop other commands after termination."""
        while not self._queue.empty():
            command = self._queue.get_nowait()
            if command.reply is not None and not command.reply.done():
                command.reply.set_result(True)
            self._queue.task_done()

    async def _handle(self, command: _Command) -> None:
        kind = command.kind
        if kind is CommandType.PERIODIC_WAKEUP:
            if command.generation != self._generation:
                logger.debug(
                    "Discarding stale wake-up (generation %d, current %d)",
                    command.generation,
                    self._generation,
                )
                return
            if self.state is SessionState.ARMED:
                await self._announce(None)
        elif kind is CommandType.START:
            if self.state is not SessionState.IDLE:
                logger.warning("Session for %s already started", self.tracker_url)
                return
            self.state = SessionState.ARMED
            await self._announce(AnnounceEvent.STARTED)
        elif kind is CommandType.TORRENT_COMPLETED:
            if self._require_armed(kind):
                await self._announce(AnnounceEvent.COMPLETED)
        elif kind is CommandType.MANUAL_CONTACT:
            if self._require_armed(kind):
                await self._announce(None)
        elif kind is CommandType.STOP:
            await self._stop()

    def _require_armed(self, kind: CommandType) -> bool:
        if self.state is SessionState.ARMED:
            return True
        logger.warning(
            "Ignoring %s for %s: session not started",
            kind.value,
            self.tracker_url,
        )
        return False

    # -- scheduling ------------------------------------------------------

    def _arm(self, seconds: int) -> None:
        self._disarm()
        self.next_interval = seconds
        generation = self._generation
        self._timer_task = self._tasks.create(
            self._wake_after(seconds, generation),
            name=f"announce-timer-{self.correlation_id}",
        )
        logger.debug("Next announce to %s in %ds", self.tracker_url, seconds)

    def _disarm(self) -> None:
        self._generation += 1
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
        self._timer_task = None

    async def _wake_after(self, seconds: int, generation: int) -> None:
        await self._clock.sleep(seconds)
        if self.state is not SessionState.TERMINATED:
            self._queue.put_nowait(
                _Command(CommandType.PERIODIC_WAKEUP, generation=generation)
            )

    def _terminate(self, failure: TrackerError | None = None) -> None:
        self._disarm()
        self.state = SessionState.TERMINATED
        if failure is not None:
            self.failure = failure

    # -- announces -------------------------------------------------------

    async def _request(self, event: AnnounceEvent | None) -> TransportOutcome:
        tracker_id = self.tracker_id if self.config.echo_tracker_id else None
        url = self._builder.build(self._stats_source.report_to_tracker(), event, tracker_id)
        with LoggingContext(
            "announce",
            logger,
            tracker_url=self.tracker_url,
            announce_event=event.value if event else "none",
        ):
            return await self._classifier.fetch(self._transport, url)

    async def _announce(self, event: AnnounceEvent | None) -> None:
        # Supersede any pending wake-up before the request goes out
        self._disarm()
        outcome = await self._request(event)

        if isinstance(outcome, Success):
            try:
                response = self._interpreter.interpret(outcome.body)
            except BencodeError as e:
                outcome = OtherFailure(f"Undecodable tracker reply: {e}")
            else:
                self._apply(response, event)
                return

        if isinstance(outcome, TimeoutFailure):
            logger.warning(
                "Tracker %s timed out (%s); retrying in %ds",
                self.tracker_url,
                outcome.detail,
                self.config.timeout_fallback_interval,
            )
            self._arm(self.config.timeout_fallback_interval)
            return

        self._on_other_failure(outcome)

    def _apply(self, response: AnnounceResponse, event: AnnounceEvent | None) -> None:
        if response.tracker_id is not None:
            self.tracker_id = response.tracker_id
        self._consecutive_failures = 0

        kind = self._dispatcher.dispatch(response)
        if kind is ResponseKind.FAILURE:
            logger.warning(
                "Tracker %s refused announce: %s",
                self.tracker_url,
                response.failure_reason,
            )
        else:
            if kind is ResponseKind.WARNING:
                logger.warning(
                    "Tracker %s warning: %s",
                    self.tracker_url,
                    response.warning_message,
                )
            self.last_complete = response.complete
            self.last_incomplete = response.incomplete
            logger.info(
                "Announced %s to %s: %d peers, %s seeders, %s leechers",
                event.value if event else "update",
                self.tracker_url,
                len(response.peers),
                response.complete,
                response.incomplete,
            )
        self._arm(response.interval)

    def _on_other_failure(self, outcome: OtherFailure) -> None:
        self._consecutive_failures += 1
        message = f"Tracker announce failed: {outcome.detail}"
        self._dispatcher.report_error(message)

        policy = self.config.other_failure_policy
        if policy is OtherFailurePolicy.TERMINATE:
            logger.error("%s; terminating session for %s", message, self.tracker_url)
            self._terminate(
                TrackerError(
                    message,
                    {"url": self.tracker_url, "failures": self._consecutive_failures},
                )
            )
            return

        if policy is OtherFailurePolicy.BACKOFF:
            delay = self._backoff.next_delay(self._consecutive_failures)
        else:
            delay = self.config.default_interval
        logger.warning(
            "%s (failure %d); retrying %s in %ds",
            message,
            self._consecutive_failures,
            self.tracker_url,
            delay,
        )
        self._arm(delay)

    async def _stop(self) -> None:
        self._disarm()
        if not self.final_announce_sent:
            self.final_announce_sent = True
            try:
                outcome = await self._request(AnnounceEvent.STOPPED)
            except Exception:
                logger.warning("Stopped announce to %s failed", self.tracker_url, exc_info=True)
            else:
                if isinstance(outcome, Success):
                    logger.info("Announced stopped to %s", self.tracker_url)
                else:
                    logger.warning(
                        "Stopped announce to %s failed: %r",
                        self.tracker_url,
                        outcome,
                    )
        self._terminate()
