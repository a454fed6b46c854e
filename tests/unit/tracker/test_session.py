"""Tests for the announce session state machine."""

from __future__ import annotations

import asyncio

import pytest

from btannounce.config import set_config
from btannounce.exceptions import SessionTerminatedError, TrackerError
from btannounce.models import Config, NetworkConfig, PeerEntry, TrackerConfig
from btannounce.tracker.request import StatsSnapshot
from btannounce.tracker.session import AnnounceSession, CommandType, SessionState, _Command
from tests.conftest import (
    INFO_HASH,
    PEER_ID,
    TRACKER_URL,
    ScriptedTransport,
    settle,
    tracker_reply,
)

pytestmark = [pytest.mark.unit, pytest.mark.tracker, pytest.mark.session, pytest.mark.asyncio]

SCENARIO_REPLY = tracker_reply(
    {
        "interval": 900,
        "complete": 10,
        "incomplete": 2,
        "peers": [{"ip": "1.2.3.4", "peer id": "P1", "port": 6881}],
    }
)
REFUSED = ConnectionRefusedError("refused")


@pytest.fixture
def make_session(fake_clock, sinks, stats_source):
    def _make(transport, port: int | None = 6881, **config) -> AnnounceSession:
        return AnnounceSession(
            TRACKER_URL,
            INFO_HASH,
            PEER_ID,
            stats_source,
            sinks,
            sinks,
            sinks,
            transport,
            port=port,
            config=TrackerConfig(**config),
            clock=fake_clock,
        )

    return _make


def _events(urls: list[str]) -> list[str | None]:
    events = []
    for url in urls:
        _, _, event = url.partition("&event=")
        events.append(event or None)
    return events


async def _wake(session: AnnounceSession, fake_clock) -> None:
    assert fake_clock.fire() == 1
    await settle(session)


class TestStart:
    async def test_start_announces_and_schedules_reply_interval(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert _events(transport.urls) == ["started"]
            assert sinks.peers == [[PeerEntry(ip="1.2.3.4", port=6881, peer_id=b"P1")]]
            assert sinks.stats == [(10, 2)]
            assert fake_clock.pending == [900]
            assert session.next_interval == 900
            assert session.state is SessionState.ARMED
            assert session.contact_enabled

    async def test_start_reads_stats_at_build_time(self, make_session, stats_source):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

        assert "uploaded=100&downloaded=200&left=300&port=6881&event=started" in transport.urls[0]

    async def test_port_defaults_to_configured_listen_port(self, make_session):
        set_config(Config(network=NetworkConfig(listen_port=51413)))
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport, port=None) as session:
            session.start()
            await settle(session)

        assert "&port=51413&event=started" in transport.urls[0]

    async def test_start_while_armed_is_ignored(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            session.start()
            await settle(session)

            assert _events(transport.urls) == ["started"]

    async def test_missing_interval_uses_default(self, make_session, fake_clock):
        transport = ScriptedTransport(tracker_reply({"complete": 1}))
        async with make_session(transport, default_interval=240) as session:
            session.start()
            await settle(session)

            assert fake_clock.pending == [240]


class TestPeriodicAnnounce:
    async def test_wakeup_announces_without_event(self, make_session, fake_clock, stats_source):
        transport = ScriptedTransport(SCENARIO_REPLY, tracker_reply({"interval": 600}))
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            stats_source.snapshot = StatsSnapshot(uploaded=5000, downloaded=6000, left=0)

            await _wake(session, fake_clock)

            assert _events(transport.urls) == ["started", None]
            assert "uploaded=5000&downloaded=6000&left=0&port=6881" in transport.urls[1]
            assert fake_clock.pending == [600]
            assert fake_clock.requested == [900, 600]

    async def test_oversized_interval_schedules_default(self, make_session, fake_clock):
        transport = ScriptedTransport(tracker_reply({"interval": int("9" * 400)}))
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert session.next_interval == 180
            assert fake_clock.pending == [180]

            await _wake(session, fake_clock)
            assert _events(transport.urls) == ["started", None]
            assert session.contact_enabled

    async def test_stale_wakeup_is_discarded(self, make_session, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            stale = _Command(CommandType.PERIODIC_WAKEUP, generation=session.generation - 1)
            session._queue.put_nowait(stale)
            await settle(session)

            assert _events(transport.urls) == ["started"]
            assert fake_clock.pending == [900]

    async def test_tracker_id_is_sticky(self, make_session, fake_clock):
        transport = ScriptedTransport(
            tracker_reply({"interval": 900, "tracker id": "T1"}),
            tracker_reply({"interval": 900}),
        )
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            assert session.tracker_id == "T1"

            await _wake(session, fake_clock)
            assert session.tracker_id == "T1"

    async def test_tracker_id_not_echoed_by_default(self, make_session, fake_clock):
        transport = ScriptedTransport(tracker_reply({"interval": 900, "tracker id": "T1"}))
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            await _wake(session, fake_clock)

        assert all("trackerid=" not in url for url in transport.urls)

    async def test_tracker_id_echoed_when_enabled(self, make_session, fake_clock):
        transport = ScriptedTransport(tracker_reply({"interval": 900, "tracker id": "T1"}))
        async with make_session(transport, echo_tracker_id=True) as session:
            session.start()
            await settle(session)
            await _wake(session, fake_clock)

        assert "trackerid=" not in transport.urls[0]
        assert transport.urls[1].endswith("&port=6881&trackerid=T1")


class TestReplyPrecedence:
    async def test_failure_reason_reports_error_only(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(
            tracker_reply({"failure reason": "unregistered torrent", "peers": [{"ip": "1.1.1.1", "port": 1}]})
        )
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert sinks.errors == ["unregistered torrent"]
            assert sinks.peers == []
            assert sinks.stats == []
            assert fake_clock.pending == [180]
            assert session.state is SessionState.ARMED

    async def test_failure_reason_keeps_last_known_stats(self, make_session, fake_clock):
        transport = ScriptedTransport(
            SCENARIO_REPLY,
            tracker_reply({"failure reason": "overloaded", "complete": 99, "interval": 300}),
        )
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            await _wake(session, fake_clock)

            assert (session.last_complete, session.last_incomplete) == (10, 2)
            assert fake_clock.pending == [300]

    async def test_warning_reports_and_still_dispatches(self, make_session, sinks):
        transport = ScriptedTransport(
            tracker_reply(
                {
                    "warning message": "slow down",
                    "interval": 900,
                    "complete": 3,
                    "incomplete": 4,
                    "peers": [{"ip": "1.1.1.1", "port": 1}],
                }
            )
        )
        async with make_session(transport) as session:
            session.start()
            await settle(session)

        assert sinks.warnings == ["slow down"]
        assert sinks.peers == [[PeerEntry(ip="1.1.1.1", port=1)]]
        assert sinks.stats == [(3, 4)]
        assert sinks.errors == []


class TestTimeout:
    async def test_timeout_schedules_fallback_and_keeps_state(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(
            tracker_reply({"interval": 900, "tracker id": "T1", "complete": 5, "incomplete": 1}),
            asyncio.TimeoutError(),
        )
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            calls_before = sinks.calls

            await _wake(session, fake_clock)

            assert fake_clock.pending == [1800]
            assert session.next_interval == 1800
            assert session.tracker_id == "T1"
            assert (session.last_complete, session.last_incomplete) == (5, 1)
            assert sinks.calls == calls_before
            assert session.state is SessionState.ARMED

    async def test_timeout_on_start_stays_armed(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(asyncio.TimeoutError(), SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert session.state is SessionState.ARMED
            assert fake_clock.pending == [1800]
            assert sinks.calls == 0

            await _wake(session, fake_clock)
            assert _events(transport.urls) == ["started", None]
            assert fake_clock.pending == [900]


class TestOtherFailure:
    async def test_backoff_policy_grows_and_resets(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(
            SCENARIO_REPLY,
            REFUSED,
            REFUSED,
            tracker_reply({"interval": 600}),
            REFUSED,
            tracker_reply({"interval": 600}),
        )
        async with make_session(transport, other_failure_policy="backoff") as session:
            session.start()
            await settle(session)

            delays = []
            for _ in range(4):
                await _wake(session, fake_clock)
                delays.extend(fake_clock.pending)

            assert delays == [15, 30, 600, 15]
            assert sinks.errors == ["Tracker announce failed: ConnectionRefusedError: refused"] * 3
            assert session.state is SessionState.ARMED

    async def test_backoff_is_capped(self, make_session, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY, REFUSED)
        async with make_session(transport, retry_base_delay=100, retry_max_delay=250) as session:
            session.start()
            await settle(session)

            delays = []
            for _ in range(4):
                await _wake(session, fake_clock)
                delays.extend(fake_clock.pending)

            assert delays == [100, 200, 250, 250]

    async def test_backoff_jitter_from_config(self, make_session, fake_clock, monkeypatch):
        monkeypatch.setattr("btannounce.utils.backoff.random.random", lambda: 0.0)
        transport = ScriptedTransport(REFUSED)
        async with make_session(
            transport, retry_base_delay=100, retry_max_delay=100, retry_jitter=0.5
        ) as session:
            session.start()
            await settle(session)

            assert fake_clock.pending == [50]

    async def test_report_policy_retries_at_default_interval(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(REFUSED)
        async with make_session(transport, other_failure_policy="report") as session:
            session.start()
            await settle(session)
            assert fake_clock.pending == [180]

            await _wake(session, fake_clock)
            assert fake_clock.pending == [180]
            assert len(sinks.errors) == 2
            assert session.state is SessionState.ARMED

    async def test_terminate_policy_ends_session_without_stopped(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY, REFUSED)
        async with make_session(transport, other_failure_policy="terminate") as session:
            session.start()
            await settle(session)

            await _wake(session, fake_clock)

            assert session.state is SessionState.TERMINATED
            assert fake_clock.pending == []
            assert sinks.errors == ["Tracker announce failed: ConnectionRefusedError: refused"]
            with pytest.raises(TrackerError):
                await session.wait_closed()
            with pytest.raises(SessionTerminatedError):
                session.contact_now()
            assert await session.stop() is True

        assert _events(transport.urls) == ["started", None]
        assert not session.final_announce_sent

    async def test_non_200_status_is_other_failure(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport((500, b"oops"))
        async with make_session(transport, other_failure_policy="report") as session:
            session.start()
            await settle(session)

        assert sinks.errors == ["Tracker announce failed: HTTP 500"]

    async def test_undecodable_body_is_other_failure(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport((200, b"<html>not bencode</html>"))
        async with make_session(transport, other_failure_policy="report") as session:
            session.start()
            await settle(session)

            assert len(sinks.errors) == 1
            assert sinks.errors[0].startswith("Tracker announce failed: Undecodable tracker reply")
            assert sinks.peers == []
            assert fake_clock.pending == [180]

    async def test_deeply_nested_body_is_other_failure(self, make_session, sinks, fake_clock):
        transport = ScriptedTransport((200, b"d1:x" + b"l" * 5000 + b"e" * 5000 + b"e"))
        async with make_session(transport, other_failure_policy="report") as session:
            session.start()
            await settle(session)

            assert len(sinks.errors) == 1
            assert sinks.errors[0].startswith("Tracker announce failed: Undecodable tracker reply")
            assert session.state is SessionState.ARMED
            assert session.failure is None
            assert fake_clock.pending == [180]


class TestExternalTriggers:
    async def test_contact_now_supersedes_pending_wakeup(self, make_session, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY, tracker_reply({"interval": 700}))
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            generation = session.generation

            session.contact_now()
            await settle(session)

            assert _events(transport.urls) == ["started", None]
            assert fake_clock.pending == [700]
            assert session.generation > generation

    async def test_torrent_completed_sends_completed(self, make_session, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY, tracker_reply({"interval": 1200}))
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            session.torrent_completed()
            await settle(session)

            assert _events(transport.urls) == ["started", "completed"]
            assert fake_clock.pending == [1200]

    async def test_triggers_before_start_are_ignored(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.contact_now()
            session.torrent_completed()
            await settle(session)

            assert transport.urls == []
            assert session.state is SessionState.IDLE

    async def test_commands_queue_behind_in_flight_request(self, make_session, fake_clock):
        transport = ScriptedTransport()
        transport.gate = asyncio.Event()
        async with make_session(transport) as session:
            session.start()
            for _ in range(3):
                await asyncio.sleep(0)
            session.contact_now()
            session.torrent_completed()
            assert len(transport.urls) == 1

            transport.gate.set()
            await settle(session)

            assert _events(transport.urls) == ["started", None, "completed"]
            assert fake_clock.pending == [1800]


class TestStop:
    async def test_stop_sends_stopped_and_terminates(self, make_session, fake_clock):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert await session.stop() is True

            assert _events(transport.urls) == ["started", "stopped"]
            assert session.state is SessionState.TERMINATED
            assert session.final_announce_sent
            assert not session.contact_enabled
            assert fake_clock.pending == []
            assert fake_clock.fire() == 0

    async def test_stop_succeeds_when_stopped_announce_fails(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY, REFUSED)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert await session.stop() is True
            assert session.state is SessionState.TERMINATED
            await session.wait_closed()

    async def test_stop_from_idle_announces_stopped(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            assert await session.stop() is True

        assert _events(transport.urls) == ["stopped"]

    async def test_stopped_announce_sent_once(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)
            assert await session.stop() is True
            assert await session.stop() is True

        assert _events(transport.urls) == ["started", "stopped"]

    async def test_commands_after_stop_raise(self, make_session):
        async with make_session(ScriptedTransport(SCENARIO_REPLY)) as session:
            await session.stop()
            with pytest.raises(SessionTerminatedError):
                session.start()
            with pytest.raises(SessionTerminatedError):
                session.torrent_completed()

    async def test_aclose_sends_stopped_for_running_session(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

        assert _events(transport.urls) == ["started", "stopped"]
        assert session.state is SessionState.TERMINATED

    async def test_aclose_of_idle_session_sends_nothing(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            pass

        assert transport.urls == []
        assert session.state is SessionState.TERMINATED

    async def test_stop_queued_behind_in_flight_request(self, make_session):
        transport = ScriptedTransport(SCENARIO_REPLY)
        transport.gate = asyncio.Event()
        async with make_session(transport) as session:
            session.start()
            await asyncio.sleep(0)
            stop = asyncio.create_task(session.stop())
            await asyncio.sleep(0)
            assert not stop.done()

            transport.gate.set()
            assert await stop is True

        assert _events(transport.urls) == ["started", "stopped"]


class TestFaultIsolation:
    async def test_failing_sink_does_not_break_session(self, make_session, fake_clock, sinks):
        def broken_add_peers(peers):
            raise RuntimeError("peer sink down")

        sinks.add_peers = broken_add_peers
        transport = ScriptedTransport(SCENARIO_REPLY)
        async with make_session(transport) as session:
            session.start()
            await settle(session)

            assert sinks.stats == [(10, 2)]
            assert fake_clock.pending == [900]
            assert session.state is SessionState.ARMED

    async def test_crashing_stats_source_terminates_session(self, fake_clock, sinks):
        class BrokenStats:
            def report_to_tracker(self):
                raise RuntimeError("stats unavailable")

        session = AnnounceSession(
            TRACKER_URL,
            INFO_HASH,
            PEER_ID,
            BrokenStats(),
            sinks,
            sinks,
            sinks,
            ScriptedTransport(SCENARIO_REPLY),
            port=6881,
            config=TrackerConfig(),
            clock=fake_clock,
        )
        session.start()
        with pytest.raises(TrackerError):
            await session.wait_closed()
        assert session.state is SessionState.TERMINATED
        await session.aclose()
