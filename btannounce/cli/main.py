"""btannounce command-line interface.

Commands:
    announce  send one announce and print the tracker's reply
    run       keep an announce session going until interrupted or ``--duration`` elapses
"""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.table import Table

from btannounce.config import init_config
from btannounce.exceptions import BencodeError, BTAnnounceError, ConfigurationError
from btannounce.logging_config import setup_logging
from btannounce.models import AnnounceEvent, Config, LogLevel, PeerEntry
from btannounce.tracker import (
    AnnounceRequestBuilder,
    AnnounceResponse,
    AnnounceSession,
    ErrorClassifier,
    HttpTransport,
    ResponseInterpreter,
    ResponseKind,
    StatsSnapshot,
    Success,
    TimeoutFailure,
)
from btannounce.utils.version import PEER_ID_LENGTH, generate_peer_id, get_version

logger = logging.getLogger(__name__)

PEER_TABLE_LIMIT = 20


class FixedStats:
    """Stats source that always reports the same counters."""

    def __init__(self, snapshot: StatsSnapshot):
        self.snapshot = snapshot

    def report_to_tracker(self) -> StatsSnapshot:
        return self.snapshot


class ConsoleSinks:
    """Peer, stats and control sink that prints to a rich console."""

    def __init__(self, console: Console):
        self.console = console
        self.peers: list[PeerEntry] = []
        self.errors: list[str] = []

    def add_peers(self, peers: list[PeerEntry]) -> None:
        self.peers.extend(peers)
        self.console.print(f"[green]Received {len(peers)} peers[/green]")

    def report_from_tracker(self, complete: int | None, incomplete: int | None) -> None:
        self.console.print(
            f"[cyan]Seeders: {_count(complete)}  Leechers: {_count(incomplete)}[/cyan]"
        )

    def tracker_error_report(self, message: str) -> None:
        self.errors.append(message)
        self.console.print(f"[red]Tracker error: {message}[/red]")

    def tracker_warning_report(self, message: str) -> None:
        self.console.print(f"[yellow]Tracker warning: {message}[/yellow]")


def _count(value: int | None) -> str:
    return "unknown" if value is None else str(value)


def _validate_info_hash(_ctx, _param, value: str) -> bytes:
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raw = b""
    if len(raw) != 20:
        msg = "Info hash must be 40 hex characters"
        raise click.BadParameter(msg)
    return raw


def _validate_peer_id(_ctx, _param, value: str | None) -> bytes:
    if value is None:
        return generate_peer_id()
    raw = value.encode("utf-8")
    if len(raw) != PEER_ID_LENGTH:
        msg = f"Peer id must be exactly {PEER_ID_LENGTH} bytes"
        raise click.BadParameter(msg)
    return raw


def _print_response(console: Console, response: AnnounceResponse) -> None:
    table = Table(title="Announce Result")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Result", response.kind.value)
    if response.failure_reason is not None:
        table.add_row("Failure Reason", response.failure_reason)
    if response.warning_message is not None:
        table.add_row("Warning", response.warning_message)
    table.add_row("Interval", f"{response.interval}s")
    table.add_row("Seeders", _count(response.complete))
    table.add_row("Leechers", _count(response.incomplete))
    table.add_row("Tracker ID", response.tracker_id or "-")
    table.add_row("Peers", str(len(response.peers)))
    console.print(table)

    if response.peers:
        peers = Table(title="Peers")
        peers.add_column("Address", style="cyan")
        peers.add_column("Peer ID", style="dim")
        for peer in response.peers[:PEER_TABLE_LIMIT]:
            peers.add_row(str(peer), peer.peer_id.hex() if peer.peer_id else "-")
        if len(response.peers) > PEER_TABLE_LIMIT:
            peers.caption = f"{len(response.peers) - PEER_TABLE_LIMIT} more not shown"
        console.print(peers)


def _print_session(console: Console, session: AnnounceSession) -> None:
    table = Table(title="Session Summary")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("State", session.state.value)
    table.add_row("Tracker ID", session.tracker_id or "-")
    table.add_row("Seeders", _count(session.last_complete))
    table.add_row("Leechers", _count(session.last_incomplete))
    table.add_row("Last Interval", f"{session.next_interval}s")
    table.add_row("Stopped Sent", "yes" if session.final_announce_sent else "no")
    console.print(table)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path",
)
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LogLevel], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.version_option(get_version(), prog_name="btannounce")
@click.pass_context
def cli(ctx, config, log_level):
    """Btannounce - HTTP BitTorrent tracker announce client."""
    ctx.ensure_object(dict)
    try:
        manager = init_config(config)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    cfg = manager.config
    if log_level:
        cfg.observability.log_level = LogLevel(log_level.upper())
        setup_logging(cfg.observability)
    ctx.obj["config"] = cfg


@cli.command("announce")
@click.argument("tracker_url")
@click.option("--info-hash", required=True, callback=_validate_info_hash, help="Info hash (40 hex characters)")
@click.option("--peer-id", callback=_validate_peer_id, help="Peer id (20 characters); generated when omitted")
@click.option("--port", type=click.IntRange(1, 65535), help="Listening port to report")
@click.option("--uploaded", type=click.IntRange(min=0), default=0, show_default=True, help="Bytes uploaded")
@click.option("--downloaded", type=click.IntRange(min=0), default=0, show_default=True, help="Bytes downloaded")
@click.option("--left", type=click.IntRange(min=0), default=0, show_default=True, help="Bytes left")
@click.option(
    "--event",
    type=click.Choice([event.value for event in AnnounceEvent]),
    help="Lifecycle event to send",
)
@click.pass_context
def announce(ctx, tracker_url, info_hash, peer_id, port, uploaded, downloaded, left, event):
    """Send a single announce and print the reply."""
    console = Console()
    cfg: Config = ctx.obj["config"]

    try:
        builder = AnnounceRequestBuilder(
            tracker_url,
            info_hash,
            peer_id,
            port or cfg.network.listen_port,
        )
    except BTAnnounceError as e:
        raise click.ClickException(str(e)) from e
    url = builder.build(
        StatsSnapshot(uploaded=uploaded, downloaded=downloaded, left=left),
        AnnounceEvent(event) if event else None,
    )
    logger.debug("Announce URL: %s", url)

    async def _announce():
        async with HttpTransport(cfg.tracker) as transport:
            return await ErrorClassifier().fetch(transport, url)

    outcome = asyncio.run(_announce())
    if isinstance(outcome, TimeoutFailure):
        msg = f"Tracker timed out: {outcome.detail}"
        raise click.ClickException(msg)
    if not isinstance(outcome, Success):
        msg = f"Announce failed: {outcome.detail}"
        raise click.ClickException(msg)

    try:
        response = ResponseInterpreter(cfg.tracker.default_interval).interpret(outcome.body)
    except BencodeError as e:
        msg = f"Undecodable tracker reply: {e}"
        raise click.ClickException(msg) from e

    _print_response(console, response)
    if response.kind is ResponseKind.FAILURE:
        msg = f"Tracker refused announce: {response.failure_reason}"
        raise click.ClickException(msg)


@cli.command("run")
@click.argument("tracker_url")
@click.option("--info-hash", required=True, callback=_validate_info_hash, help="Info hash (40 hex characters)")
@click.option("--peer-id", callback=_validate_peer_id, help="Peer id (20 characters); generated when omitted")
@click.option("--port", type=click.IntRange(1, 65535), help="Listening port to report")
@click.option("--left", type=click.IntRange(min=0), default=0, show_default=True, help="Bytes left")
@click.option(
    "--duration",
    type=click.FloatRange(min=0),
    help="Stop after this many seconds (runs until interrupted when omitted)",
)
@click.pass_context
def run(ctx, tracker_url, info_hash, peer_id, port, left, duration):
    """Announce periodically until stopped, then announce "stopped"."""
    console = Console()
    cfg: Config = ctx.obj["config"]
    sinks = ConsoleSinks(console)

    async def _run() -> AnnounceSession:
        async with HttpTransport(cfg.tracker) as transport:
            session = AnnounceSession(
                tracker_url,
                info_hash,
                peer_id,
                FixedStats(StatsSnapshot(left=left)),
                sinks,
                sinks,
                sinks,
                transport,
                port=port or cfg.network.listen_port,
                config=cfg.tracker,
            )
            session.start()
            try:
                await asyncio.wait_for(session.wait_closed(), timeout=duration)
            except asyncio.TimeoutError:
                pass
            finally:
                await session.aclose()
            return session

    console.print(f"[bold]Announcing to {tracker_url}[/bold] (Ctrl+C to stop)")
    try:
        session = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return
    except BTAnnounceError as e:
        raise click.ClickException(str(e)) from e
    _print_session(console, session)


if __name__ == "__main__":
    cli()
