"""Tests for announce URL building."""

from __future__ import annotations

import pytest

from btannounce.exceptions import ValidationError
from btannounce.models import AnnounceEvent
from btannounce.tracker.request import AnnounceRequestBuilder, StatsSnapshot, encode_binary
from tests.conftest import INFO_HASH, PEER_ID, TRACKER_URL

pytestmark = [pytest.mark.unit, pytest.mark.tracker]


@pytest.fixture
def builder():
    return AnnounceRequestBuilder(TRACKER_URL, INFO_HASH, PEER_ID, 6881)


def test_encode_binary_escapes_every_reserved_byte():
    assert encode_binary(b"\x00\x01\xff") == "%00%01%FF"
    assert encode_binary(b"AZaz09-._~") == "AZaz09-._~"
    assert encode_binary(b" /?&=:+") == "%20%2F%3F%26%3D%3A%2B"


def test_build_without_event(builder):
    url = builder.build(StatsSnapshot(uploaded=100, downloaded=200, left=300))

    assert url == (
        f"{TRACKER_URL}?info_hash={encode_binary(INFO_HASH)}"
        f"&peer_id={encode_binary(PEER_ID)}"
        "&uploaded=100&downloaded=200&left=300&port=6881"
    )
    assert "event=" not in url


@pytest.mark.parametrize("event", list(AnnounceEvent))
def test_build_event_appended_last(builder, event):
    url = builder.build(StatsSnapshot(), event)
    assert url.endswith(f"&port=6881&event={event.value}")


def test_build_parameter_order(builder):
    url = builder.build(StatsSnapshot(1, 2, 3), AnnounceEvent.STARTED)
    query = url.split("?", 1)[1]
    keys = [pair.split("=", 1)[0] for pair in query.split("&")]
    assert keys == ["info_hash", "peer_id", "uploaded", "downloaded", "left", "port", "event"]


def test_build_with_tracker_id_before_event(builder):
    url = builder.build(StatsSnapshot(), AnnounceEvent.COMPLETED, tracker_id="abc 1")
    assert url.endswith("&port=6881&trackerid=abc%201&event=completed")


def test_build_appends_to_existing_query():
    builder = AnnounceRequestBuilder(f"{TRACKER_URL}?passkey=secret", INFO_HASH, PEER_ID, 51413)
    url = builder.build(StatsSnapshot())
    assert url.startswith(f"{TRACKER_URL}?passkey=secret&info_hash=")


def test_info_hash_is_percent_encoded(builder):
    url = builder.build(StatsSnapshot())
    assert "info_hash=%00%01%02%03%04%05%06%07%08%09%0A%0B%0C%0D%0E%0F%10%11%12%13&" in url


@pytest.mark.parametrize(
    ("url", "info_hash", "peer_id", "port"),
    [
        ("", INFO_HASH, PEER_ID, 6881),
        (TRACKER_URL, b"short", PEER_ID, 6881),
        (TRACKER_URL, INFO_HASH, b"x" * 21, 6881),
        (TRACKER_URL, INFO_HASH, PEER_ID, 0),
        (TRACKER_URL, INFO_HASH, PEER_ID, 70000),
    ],
)
def test_builder_rejects_invalid_identity(url, info_hash, peer_id, port):
    with pytest.raises(ValidationError):
        AnnounceRequestBuilder(url, info_hash, peer_id, port)
