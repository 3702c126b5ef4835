from __future__ import annotations

import pytest

from signalbot.clock import (
    bucket_start,
    interval_seconds,
    is_candle_closed,
    is_subscription_due,
    to_iso,
)
from signalbot.status import error_status, normalize_status_text, response_snippet
from signalbot.stream_id import build_channel_key, build_stream_id, parse_config_name, parse_two_hour_parity


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("1m", 60),
        ("15m", 900),
        ("4h", 14_400),
        ("1d", 86_400),
        ("1w", 604_800),
        ("1M", 2_592_000),
        ("0m", None),
        ("1x", None),
        ("h1", None),
        ("", None),
    ],
)
def test_interval_seconds(token: str, expected: int | None) -> None:
    assert interval_seconds(token) == expected


def test_bucket_start_even_parity_is_shifted_one_hour() -> None:
    t = 1_700_006_400  # aligned to 2h
    assert bucket_start(t, 7200) == t
    assert bucket_start(t, 7200, "even") == t - 3600
    assert bucket_start(t + 3600, 7200, "even") == t + 3600
    # Parity has no effect on other intervals.
    assert bucket_start(t + 1800, 3600, "even") == t


def test_bucket_start_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        bucket_start(100, 0)


def test_candle_closed_boundary() -> None:
    assert is_candle_closed(0, 60, 60) is True
    assert is_candle_closed(0, 60, 59) is False


def test_subscription_due_filter() -> None:
    last = 1_700_000_000
    assert is_subscription_due(last_processed_closed_ts=0, interval_sec=3600, now_sec=last) is True
    assert is_subscription_due(last_processed_closed_ts=last, interval_sec=3600, now_sec=last + 7199) is False
    assert is_subscription_due(last_processed_closed_ts=last, interval_sec=3600, now_sec=last + 7200) is True
    assert is_subscription_due(last_processed_closed_ts=last, interval_sec=None, now_sec=last) is True


def test_to_iso_uses_millisecond_z_format() -> None:
    assert to_iso(0) == "1970-01-01T00:00:00.000Z"


def test_stream_id_markers_round_trip() -> None:
    stream_id = build_stream_id("BTCUSDT", "2h", "sma_crossover", config_name="My Config/1", two_hour_parity="even")
    assert stream_id == "btcusdt:2h:sma_crossover:2hcp:even:cfg:My%20Config%2F1"
    assert parse_config_name(stream_id) == "My Config/1"
    assert parse_two_hour_parity(stream_id) == "even"
    assert parse_two_hour_parity("btcusdt:2h:x") is None


def test_channel_key_prefers_stream_id() -> None:
    assert build_channel_key(stream_id=" Custom:ID ", symbol="BTC", interval="1h", strategy_key="k") == "custom:id"
    assert build_channel_key(stream_id=None, symbol="BTC", interval="1h", strategy_key="K") == "btc:1h:k"


def test_normalize_status_text_truncates_on_word_boundary() -> None:
    text = " ".join(["word"] * 400)
    result = normalize_status_text(text)
    assert len(result) <= 1200
    assert result.endswith("...")
    assert not result[:-3].endswith(" ")
    assert normalize_status_text("  a \n  b  ") == "a b"


def test_response_snippet_strips_html_and_caps_length() -> None:
    body = "<html><body><h1>502 Bad Gateway</h1>" + "x" * 1000 + "</body></html>"
    snippet = response_snippet(body)
    assert snippet.startswith("502 Bad Gateway")
    assert "<" not in snippet
    assert len(snippet) <= 320


def test_error_status_prefix() -> None:
    assert error_status("boom") == "error:boom"
    assert len(error_status("x " * 2000)) <= 1200
