from __future__ import annotations

import pytest
import requests

from signalbot.monitoring.messages import build_entry_message, build_exit_message, format_number
from signalbot.monitoring.notifier import NotificationError, NotifierConfig, TelegramNotifier

from support import T0, FakeResponse, FakeSession

API = "https://telegram.test"


def _notifier(session: FakeSession, **overrides) -> TelegramNotifier:
    values = {"bot_token": "123:abc", "chat_id": "-100", "timeout_seconds": 3.0, "api_base": API}
    values.update(overrides)
    return TelegramNotifier(NotifierConfig(**values), session=session)


def test_format_number() -> None:
    assert format_number(100.0) == "100"
    assert format_number(0.000123) == "0.000123"
    assert format_number(0) == "0"


def test_entry_message_includes_targets() -> None:
    text = build_entry_message(
        {
            "symbol": "BTCUSDT",
            "interval": "1h",
            "strategyName": "SMA Crossover",
            "strategyKey": "sma_crossover",
            "direction": "short",
            "signalPrice": 200.0,
            "signalTimeSec": T0,
            "signalReason": "SMA 10 crossed below SMA 30",
            "takeProfitPrice": 180.0,
            "takeProfitPercent": 10.0,
            "stopLossPrice": 210.0,
            "stopLossPercent": 5.0,
        }
    )
    lines = text.splitlines()
    assert lines[0].endswith("New Entry Signal")
    assert "Direction: SHORT" in lines
    assert "Price: 200" in lines
    assert any(line.endswith("Take Profit: 180.0000 (+10.00%)") for line in lines)
    assert any(line.endswith("Stop Loss: 210.0000 (-5.00%)") for line in lines)
    assert lines[-1] == "Reason: SMA 10 crossed below SMA 30"


def test_entry_message_without_targets() -> None:
    text = build_entry_message({"symbol": "ETHUSDT", "direction": "long", "signalPrice": 1.5, "signalTimeSec": 0})
    assert "Take Profit" not in text
    assert "Time (UTC): 1970-01-01T00:00:00.000Z" in text


def test_exit_message() -> None:
    text = build_exit_message(
        exit_direction="long",
        symbol="BTCUSDT",
        interval="4h",
        strategy_name="SMA Crossover",
        strategy_key="sma_crossover",
        price=99.5,
        time_sec=0,
    )
    assert "Closing: LONG position" in text
    assert "Price: 99.5" in text


def test_send_posts_message() -> None:
    session = FakeSession({API: [FakeResponse(payload={"ok": True})]})
    _notifier(session).send("hello")
    call = session.calls[0]
    assert call["url"] == f"{API}/bot123:abc/sendMessage"
    assert call["json"] == {"chat_id": "-100", "text": "hello"}
    assert call["timeout"] == 3.0


def test_missing_credentials() -> None:
    notifier = _notifier(FakeSession(), bot_token=" ")
    assert notifier.configured is False
    with pytest.raises(NotificationError, match="Missing TELEGRAM_BOT_TOKEN"):
        notifier.send("hello")


def test_http_error_includes_status_and_snippet() -> None:
    session = FakeSession({API: [FakeResponse(status_code=502, text="<h1>Bad Gateway</h1>")]})
    with pytest.raises(NotificationError) as excinfo:
        _notifier(session).send("hello")
    assert str(excinfo.value) == "Telegram send failed (502): Bad Gateway"


def test_ok_false_body_is_failure() -> None:
    session = FakeSession({API: [FakeResponse(payload={"ok": False, "description": "chat not found"})]})
    with pytest.raises(NotificationError, match="chat not found"):
        _notifier(session).send("hello")


def test_network_error_hides_token() -> None:
    session = FakeSession({API: [requests.ConnectionError("https://telegram.test/bot123:abc/sendMessage")]})
    with pytest.raises(NotificationError) as excinfo:
        _notifier(session).send("hello")
    assert "123:abc" not in str(excinfo.value)
    assert "ConnectionError" in str(excinfo.value)
