from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from signalbot.data.candles import Candle
from signalbot.monitoring.notifier import NotificationError
from signalbot.storage.db import get_connection, init_db
from signalbot.strategy.contracts import EvaluatedSignal, EvaluationRequest, EvaluationResult
from signalbot.strategy.registry import signal_fingerprint

HOUR = 3600
T0 = 1_700_000_000 // HOUR * HOUR


def open_db(tmp_path: Path) -> sqlite3.Connection:
    conn = get_connection(tmp_path / "signals.db")
    init_db(conn)
    return conn


def make_candles(count: int, *, start: int = T0, interval_sec: int = HOUR, base: float = 100.0) -> list[Candle]:
    return [
        Candle(
            time=start + idx * interval_sec,
            open=base + idx,
            high=base + idx + 2,
            low=base + idx - 2,
            close=base + idx + 1,
            volume=10.0,
        )
        for idx in range(count)
    ]


def entry_signal(
    *,
    direction: str = "long",
    signal_time: int = T0,
    price: float = 100.0,
    age: int = 0,
    fresh: bool = True,
    strategy_key: str = "fake",
) -> EvaluatedSignal:
    return EvaluatedSignal(
        strategy_key=strategy_key,
        strategy_name="Fake Strategy",
        direction=direction,
        signal_time=signal_time,
        price=price,
        reason="test cross",
        signal_age_bars=age,
        is_fresh=fresh,
        fingerprint=signal_fingerprint(strategy_key, direction, signal_time, price),
    )


class FakeEvaluator:
    def __init__(self, result: EvaluationResult | None = None):
        self.result = result or EvaluationResult(ok=True, reason="no_signals")
        self.requests: list[EvaluationRequest] = []

    def evaluate(self, request: EvaluationRequest) -> EvaluationResult:
        self.requests.append(request)
        return self.result


class FakeNotifier:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.messages: list[str] = []

    def send(self, text: str) -> None:
        if self.fail:
            raise NotificationError("Telegram send failed (502): bad gateway")
        self.messages.append(text)


class FakeCandleSource:
    def __init__(self, candles: list[Candle]):
        self.candles = candles
        self.calls: list[tuple[str, str, int | None, str | None]] = []

    def fetch(self, symbol: str, interval: str, limit: int | None = None, parity: str | None = "odd") -> list[Candle]:
        self.calls.append((symbol, interval, limit, parity))
        return list(self.candles)


@dataclass
class FakeResponse:
    status_code: int = 200
    payload: Any = None
    text: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """Serves queued responses keyed by URL prefix; records every call."""

    def __init__(self, routes: dict[str, list[Any]] | None = None):
        self.routes = {key: list(value) for key, value in (routes or {}).items()}
        self.calls: list[dict[str, Any]] = []

    def _next(self, url: str) -> Any:
        for prefix, queue in self.routes.items():
            if url.startswith(prefix) and queue:
                return queue.pop(0) if len(queue) > 1 else queue[0]
        return FakeResponse(status_code=404, text="not found")

    def get(self, url: str, params: dict[str, Any] | None = None, headers: Any = None, timeout: float | None = None) -> Any:
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        item = self._next(url)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url: str, json: Any = None, timeout: float | None = None) -> Any:
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        item = self._next(url)
        if isinstance(item, Exception):
            raise item
        return item
