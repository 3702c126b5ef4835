from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from signalbot.stream_id import parse_config_name


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass(slots=True)
class SubscriptionRecord:
    stream_id: str
    symbol: str
    interval: str
    strategy_key: str
    enabled: bool = True
    strategy_params: dict[str, Any] = field(default_factory=dict)
    backtest_settings: dict[str, Any] = field(default_factory=dict)
    freshness_bars: int = 1
    notify_entry: bool = True
    notify_exit: bool = False
    candle_limit: int = 350
    two_hour_parity: str = "odd"
    last_processed_closed_candle_time: int = 0
    last_exit_alert_token: str | None = None
    last_run_at: datetime | None = None
    last_status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stream_id": self.stream_id,
            "enabled": self.enabled,
            "symbol": self.symbol,
            "interval": self.interval,
            "strategy_key": self.strategy_key,
            "config_name": parse_config_name(self.stream_id),
            "strategy_params": dict(self.strategy_params),
            "backtest_settings": dict(self.backtest_settings),
            "freshness_bars": self.freshness_bars,
            "notify_entry": self.notify_entry,
            "notify_exit": self.notify_exit,
            "candle_limit": self.candle_limit,
            "two_hour_parity": self.two_hour_parity,
            "last_processed_closed_candle_time": self.last_processed_closed_candle_time,
            "last_exit_alert_token": self.last_exit_alert_token,
            "last_run_at": _iso(self.last_run_at),
            "last_status": self.last_status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(slots=True)
class EntrySignalRecord:
    channel_key: str
    dedupe_key: str
    stream_id: str
    symbol: str
    interval: str
    strategy_key: str
    direction: str
    signal_time: int
    signal_price: float
    signal_reason: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_key": self.channel_key,
            "dedupe_key": self.dedupe_key,
            "stream_id": self.stream_id,
            "symbol": self.symbol,
            "interval": self.interval,
            "strategy_key": self.strategy_key,
            "direction": self.direction,
            "signal_time": self.signal_time,
            "signal_price": self.signal_price,
            "signal_reason": self.signal_reason,
            "payload": dict(self.payload),
            "created_at": _iso(self.created_at),
        }
