from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from typing import Any

from signalbot.clock import interval_seconds, utc_now
from signalbot.config import ConfigurationError
from signalbot.status import normalize_status_text
from signalbot.storage.db import from_db_time, to_db_time
from signalbot.storage.models import SubscriptionRecord
from signalbot.stream_id import build_stream_id, parse_two_hour_parity

LOGGER = logging.getLogger(__name__)


def _load_json_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _row_to_subscription(row: sqlite3.Row) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=int(row["id"]),
        stream_id=row["stream_id"],
        enabled=bool(row["enabled"]),
        symbol=row["symbol"],
        interval=row["interval"],
        strategy_key=row["strategy_key"],
        strategy_params=_load_json_object(row["strategy_params_json"]),
        backtest_settings=_load_json_object(row["backtest_settings_json"]),
        freshness_bars=int(row["freshness_bars"]),
        notify_entry=bool(row["notify_entry"]),
        notify_exit=bool(row["notify_exit"]),
        candle_limit=int(row["candle_limit"]),
        two_hour_parity=row["two_hour_parity"] or "odd",
        last_processed_closed_candle_time=int(row["last_processed_closed_candle_time"] or 0),
        last_exit_alert_token=row["last_exit_alert_token"],
        last_run_at=from_db_time(row["last_run_at"]),
        last_status=row["last_status"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class SubscriptionStore:
    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        lock: threading.Lock | None = None,
        min_candle_limit: int = 200,
        max_candle_limit: int = 1000,
        default_candle_limit: int = 350,
    ):
        self.conn = conn
        self.lock = lock or threading.Lock()
        self.min_candle_limit = min_candle_limit
        self.max_candle_limit = max_candle_limit
        self.default_candle_limit = default_candle_limit

    def clamp_candle_limit(self, value: int) -> int:
        return max(self.min_candle_limit, min(self.max_candle_limit, int(value)))

    def get(self, stream_id: str) -> SubscriptionRecord | None:
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM signal_subscriptions WHERE stream_id = ? LIMIT 1",
                (stream_id.strip(),),
            ).fetchone()
        return _row_to_subscription(row) if row is not None else None

    def list_all(self) -> list[SubscriptionRecord]:
        with self.lock:
            rows = self.conn.execute("SELECT * FROM signal_subscriptions ORDER BY id ASC").fetchall()
        return [_row_to_subscription(row) for row in rows]

    def list_enabled(self) -> list[SubscriptionRecord]:
        with self.lock:
            rows = self.conn.execute(
                "SELECT * FROM signal_subscriptions WHERE enabled = 1 ORDER BY id ASC"
            ).fetchall()
        return [_row_to_subscription(row) for row in rows]

    def upsert(
        self,
        *,
        stream_id: str | None = None,
        symbol: str | None = None,
        interval: str | None = None,
        strategy_key: str | None = None,
        config_name: str | None = None,
        enabled: bool | None = None,
        strategy_params: dict[str, Any] | None = None,
        backtest_settings: dict[str, Any] | None = None,
        freshness_bars: int | None = None,
        notify_entry: bool | None = None,
        notify_exit: bool | None = None,
        candle_limit: int | None = None,
        two_hour_parity: str | None = None,
    ) -> SubscriptionRecord:
        """Create or update a subscription keyed by stream id.

        Fields left as ``None`` keep their stored value (or the default for a new row).
        The processing cursor, status and exit token are never touched here.
        """
        incoming_stream_id = _text(stream_id)
        existing = self.get(incoming_stream_id) if incoming_stream_id else None

        symbol_value = _text(symbol).upper() or (existing.symbol if existing else "")
        interval_value = _text(interval) or (existing.interval if existing else "")
        strategy_value = _text(strategy_key) or (existing.strategy_key if existing else "")
        if not symbol_value or not interval_value or not strategy_value:
            raise ConfigurationError("Required fields: symbol, interval, strategyKey")
        if interval_seconds(interval_value) is None:
            raise ConfigurationError(f"Unsupported interval: {interval_value}")

        parity_text = _text(two_hour_parity).lower()
        if parity_text and parity_text not in {"odd", "even"}:
            raise ConfigurationError("twoHourParity must be 'odd' or 'even'")

        resolved_stream_id = incoming_stream_id or build_stream_id(
            symbol_value,
            interval_value,
            strategy_value,
            config_name=config_name,
            two_hour_parity=parity_text or None,
        )
        if not parity_text and existing is None and incoming_stream_id:
            parity_text = parse_two_hour_parity(incoming_stream_id) or ""
        parity_value = parity_text or (existing.two_hour_parity if existing else "odd")

        def pick(value: Any, stored: Any, default: Any) -> Any:
            if value is not None:
                return value
            return stored if existing is not None else default

        enabled_value = bool(pick(enabled, existing.enabled if existing else None, True))
        notify_entry_value = bool(pick(notify_entry, existing.notify_entry if existing else None, True))
        notify_exit_value = bool(pick(notify_exit, existing.notify_exit if existing else None, False))
        freshness_value = max(0, int(pick(freshness_bars, existing.freshness_bars if existing else None, 1)))
        limit_value = self.clamp_candle_limit(
            pick(candle_limit, existing.candle_limit if existing else None, self.default_candle_limit)
        )
        params_value = pick(strategy_params, existing.strategy_params if existing else None, {})
        settings_value = pick(backtest_settings, existing.backtest_settings if existing else None, {})

        now_iso = to_db_time(utc_now())
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO signal_subscriptions (
                    stream_id, enabled, symbol, interval, strategy_key, strategy_params_json,
                    backtest_settings_json, freshness_bars, notify_entry, notify_exit, candle_limit,
                    two_hour_parity, last_processed_closed_candle_time, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(stream_id) DO UPDATE SET
                    enabled=excluded.enabled,
                    symbol=excluded.symbol,
                    interval=excluded.interval,
                    strategy_key=excluded.strategy_key,
                    strategy_params_json=excluded.strategy_params_json,
                    backtest_settings_json=excluded.backtest_settings_json,
                    freshness_bars=excluded.freshness_bars,
                    notify_entry=excluded.notify_entry,
                    notify_exit=excluded.notify_exit,
                    candle_limit=excluded.candle_limit,
                    two_hour_parity=excluded.two_hour_parity,
                    updated_at=excluded.updated_at
                """,
                (
                    resolved_stream_id,
                    int(enabled_value),
                    symbol_value,
                    interval_value,
                    strategy_value,
                    json.dumps(params_value),
                    json.dumps(settings_value),
                    freshness_value,
                    int(notify_entry_value),
                    int(notify_exit_value),
                    limit_value,
                    parity_value,
                    now_iso,
                    now_iso,
                ),
            )
            self.conn.commit()
        LOGGER.info(
            "Subscription upserted stream=%s symbol=%s interval=%s strategy=%s enabled=%s",
            resolved_stream_id,
            symbol_value,
            interval_value,
            strategy_value,
            enabled_value,
        )
        stored = self.get(resolved_stream_id)
        if stored is None:
            raise RuntimeError(f"Subscription {resolved_stream_id} vanished after upsert")
        return stored

    def disable(self, stream_id: str) -> bool:
        with self.lock:
            cursor = self.conn.execute(
                "UPDATE signal_subscriptions SET enabled = 0, updated_at = ? WHERE stream_id = ?",
                (to_db_time(utc_now()), stream_id.strip()),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def hard_delete(self, stream_id: str) -> tuple[bool, int]:
        """Remove the subscription and every entry signal recorded for its stream.

        Returns ``(subscription_deleted, signals_deleted)``.
        """
        stream_id = stream_id.strip()
        with self.lock:
            signals = self.conn.execute(
                "DELETE FROM entry_signals WHERE stream_id = ? OR channel_key = ?",
                (stream_id, stream_id.lower()),
            )
            subscription = self.conn.execute(
                "DELETE FROM signal_subscriptions WHERE stream_id = ?",
                (stream_id,),
            )
            self.conn.commit()
        return subscription.rowcount > 0, max(0, signals.rowcount)

    def update_status(
        self,
        stream_id: str,
        status: str,
        *,
        closed_candle_time: int | None = None,
        exit_alert_token: str | None = None,
        clear_exit_alert_token: bool = False,
        run_at: datetime | None = None,
    ) -> None:
        """Record the outcome of a run.

        The cursor only moves forward; passing an older ``closed_candle_time`` is a no-op
        for the cursor. The exit token is kept unless a new one is given or it is cleared.
        """
        run_at_iso = to_db_time(run_at or utc_now())
        with self.lock:
            self.conn.execute(
                """
                UPDATE signal_subscriptions
                SET last_processed_closed_candle_time = CASE
                        WHEN ? IS NULL THEN last_processed_closed_candle_time
                        ELSE MAX(last_processed_closed_candle_time, ?)
                    END,
                    last_exit_alert_token = CASE
                        WHEN ? = 1 THEN NULL
                        ELSE COALESCE(?, last_exit_alert_token)
                    END,
                    last_status = ?,
                    last_run_at = ?,
                    updated_at = ?
                WHERE stream_id = ?
                """,
                (
                    closed_candle_time,
                    closed_candle_time,
                    int(clear_exit_alert_token),
                    exit_alert_token,
                    normalize_status_text(status),
                    run_at_iso,
                    run_at_iso,
                    stream_id,
                ),
            )
            self.conn.commit()
