from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    path = Path(db_path)
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=30000;")
    return conn


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row[1]) for row in rows}


def _ensure_column(
    conn: sqlite3.Connection,
    table_name: str,
    column_name: str,
    column_sql: str,
) -> None:
    if column_name in _table_columns(conn, table_name):
        return
    conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_sql}")


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS signal_subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            stream_id TEXT NOT NULL UNIQUE,
            enabled INTEGER NOT NULL DEFAULT 1,
            symbol TEXT NOT NULL,
            interval TEXT NOT NULL,
            strategy_key TEXT NOT NULL,
            strategy_params_json TEXT NOT NULL DEFAULT '{}',
            backtest_settings_json TEXT NOT NULL DEFAULT '{}',
            freshness_bars INTEGER NOT NULL DEFAULT 1,
            notify_entry INTEGER NOT NULL DEFAULT 1,
            candle_limit INTEGER NOT NULL DEFAULT 350,
            last_processed_closed_candle_time INTEGER NOT NULL DEFAULT 0,
            last_run_at TEXT,
            last_status TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS entry_signals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            channel_key TEXT NOT NULL,
            dedupe_key TEXT NOT NULL UNIQUE,
            stream_id TEXT NOT NULL,
            symbol TEXT NOT NULL,
            interval TEXT NOT NULL,
            strategy_key TEXT NOT NULL,
            direction TEXT NOT NULL CHECK (direction IN ('long', 'short')),
            signal_time INTEGER NOT NULL,
            signal_price REAL NOT NULL,
            signal_reason TEXT,
            payload_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_entry_signals_channel_time
            ON entry_signals(channel_key, signal_time DESC);
        CREATE INDEX IF NOT EXISTS idx_entry_signals_stream_time
            ON entry_signals(stream_id, signal_time DESC);
        CREATE INDEX IF NOT EXISTS idx_signal_subscriptions_enabled
            ON signal_subscriptions(enabled);
        """
    )
    # Columns added after the first schema revision.
    _ensure_column(conn, "signal_subscriptions", "notify_exit", "INTEGER NOT NULL DEFAULT 0")
    _ensure_column(conn, "signal_subscriptions", "two_hour_parity", "TEXT NOT NULL DEFAULT 'odd'")
    _ensure_column(conn, "signal_subscriptions", "last_exit_alert_token", "TEXT")
    conn.commit()


def to_db_time(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
