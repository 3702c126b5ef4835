from __future__ import annotations

import json
import sqlite3
import threading

from signalbot.clock import utc_now
from signalbot.storage.db import from_db_time, to_db_time
from signalbot.storage.models import EntrySignalRecord


def _row_to_signal(row: sqlite3.Row) -> EntrySignalRecord:
    try:
        payload = json.loads(row["payload_json"] or "{}")
    except ValueError:
        payload = {}
    return EntrySignalRecord(
        id=int(row["id"]),
        channel_key=row["channel_key"],
        dedupe_key=row["dedupe_key"],
        stream_id=row["stream_id"],
        symbol=row["symbol"],
        interval=row["interval"],
        strategy_key=row["strategy_key"],
        direction=row["direction"],
        signal_time=int(row["signal_time"]),
        signal_price=float(row["signal_price"]),
        signal_reason=row["signal_reason"],
        payload=payload if isinstance(payload, dict) else {},
        created_at=from_db_time(row["created_at"]),
    )


class SignalLedger:
    """Append-only record of emitted entry signals, unique per dedupe key."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        lock: threading.Lock | None = None,
        history_default_limit: int = 50,
        history_max_limit: int = 200,
    ):
        self.conn = conn
        self.lock = lock or threading.Lock()
        self.history_default_limit = history_default_limit
        self.history_max_limit = history_max_limit

    def try_insert(self, record: EntrySignalRecord) -> bool:
        """Insert unless the dedupe key exists. ``True`` means this call created the row."""
        with self.lock:
            cursor = self.conn.execute(
                """
                INSERT INTO entry_signals (
                    channel_key, dedupe_key, stream_id, symbol, interval, strategy_key,
                    direction, signal_time, signal_price, signal_reason, payload_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(dedupe_key) DO NOTHING
                """,
                (
                    record.channel_key,
                    record.dedupe_key,
                    record.stream_id,
                    record.symbol,
                    record.interval,
                    record.strategy_key,
                    record.direction,
                    int(record.signal_time),
                    float(record.signal_price),
                    record.signal_reason,
                    json.dumps(record.payload),
                    to_db_time(record.created_at or utc_now()),
                ),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def rollback(self, dedupe_key: str) -> bool:
        with self.lock:
            cursor = self.conn.execute("DELETE FROM entry_signals WHERE dedupe_key = ?", (dedupe_key,))
            self.conn.commit()
        return cursor.rowcount > 0

    def latest_for_stream(self, stream_id: str) -> EntrySignalRecord | None:
        with self.lock:
            row = self.conn.execute(
                """
                SELECT * FROM entry_signals
                WHERE stream_id = ?
                ORDER BY signal_time DESC, id DESC
                LIMIT 1
                """,
                (stream_id,),
            ).fetchone()
        return _row_to_signal(row) if row is not None else None

    def count_for_stream(self, stream_id: str) -> int:
        with self.lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM entry_signals WHERE stream_id = ?",
                (stream_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def clamp_history_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.history_default_limit
        return max(1, min(self.history_max_limit, int(limit)))

    def history(self, channel_key: str, limit: int | None = None) -> list[EntrySignalRecord]:
        with self.lock:
            rows = self.conn.execute(
                """
                SELECT * FROM entry_signals
                WHERE channel_key = ?
                ORDER BY signal_time DESC, id DESC
                LIMIT ?
                """,
                (channel_key.lower(), self.clamp_history_limit(limit)),
            ).fetchall()
        return [_row_to_signal(row) for row in rows]
