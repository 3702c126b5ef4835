from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from signalbot.clock import bucket_start

_MS_THRESHOLD = 9_999_999_999
_DIGITS_RE = re.compile(r"^\d+$")


@dataclass(slots=True)
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _finite(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_timestamp(value: str) -> datetime:
    normalized = value.strip().replace(" ", "T")
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    dt = datetime.fromisoformat(normalized)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_time_to_sec(value: Any) -> int | None:
    """Accept epoch seconds, epoch milliseconds, ISO strings or ``{year, month, day}``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(float(value)):
            return None
        return int(value // 1000) if value > _MS_THRESHOLD else int(value)
    if isinstance(value, str):
        text = value.strip()
        if _DIGITS_RE.match(text):
            number = int(text)
            return number // 1000 if number > _MS_THRESHOLD else number
        try:
            return int(parse_timestamp(text).timestamp())
        except ValueError:
            return None
    if isinstance(value, dict) and "year" in value:
        try:
            day = datetime(int(value["year"]), int(value["month"]), int(value["day"]), tzinfo=timezone.utc)
        except (KeyError, TypeError, ValueError):
            return None
        return int(day.timestamp())
    return None


def normalize_candles(rows: Iterable[dict[str, Any]]) -> list[Candle]:
    """Drop invalid rows, keep the last row per timestamp, sort ascending."""
    by_time: dict[int, Candle] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        time_sec = parse_time_to_sec(row.get("time"))
        values = [_finite(row.get(key)) for key in ("open", "high", "low", "close", "volume")]
        if time_sec is None or any(v is None for v in values):
            continue
        open_, high, low, close, volume = values
        by_time[time_sec] = Candle(
            time=time_sec,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=volume,
        )
    return [by_time[key] for key in sorted(by_time)]


def candles_from_binance(rows: list[Any]) -> list[Candle]:
    output: list[Candle] = []
    for kline in rows:
        if not isinstance(kline, (list, tuple)) or len(kline) < 6:
            continue
        open_time = _finite(kline[0])
        values = [_finite(item) for item in kline[1:6]]
        if open_time is None or any(v is None for v in values):
            continue
        output.append(
            Candle(
                time=int(open_time // 1000),
                open=values[0],
                high=values[1],
                low=values[2],
                close=values[3],
                volume=values[4],
            )
        )
    return sorted(output, key=lambda c: c.time)


def candles_from_bybit(rows: list[Any]) -> list[Candle]:
    # Bybit returns newest first; the shape matches Binance for the first six fields.
    return candles_from_binance(rows)


def resample_candles(
    candles: list[Candle],
    target_interval_sec: int,
    *,
    parity: str | None = "odd",
) -> list[Candle]:
    """Fold ascending candles into ``target_interval_sec`` buckets.

    Open comes from the first bar of a bucket, close from the last one, high/low are
    running extremes and volume is summed. Input that is already aligned to the target
    grid comes back unchanged.
    """
    output: list[Candle] = []
    current: Candle | None = None
    for bar in candles:
        start = bucket_start(bar.time, target_interval_sec, parity)
        if current is None or start != current.time:
            if current is not None:
                output.append(current)
            current = Candle(
                time=start,
                open=bar.open,
                high=bar.high,
                low=bar.low,
                close=bar.close,
                volume=bar.volume,
            )
            continue
        current.high = max(current.high, bar.high)
        current.low = min(current.low, bar.low)
        current.close = bar.close
        current.volume += bar.volume
    if current is not None:
        output.append(current)
    return output
