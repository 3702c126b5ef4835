from __future__ import annotations

import re
from datetime import datetime, timezone

TWO_HOUR_SECONDS = 7200
PARITY_SHIFT_SECONDS = 3600

_INTERVAL_RE = re.compile(r"^(\d+)(m|h|d|w|M)$")
_UNIT_SECONDS = {
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
    "M": 30 * 24 * 60 * 60,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_seconds() -> int:
    return int(utc_now().timestamp())


def to_iso(time_sec: int | float) -> str:
    dt = datetime.fromtimestamp(int(time_sec), tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def interval_seconds(interval: str) -> int | None:
    """Parse ``<int><unit>`` interval tokens (``15m``, ``4h``, ``1d``, ``1w``, ``1M``).

    ``M`` is a 30-day month. Unknown or zero-length tokens return ``None``.
    """
    match = _INTERVAL_RE.match((interval or "").strip())
    if match is None:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    return value * _UNIT_SECONDS[match.group(2)]


def normalize_parity(parity: str | None) -> str:
    return "even" if str(parity or "").strip().lower() == "even" else "odd"


def is_two_hour_even(interval_sec: int | None, parity: str | None) -> bool:
    return interval_sec == TWO_HOUR_SECONDS and normalize_parity(parity) == "even"


def bucket_start(time_sec: int, interval_sec: int, parity: str | None = "odd") -> int:
    if interval_sec <= 0:
        raise ValueError("interval_sec must be > 0")
    if is_two_hour_even(interval_sec, parity):
        shifted = int(time_sec) - PARITY_SHIFT_SECONDS
        return shifted // interval_sec * interval_sec + PARITY_SHIFT_SECONDS
    return int(time_sec) // interval_sec * interval_sec


def is_candle_closed(open_sec: int, interval_sec: int, now_sec: int) -> bool:
    return now_sec >= open_sec + interval_sec


def is_subscription_due(
    *,
    last_processed_closed_ts: int,
    interval_sec: int | None,
    now_sec: int,
) -> bool:
    # The candle after ``last`` opens at last + L and closes at last + 2L.
    if interval_sec is None or interval_sec <= 0:
        return True
    if last_processed_closed_ts <= 0:
        return True
    return now_sec >= last_processed_closed_ts + 2 * interval_sec
