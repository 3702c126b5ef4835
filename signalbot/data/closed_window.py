from __future__ import annotations

from dataclasses import dataclass

from signalbot.clock import is_candle_closed
from signalbot.data.candles import Candle


@dataclass(slots=True)
class ClosedWindow:
    candles: list[Candle]
    closed_time: int


def select_closed_window(
    candles: list[Candle],
    interval_sec: int,
    now_sec: int,
    min_closed_bars: int,
) -> ClosedWindow | None:
    """Trailing window of fully closed candles, or ``None`` when too few are closed.

    The newest bar of a fresh fetch is usually still forming; every trailing bar with
    ``now < time + interval`` is dropped before the boundary is chosen.
    """
    if interval_sec <= 0:
        return None
    closed_idx = len(candles) - 1
    while closed_idx >= 0 and not is_candle_closed(candles[closed_idx].time, interval_sec, now_sec):
        closed_idx -= 1
    if closed_idx + 1 < max(2, min_closed_bars):
        return None
    return ClosedWindow(
        candles=candles[: closed_idx + 1],
        closed_time=candles[closed_idx].time,
    )
