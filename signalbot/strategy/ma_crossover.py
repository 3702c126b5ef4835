from __future__ import annotations

from typing import Any

import pandas as pd

from signalbot.data.candles import Candle
from signalbot.strategy.contracts import RawSignal


def candles_to_frame(candles: list[Candle]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "time": [bar.time for bar in candles],
            "open": [bar.open for bar in candles],
            "high": [bar.high for bar in candles],
            "low": [bar.low for bar in candles],
            "close": [bar.close for bar in candles],
            "volume": [bar.volume for bar in candles],
        }
    )


class MovingAverageCrossover:
    """Buy when the fast SMA crosses above the slow SMA, sell on the opposite cross."""

    key = "sma_crossover"
    name = "SMA Crossover"

    def __init__(self) -> None:
        self.default_params: dict[str, Any] = {"fastPeriod": 10, "slowPeriod": 30}

    def generate(self, candles: list[Candle], params: dict[str, Any]) -> list[RawSignal]:
        fast_period = max(1, int(params.get("fastPeriod", 10)))
        slow_period = max(fast_period + 1, int(params.get("slowPeriod", 30)))
        if len(candles) <= slow_period:
            return []

        frame = candles_to_frame(candles)
        fast = frame["close"].rolling(window=fast_period, min_periods=fast_period).mean()
        slow = frame["close"].rolling(window=slow_period, min_periods=slow_period).mean()
        above = fast > slow
        valid = fast.notna() & slow.notna() & fast.shift(1).notna() & slow.shift(1).notna()
        prev_above = above.shift(1, fill_value=False).astype(bool)
        crosses_up = valid & above & ~prev_above
        crosses_down = valid & ~above & prev_above

        signals: list[RawSignal] = []
        for idx in frame.index[crosses_up | crosses_down]:
            position = int(idx)
            is_buy = bool(crosses_up.iloc[position])
            signals.append(
                RawSignal(
                    time=int(frame["time"].iloc[position]),
                    type="buy" if is_buy else "sell",
                    price=float(frame["close"].iloc[position]),
                    reason=(
                        f"SMA {fast_period} crossed {'above' if is_buy else 'below'} SMA {slow_period}"
                    ),
                    bar_index=position,
                )
            )
        return signals
