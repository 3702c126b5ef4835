from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from signalbot.data.candles import Candle


@dataclass(slots=True)
class RawSignal:
    """A strategy crossing on one bar. ``type`` is ``buy`` or ``sell``."""

    time: int
    type: str
    price: float
    reason: str | None = None
    bar_index: int | None = None


@dataclass(slots=True)
class EvaluationRequest:
    strategy_key: str
    candles: list[Candle]
    strategy_params: dict[str, Any] = field(default_factory=dict)
    backtest_settings: dict[str, Any] = field(default_factory=dict)
    freshness_bars: int = 1


@dataclass(slots=True)
class EvaluatedSignal:
    strategy_key: str
    strategy_name: str
    direction: str
    signal_time: int
    price: float
    reason: str | None
    signal_age_bars: int
    is_fresh: bool
    fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategyKey": self.strategy_key,
            "strategyName": self.strategy_name,
            "direction": self.direction,
            "signalTimeSec": self.signal_time,
            "signalPrice": self.price,
            "signalReason": self.reason,
            "signalAgeBars": self.signal_age_bars,
            "isFresh": self.is_fresh,
            "fingerprint": self.fingerprint,
        }


@dataclass(slots=True)
class EvaluationResult:
    ok: bool
    reason: str | None = None
    raw_signal_count: int = 0
    prepared_signal_count: int = 0
    latest_entry: EvaluatedSignal | None = None
    # None when the evaluator cannot tell whether a position would still be open.
    has_open_position: bool | None = None


class SignalEvaluator(Protocol):
    def evaluate(self, request: EvaluationRequest) -> EvaluationResult:
        ...


class SignalStrategy(Protocol):
    key: str
    name: str
    default_params: dict[str, Any]

    def generate(self, candles: list[Candle], params: dict[str, Any]) -> list[RawSignal]:
        ...
