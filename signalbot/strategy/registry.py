from __future__ import annotations

import logging
from typing import Any

from signalbot.strategy.contracts import (
    EvaluatedSignal,
    EvaluationRequest,
    EvaluationResult,
    RawSignal,
    SignalEvaluator,
    SignalStrategy,
)

LOGGER = logging.getLogger(__name__)

TRADE_DIRECTIONS = {"long", "short", "both", "combined"}


def normalize_trade_direction(backtest_settings: dict[str, Any] | None) -> str:
    raw = str((backtest_settings or {}).get("tradeDirection") or "").strip().lower()
    return raw if raw in TRADE_DIRECTIONS else "long"


def allows_signal_as_entry(signal_type: str, trade_direction: str) -> bool:
    if trade_direction in {"both", "combined"}:
        return True
    if trade_direction == "short":
        return signal_type == "sell"
    return signal_type == "buy"


def format_price_token(price: float) -> str:
    # Rounded to 8 decimals without trailing zeros: 100.0 -> "100", 0.1 -> "0.1".
    text = f"{round(float(price), 8):.8f}".rstrip("0").rstrip(".")
    return "0" if text in {"", "-0"} else text


def signal_fingerprint(strategy_key: str, direction: str, signal_time: int, price: float) -> str:
    return f"{strategy_key}:{direction}:{int(signal_time)}:{format_price_token(price)}"


def _direction(signal_type: str) -> str:
    return "long" if signal_type == "buy" else "short"


def _open_position_after(signals: list[RawSignal], trade_direction: str) -> bool:
    """Replay signals as a flip/close position model and report whether one is still open."""
    position: str | None = None
    for signal in signals:
        side = _direction(signal.type)
        allowed = allows_signal_as_entry(signal.type, trade_direction)
        if position is None:
            if allowed:
                position = side
        elif position != side:
            position = side if allowed else None
    return position is not None


class EvaluatorRegistry:
    """Resolve strategy keys to evaluators.

    Plain strategies only emit raw crossings; the registry turns them into the latest
    entry signal (direction filter, age, freshness, fingerprint). Fully custom
    evaluators registered with ``register_evaluator`` bypass that path.
    """

    def __init__(self, strategies: list[SignalStrategy] | None = None):
        self._strategies: dict[str, SignalStrategy] = {}
        self._evaluators: dict[str, SignalEvaluator] = {}
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: SignalStrategy) -> None:
        self._strategies[strategy.key] = strategy

    def register_evaluator(self, strategy_key: str, evaluator: SignalEvaluator) -> None:
        self._evaluators[strategy_key] = evaluator

    def keys(self) -> list[str]:
        return sorted(set(self._strategies) | set(self._evaluators))

    def evaluate(self, request: EvaluationRequest) -> EvaluationResult:
        if not request.strategy_key or not isinstance(request.candles, list):
            return EvaluationResult(ok=False, reason="invalid_input")

        custom = self._evaluators.get(request.strategy_key)
        if custom is not None:
            return custom.evaluate(request)

        strategy = self._strategies.get(request.strategy_key)
        if strategy is None:
            return EvaluationResult(ok=False, reason="strategy_not_found")

        candles = request.candles
        if len(candles) < 2:
            return EvaluationResult(ok=False, reason="insufficient_data")

        params = {**strategy.default_params, **(request.strategy_params or {})}
        raw_signals = strategy.generate(candles, params)
        index_by_time = {bar.time: idx for idx, bar in enumerate(candles)}
        prepared = sorted(
            (signal for signal in raw_signals if signal.type in {"buy", "sell"}),
            key=lambda signal: signal.time,
        )
        trade_direction = normalize_trade_direction(request.backtest_settings)
        entries = [signal for signal in prepared if allows_signal_as_entry(signal.type, trade_direction)]
        if not entries:
            return EvaluationResult(
                ok=True,
                reason="no_signals",
                raw_signal_count=len(raw_signals),
                prepared_signal_count=len(prepared),
                has_open_position=False,
            )

        latest = entries[-1]
        signal_index = latest.bar_index if latest.bar_index is not None else index_by_time.get(latest.time)
        if signal_index is None or signal_index < 0 or signal_index >= len(candles):
            return EvaluationResult(
                ok=False,
                reason="signal_time_not_found",
                raw_signal_count=len(raw_signals),
                prepared_signal_count=len(prepared),
            )

        age = len(candles) - 1 - signal_index
        max_age = max(0, int(request.freshness_bars))
        direction = _direction(latest.type)
        entry = EvaluatedSignal(
            strategy_key=request.strategy_key,
            strategy_name=strategy.name,
            direction=direction,
            signal_time=int(latest.time),
            price=float(latest.price),
            reason=latest.reason,
            signal_age_bars=age,
            is_fresh=age <= max_age,
            fingerprint=signal_fingerprint(request.strategy_key, direction, latest.time, latest.price),
        )
        return EvaluationResult(
            ok=True,
            raw_signal_count=len(raw_signals),
            prepared_signal_count=len(prepared),
            latest_entry=entry,
            has_open_position=_open_position_after(prepared, trade_direction),
        )
