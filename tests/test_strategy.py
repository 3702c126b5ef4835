from __future__ import annotations

from signalbot.data.candles import Candle
from signalbot.strategy.contracts import EvaluationRequest, EvaluationResult
from signalbot.strategy.ma_crossover import MovingAverageCrossover
from signalbot.strategy.registry import (
    EvaluatorRegistry,
    allows_signal_as_entry,
    format_price_token,
    normalize_trade_direction,
    signal_fingerprint,
)

from support import HOUR, T0, FakeEvaluator

PARAMS = {"fastPeriod": 2, "slowPeriod": 4}


def _candles(closes: list[float]) -> list[Candle]:
    return [
        Candle(time=T0 + idx * HOUR, open=close, high=close + 1, low=close - 1, close=close, volume=1.0)
        for idx, close in enumerate(closes)
    ]


def _request(closes: list[float], *, freshness_bars: int = 5, direction: str | None = None) -> EvaluationRequest:
    settings = {"tradeDirection": direction} if direction else {}
    return EvaluationRequest(
        strategy_key="sma_crossover",
        candles=_candles(closes),
        strategy_params=PARAMS,
        backtest_settings=settings,
        freshness_bars=freshness_bars,
    )


CROSS_UP = [10.0] * 10 + [5.0] * 5 + [20.0] * 5
CROSS_UP_THEN_DOWN = CROSS_UP + [1.0] * 5


def test_crossover_emits_buy_and_sell() -> None:
    signals = MovingAverageCrossover().generate(_candles(CROSS_UP_THEN_DOWN), PARAMS)
    assert [(s.type, s.bar_index, s.price) for s in signals] == [("buy", 15, 20.0), ("sell", 20, 1.0)]
    assert signals[0].reason == "SMA 2 crossed above SMA 4"


def test_crossover_needs_more_bars_than_slow_period() -> None:
    assert MovingAverageCrossover().generate(_candles([1.0, 2.0, 3.0]), PARAMS) == []


def test_registry_reports_latest_fresh_long_entry() -> None:
    registry = EvaluatorRegistry([MovingAverageCrossover()])
    result = registry.evaluate(_request(CROSS_UP))
    assert result.ok is True
    entry = result.latest_entry
    assert entry is not None
    assert entry.direction == "long"
    assert entry.signal_time == T0 + 15 * HOUR
    assert entry.signal_age_bars == 4
    assert entry.is_fresh is True
    assert entry.strategy_name == "SMA Crossover"
    assert entry.fingerprint == f"sma_crossover:long:{T0 + 15 * HOUR}:20"
    assert result.has_open_position is True


def test_registry_marks_old_entry_stale_and_closed() -> None:
    registry = EvaluatorRegistry([MovingAverageCrossover()])
    result = registry.evaluate(_request(CROSS_UP_THEN_DOWN, freshness_bars=1))
    assert result.latest_entry is not None
    assert result.latest_entry.direction == "long"
    assert result.latest_entry.signal_age_bars == 9
    assert result.latest_entry.is_fresh is False
    assert result.has_open_position is False
    assert result.raw_signal_count == 2


def test_trade_direction_filters_entries() -> None:
    registry = EvaluatorRegistry([MovingAverageCrossover()])
    short_only = registry.evaluate(_request(CROSS_UP, direction="short"))
    assert short_only.ok is True
    assert short_only.latest_entry is None
    assert short_only.reason == "no_signals"

    both = registry.evaluate(_request(CROSS_UP_THEN_DOWN, direction="both"))
    assert both.latest_entry is not None
    assert both.latest_entry.direction == "short"
    assert both.has_open_position is True


def test_registry_error_reasons() -> None:
    registry = EvaluatorRegistry([MovingAverageCrossover()])
    unknown = registry.evaluate(EvaluationRequest(strategy_key="missing", candles=_candles(CROSS_UP)))
    assert (unknown.ok, unknown.reason) == (False, "strategy_not_found")
    short = registry.evaluate(EvaluationRequest(strategy_key="sma_crossover", candles=_candles([1.0])))
    assert (short.ok, short.reason) == (False, "insufficient_data")
    blank = registry.evaluate(EvaluationRequest(strategy_key="", candles=[]))
    assert (blank.ok, blank.reason) == (False, "invalid_input")


def test_custom_evaluator_takes_precedence() -> None:
    fake = FakeEvaluator(EvaluationResult(ok=True, reason="no_signals"))
    registry = EvaluatorRegistry([MovingAverageCrossover()])
    registry.register_evaluator("external", fake)
    result = registry.evaluate(EvaluationRequest(strategy_key="external", candles=_candles(CROSS_UP)))
    assert result.reason == "no_signals"
    assert len(fake.requests) == 1
    assert registry.keys() == ["external", "sma_crossover"]


def test_trade_direction_helpers() -> None:
    assert normalize_trade_direction({}) == "long"
    assert normalize_trade_direction({"tradeDirection": "Combined"}) == "combined"
    assert normalize_trade_direction({"tradeDirection": "sideways"}) == "long"
    assert allows_signal_as_entry("buy", "long") is True
    assert allows_signal_as_entry("sell", "long") is False
    assert allows_signal_as_entry("sell", "short") is True
    assert allows_signal_as_entry("sell", "both") is True


def test_fingerprint_price_formatting() -> None:
    assert format_price_token(100.0) == "100"
    assert format_price_token(0.1) == "0.1"
    assert format_price_token(1.123456789) == "1.12345679"
    assert signal_fingerprint("k", "short", 10, 2.5) == "k:short:10:2.5"
