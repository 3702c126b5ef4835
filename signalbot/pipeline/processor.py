from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from signalbot.data.candles import Candle
from signalbot.monitoring.messages import build_entry_message
from signalbot.monitoring.notifier import NotificationError
from signalbot.status import STALE_SIGNAL
from signalbot.storage.models import EntrySignalRecord
from signalbot.storage.signals import SignalLedger
from signalbot.strategy.contracts import EvaluatedSignal, EvaluationRequest, SignalEvaluator
from signalbot.stream_id import build_channel_key

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, text: str) -> None:
        ...


@dataclass(slots=True)
class SignalPayload:
    stream_id: str
    symbol: str
    interval: str
    strategy_key: str
    candles: list[Candle]
    strategy_params: dict[str, Any] = field(default_factory=dict)
    backtest_settings: dict[str, Any] = field(default_factory=dict)
    freshness_bars: int = 1
    notify: bool = False
    allow_catch_up: bool = False


@dataclass(slots=True)
class ProcessResult:
    ok: bool
    new_entry: bool = False
    duplicate: bool = False
    catch_up: bool = False
    reason: str | None = None
    error: str | None = None
    signal_age_bars: int | None = None
    telegram_sent: bool | None = None
    telegram_error: str | None = None
    entry: dict[str, Any] | None = None
    latest_entry: EvaluatedSignal | None = None
    raw_signal_count: int = 0
    prepared_signal_count: int = 0

    @property
    def notify_failed(self) -> bool:
        return self.telegram_sent is False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": self.ok,
            "newEntry": self.new_entry,
            "rawSignalCount": self.raw_signal_count,
            "preparedSignalCount": self.prepared_signal_count,
        }
        optional = {
            "duplicate": self.duplicate if self.entry is not None else None,
            "catchUp": self.catch_up or None,
            "reason": self.reason,
            "error": self.error,
            "signalAgeBars": self.signal_age_bars,
            "telegramSent": self.telegram_sent,
            "telegramError": self.telegram_error,
            "entry": self.entry,
            "latestEntry": self.latest_entry.to_dict() if self.latest_entry is not None else None,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


def risk_targets(direction: str, price: float, backtest_settings: dict[str, Any]) -> dict[str, float]:
    """Take-profit / stop-loss levels, only for ``riskMode == "percentage"``."""
    if str(backtest_settings.get("riskMode") or "") != "percentage":
        return {}
    is_long = direction == "long"
    targets: dict[str, float] = {}
    tp_percent = _positive(backtest_settings.get("takeProfitPercent"))
    if backtest_settings.get("takeProfitEnabled") and tp_percent is not None:
        targets["takeProfitPercent"] = tp_percent
        targets["takeProfitPrice"] = price * (1 + tp_percent / 100) if is_long else price * (1 - tp_percent / 100)
    sl_percent = _positive(backtest_settings.get("stopLossPercent"))
    if backtest_settings.get("stopLossEnabled") and sl_percent is not None:
        targets["stopLossPercent"] = sl_percent
        targets["stopLossPrice"] = price * (1 - sl_percent / 100) if is_long else price * (1 + sl_percent / 100)
    return targets


def _positive(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class SignalProcessor:
    """Evaluate one candle window and record/notify its latest entry signal at most once."""

    def __init__(
        self,
        *,
        evaluator: SignalEvaluator,
        ledger: SignalLedger,
        notifier: Notifier | None,
        min_closed_candles: int = 200,
    ):
        self.evaluator = evaluator
        self.ledger = ledger
        self.notifier = notifier
        self.min_closed_candles = min_closed_candles

    def process(self, payload: SignalPayload) -> ProcessResult:
        if len(payload.candles) < self.min_closed_candles:
            return ProcessResult(
                ok=False,
                error=f"Not enough candles. Need at least {self.min_closed_candles}.",
            )

        symbol = payload.symbol.strip().upper()
        interval = payload.interval.strip()
        strategy_key = payload.strategy_key.strip()
        stream_id = payload.stream_id.strip()
        channel_key = build_channel_key(
            stream_id=stream_id,
            symbol=symbol,
            interval=interval,
            strategy_key=strategy_key,
        )

        evaluation = self.evaluator.evaluate(
            EvaluationRequest(
                strategy_key=strategy_key,
                candles=payload.candles,
                strategy_params=payload.strategy_params,
                backtest_settings=payload.backtest_settings,
                freshness_bars=max(0, int(payload.freshness_bars)),
            )
        )
        counts = {
            "raw_signal_count": evaluation.raw_signal_count,
            "prepared_signal_count": evaluation.prepared_signal_count,
        }
        if not evaluation.ok:
            return ProcessResult(ok=False, error=evaluation.reason or "evaluation_failed", **counts)

        latest = evaluation.latest_entry
        if latest is None:
            return ProcessResult(ok=True, reason=evaluation.reason or "no_signals", **counts)

        catch_up = False
        if not latest.is_fresh:
            catch_up = (
                payload.allow_catch_up
                and evaluation.has_open_position is True
                and self.ledger.count_for_stream(stream_id) == 0
            )
            if not catch_up:
                return ProcessResult(
                    ok=True,
                    reason=STALE_SIGNAL,
                    signal_age_bars=latest.signal_age_bars,
                    latest_entry=latest,
                    **counts,
                )

        entry = {
            "streamId": stream_id,
            "symbol": symbol,
            "interval": interval,
            "strategyKey": strategy_key,
            "strategyName": latest.strategy_name,
            "direction": latest.direction,
            "signalTimeSec": latest.signal_time,
            "signalAgeBars": latest.signal_age_bars,
            "signalPrice": latest.price,
            "signalReason": latest.reason,
            "fingerprint": latest.fingerprint,
        }
        entry.update(risk_targets(latest.direction, latest.price, payload.backtest_settings))
        if catch_up:
            entry["catchUp"] = True

        dedupe_key = f"{channel_key}:{latest.fingerprint}"
        inserted = self.ledger.try_insert(
            EntrySignalRecord(
                channel_key=channel_key,
                dedupe_key=dedupe_key,
                stream_id=stream_id,
                symbol=symbol,
                interval=interval,
                strategy_key=strategy_key,
                direction=latest.direction,
                signal_time=latest.signal_time,
                signal_price=latest.price,
                signal_reason=latest.reason,
                payload=entry,
            )
        )

        result = ProcessResult(
            ok=True,
            new_entry=inserted,
            duplicate=not inserted,
            catch_up=catch_up and inserted,
            entry=entry,
            latest_entry=latest,
            signal_age_bars=latest.signal_age_bars,
            **counts,
        )
        if not inserted:
            LOGGER.debug("Duplicate entry signal stream=%s dedupe_key=%s", stream_id, dedupe_key)
            return result

        LOGGER.info(
            "New entry signal stream=%s direction=%s time=%s price=%s catch_up=%s",
            stream_id,
            latest.direction,
            latest.signal_time,
            latest.price,
            catch_up,
        )
        if not payload.notify:
            return result

        try:
            if self.notifier is None:
                raise NotificationError("Notifier is not configured")
            self.notifier.send(build_entry_message(entry))
        except Exception as exc:  # noqa: BLE001
            # Forget the signal so the next run can deliver it.
            self.ledger.rollback(dedupe_key)
            detail = str(exc) if isinstance(exc, NotificationError) else f"{type(exc).__name__}: {exc}"
            LOGGER.warning("Entry notification failed stream=%s rolled back: %s", stream_id, detail)
            result.new_entry = False
            result.catch_up = False
            result.telegram_sent = False
            result.telegram_error = detail
            return result

        result.telegram_sent = True
        return result
