from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from signalbot.clock import interval_seconds, now_seconds
from signalbot.config import ConfigurationError
from signalbot.data.closed_window import select_closed_window
from signalbot.data.market_data import CandleSource
from signalbot.pipeline.exit_detector import ExitDetector
from signalbot.pipeline.processor import ProcessResult, SignalPayload, SignalProcessor
from signalbot.status import (
    CATCH_UP_ENTRY,
    INSUFFICIENT_CANDLES,
    NEW_ENTRY,
    NO_ENTRY,
    NO_NEW_CLOSED_CANDLE,
    NOTIFY_FAILED,
    PROCESSING_ERROR,
    error_status,
)
from signalbot.storage.models import SubscriptionRecord
from signalbot.storage.subscriptions import SubscriptionStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RunResult:
    stream_id: str
    status: str
    closed_candle_time: int | None = None
    result: ProcessResult | None = None
    exit_alert_sent: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"streamId": self.stream_id, "status": self.status}
        if self.closed_candle_time is not None:
            data["closedCandleTimeSec"] = self.closed_candle_time
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.exit_alert_sent:
            data["exitAlertSent"] = True
        return data


def status_for(result: ProcessResult) -> str:
    if not result.ok:
        return result.error or PROCESSING_ERROR
    if result.notify_failed:
        return f"{NOTIFY_FAILED}:{result.telegram_error or 'unknown'}"
    if result.new_entry:
        return CATCH_UP_ENTRY if result.catch_up else NEW_ENTRY
    return result.reason or NO_ENTRY


class SubscriptionRunner:
    """Fetch, window, evaluate and persist one subscription.

    The cursor (``last_processed_closed_candle_time``) only advances after a successful
    evaluation whose entry, if any, was delivered.
    """

    def __init__(
        self,
        *,
        candle_source: CandleSource,
        processor: SignalProcessor,
        exit_detector: ExitDetector,
        store: SubscriptionStore,
        min_closed_candles: int = 200,
        run_now_freshness_bars: int = 24,
    ):
        self.candle_source = candle_source
        self.processor = processor
        self.exit_detector = exit_detector
        self.store = store
        self.min_closed_candles = min_closed_candles
        self.run_now_freshness_bars = run_now_freshness_bars

    def run(
        self,
        subscription: SubscriptionRecord,
        *,
        force: bool = False,
        run_now: bool = False,
        now_sec: int | None = None,
    ) -> RunResult:
        """``force`` skips the cursor check; ``run_now`` widens the freshness window."""
        stream_id = subscription.stream_id
        now = now_sec if now_sec is not None else now_seconds()
        try:
            return self._run(subscription, force=force, run_now=run_now, now_sec=now)
        except Exception as exc:  # noqa: BLE001
            status = error_status(str(exc) or type(exc).__name__)
            LOGGER.warning("Subscription run failed stream=%s: %s", stream_id, exc)
            self.store.update_status(stream_id, status)
            return RunResult(stream_id=stream_id, status=status)

    def _run(
        self,
        subscription: SubscriptionRecord,
        *,
        force: bool,
        run_now: bool,
        now_sec: int,
    ) -> RunResult:
        stream_id = subscription.stream_id
        interval_sec = interval_seconds(subscription.interval)
        if interval_sec is None:
            raise ConfigurationError(f"Unsupported interval: {subscription.interval}")

        candles = self.candle_source.fetch(
            subscription.symbol,
            subscription.interval,
            subscription.candle_limit,
            subscription.two_hour_parity,
        )
        window = select_closed_window(candles, interval_sec, now_sec, self.min_closed_candles)
        if window is None:
            self.store.update_status(stream_id, INSUFFICIENT_CANDLES)
            LOGGER.info("Subscription stream=%s status=%s fetched=%d", stream_id, INSUFFICIENT_CANDLES, len(candles))
            return RunResult(stream_id=stream_id, status=INSUFFICIENT_CANDLES)

        if not force and window.closed_time <= subscription.last_processed_closed_candle_time:
            self.store.update_status(stream_id, NO_NEW_CLOSED_CANDLE)
            LOGGER.debug("Subscription stream=%s has no new closed candle", stream_id)
            return RunResult(
                stream_id=stream_id,
                status=NO_NEW_CLOSED_CANDLE,
                closed_candle_time=window.closed_time,
            )

        freshness_bars = max(0, subscription.freshness_bars)
        if run_now:
            freshness_bars = max(freshness_bars, self.run_now_freshness_bars)

        result = self.processor.process(
            SignalPayload(
                stream_id=stream_id,
                symbol=subscription.symbol,
                interval=subscription.interval,
                strategy_key=subscription.strategy_key,
                candles=window.candles,
                strategy_params=subscription.strategy_params,
                backtest_settings=subscription.backtest_settings,
                freshness_bars=freshness_bars,
                notify=subscription.notify_entry,
                allow_catch_up=True,
            )
        )

        exit_token: str | None = None
        exit_sent = False
        if (
            result.ok
            and not result.new_entry
            and not result.notify_failed
            and subscription.notify_exit
            and subscription.notify_entry
        ):
            outcome = self.exit_detector.detect(subscription, window.candles, freshness_bars=freshness_bars)
            if outcome is not None and outcome.sent:
                exit_token = outcome.token
                exit_sent = True

        status = status_for(result)
        advance = result.ok and not result.notify_failed
        self.store.update_status(
            stream_id,
            status,
            closed_candle_time=window.closed_time if advance else None,
            exit_alert_token=exit_token,
            clear_exit_alert_token=result.ok and result.new_entry,
        )
        LOGGER.info(
            "Subscription stream=%s status=%s closed_time=%s cursor_advanced=%s",
            stream_id,
            status,
            window.closed_time,
            advance,
        )
        return RunResult(
            stream_id=stream_id,
            status=status,
            closed_candle_time=window.closed_time,
            result=result,
            exit_alert_sent=exit_sent,
        )
