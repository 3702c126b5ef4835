from __future__ import annotations

import logging
from dataclasses import dataclass

from signalbot.data.candles import Candle
from signalbot.monitoring.messages import build_exit_message
from signalbot.pipeline.processor import Notifier
from signalbot.storage.models import SubscriptionRecord
from signalbot.storage.signals import SignalLedger
from signalbot.strategy.contracts import EvaluationRequest, SignalEvaluator

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExitOutcome:
    token: str
    sent: bool


class ExitDetector:
    """Best-effort exit alerts when the latest signal flips against the stored entry.

    An exit is announced once per ``prior_fingerprint:new_fingerprint`` token. Failures
    are logged and swallowed here so they never affect entry processing.
    """

    def __init__(self, *, evaluator: SignalEvaluator, ledger: SignalLedger, notifier: Notifier | None):
        self.evaluator = evaluator
        self.ledger = ledger
        self.notifier = notifier

    def detect(
        self,
        subscription: SubscriptionRecord,
        candles: list[Candle],
        *,
        freshness_bars: int,
    ) -> ExitOutcome | None:
        try:
            return self._detect(subscription, candles, freshness_bars=freshness_bars)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Exit detection failed stream=%s: %s", subscription.stream_id, exc)
            return None

    def _detect(
        self,
        subscription: SubscriptionRecord,
        candles: list[Candle],
        *,
        freshness_bars: int,
    ) -> ExitOutcome | None:
        prior = self.ledger.latest_for_stream(subscription.stream_id)
        if prior is None:
            return None
        evaluation = self.evaluator.evaluate(
            EvaluationRequest(
                strategy_key=subscription.strategy_key,
                candles=candles,
                strategy_params=subscription.strategy_params,
                backtest_settings=subscription.backtest_settings,
                freshness_bars=max(0, int(freshness_bars)),
            )
        )
        latest = evaluation.latest_entry
        if not evaluation.ok or latest is None:
            return None
        if latest.direction == prior.direction or latest.signal_time <= prior.signal_time:
            return None

        prior_fingerprint = str(prior.payload.get("fingerprint") or prior.dedupe_key)
        token = f"{prior_fingerprint}:{latest.fingerprint}"
        if token == subscription.last_exit_alert_token:
            return ExitOutcome(token=token, sent=False)
        if self.notifier is None:
            return None

        self.notifier.send(
            build_exit_message(
                exit_direction=prior.direction,
                symbol=subscription.symbol,
                interval=subscription.interval,
                strategy_name=latest.strategy_name,
                strategy_key=subscription.strategy_key,
                price=latest.price,
                time_sec=latest.signal_time,
            )
        )
        LOGGER.info(
            "Exit alert sent stream=%s closing=%s time=%s",
            subscription.stream_id,
            prior.direction,
            latest.signal_time,
        )
        return ExitOutcome(token=token, sent=True)
