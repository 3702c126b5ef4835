from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from signalbot.clock import interval_seconds, is_subscription_due, now_seconds
from signalbot.pipeline.runner import RunResult, SubscriptionRunner
from signalbot.status import error_status
from signalbot.storage.models import SubscriptionRecord
from signalbot.storage.subscriptions import SubscriptionStore

LOGGER = logging.getLogger(__name__)


def is_due(subscription: SubscriptionRecord, now_sec: int) -> bool:
    # Unparseable intervals stay due so the runner can record the configuration error.
    return is_subscription_due(
        last_processed_closed_ts=subscription.last_processed_closed_candle_time,
        interval_sec=interval_seconds(subscription.interval),
        now_sec=now_sec,
    )


@dataclass(slots=True)
class TickSummary:
    started_at: int
    enabled: int = 0
    due: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    results: list[RunResult] = field(default_factory=list)

    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.results:
            key = item.status.split(":", 1)[0]
            counts[key] = counts.get(key, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "enabled": self.enabled,
            "due": self.due,
            "skipped": self.skipped,
            "durationSeconds": round(self.duration_seconds, 3),
            "statusCounts": self.status_counts(),
            "results": [item.to_dict() for item in self.results],
        }


class Scheduler:
    def __init__(
        self,
        *,
        store: SubscriptionStore,
        runner: SubscriptionRunner,
        workers: int = 4,
        tick_seconds: float = 60.0,
    ):
        self.store = store
        self.runner = runner
        self.workers = max(1, int(workers))
        self.tick_seconds = float(tick_seconds)

    def run_tick(self, now_sec: int | None = None) -> TickSummary:
        now = now_sec if now_sec is not None else now_seconds()
        started = time.monotonic()
        subscriptions = self.store.list_enabled()
        due = [item for item in subscriptions if is_due(item, now)]
        summary = TickSummary(
            started_at=now,
            enabled=len(subscriptions),
            due=len(due),
            skipped=len(subscriptions) - len(due),
        )
        if due:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(due))) as pool:
                future_map: dict[Future[RunResult], SubscriptionRecord] = {
                    pool.submit(self.runner.run, item, now_sec=now): item for item in due
                }
                for future in as_completed(future_map):
                    item = future_map[future]
                    try:
                        summary.results.append(future.result())
                    except Exception as exc:  # noqa: BLE001
                        LOGGER.exception("Subscription worker crashed stream=%s", item.stream_id)
                        summary.results.append(
                            RunResult(stream_id=item.stream_id, status=error_status(str(exc) or type(exc).__name__))
                        )
        summary.duration_seconds = time.monotonic() - started
        LOGGER.info(
            "Tick done enabled=%d due=%d skipped=%d duration=%.2fs statuses=%s",
            summary.enabled,
            summary.due,
            summary.skipped,
            summary.duration_seconds,
            summary.status_counts(),
        )
        return summary

    def run_forever(self, stop_event: threading.Event) -> None:
        LOGGER.info("Scheduler started tick_seconds=%.1f workers=%d", self.tick_seconds, self.workers)
        while not stop_event.is_set():
            try:
                self.run_tick()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scheduler tick failed")
            stop_event.wait(self.tick_seconds)
        LOGGER.info("Scheduler stopped.")
