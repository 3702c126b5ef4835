from __future__ import annotations

import threading
from dataclasses import replace

from signalbot.pipeline.runner import RunResult
from signalbot.pipeline.scheduler import Scheduler, is_due
from signalbot.storage.subscriptions import SubscriptionStore

from support import HOUR, T0, open_db


class RecordingRunner:
    def __init__(self, crash_on: set[str] | None = None):
        self.crash_on = crash_on or set()
        self.calls: list[tuple[str, int | None]] = []
        self._lock = threading.Lock()

    def run(self, subscription, *, force: bool = False, now_sec: int | None = None) -> RunResult:
        with self._lock:
            self.calls.append((subscription.stream_id, now_sec))
        if subscription.stream_id in self.crash_on:
            raise RuntimeError("worker exploded")
        return RunResult(stream_id=subscription.stream_id, status="no_signals", closed_candle_time=now_sec)


def _store(tmp_path) -> SubscriptionStore:
    return SubscriptionStore(open_db(tmp_path))


def test_is_due_uses_cursor_and_interval(tmp_path) -> None:
    store = _store(tmp_path)
    sub = store.upsert(symbol="BTCUSDT", interval="1h", strategy_key="k")
    assert is_due(sub, T0) is True
    store.update_status(sub.stream_id, "no_signals", closed_candle_time=T0)
    sub = store.get(sub.stream_id)
    assert is_due(sub, T0 + HOUR) is False
    assert is_due(sub, T0 + 2 * HOUR) is True
    bad = replace(sub, interval="nope")
    assert is_due(bad, T0) is True


def test_tick_runs_only_due_enabled_subscriptions(tmp_path) -> None:
    store = _store(tmp_path)
    fresh = store.upsert(symbol="BTCUSDT", interval="1h", strategy_key="k")
    waiting = store.upsert(symbol="ETHUSDT", interval="1h", strategy_key="k")
    store.update_status(waiting.stream_id, "no_signals", closed_candle_time=T0)
    disabled = store.upsert(symbol="SOLUSDT", interval="1h", strategy_key="k", enabled=False)

    runner = RecordingRunner()
    summary = Scheduler(store=store, runner=runner, workers=2).run_tick(now_sec=T0 + HOUR)

    assert [call[0] for call in runner.calls] == [fresh.stream_id]
    assert runner.calls[0][1] == T0 + HOUR
    assert summary.enabled == 2
    assert summary.due == 1
    assert summary.skipped == 1
    assert disabled.stream_id not in {item.stream_id for item in summary.results}
    assert summary.to_dict()["statusCounts"] == {"no_signals": 1}


def test_worker_crash_does_not_abort_tick(tmp_path) -> None:
    store = _store(tmp_path)
    streams = [store.upsert(symbol=f"C{idx}USDT", interval="1h", strategy_key="k").stream_id for idx in range(4)]
    runner = RecordingRunner(crash_on={streams[1]})
    summary = Scheduler(store=store, runner=runner, workers=3).run_tick(now_sec=T0)

    assert len(runner.calls) == 4
    statuses = {item.stream_id: item.status for item in summary.results}
    assert statuses[streams[1]] == "error:worker exploded"
    assert sum(1 for status in statuses.values() if status == "no_signals") == 3
    assert summary.status_counts() == {"no_signals": 3, "error": 1}


def test_empty_tick(tmp_path) -> None:
    summary = Scheduler(store=_store(tmp_path), runner=RecordingRunner()).run_tick(now_sec=T0)
    assert summary.enabled == 0
    assert summary.results == []


def test_run_forever_stops_on_event(tmp_path) -> None:
    stop = threading.Event()

    store = _store(tmp_path)
    scheduler = Scheduler(store=store, runner=RecordingRunner(), tick_seconds=0.01)
    ticks: list[int] = []
    real_tick = scheduler.run_tick

    def counting_tick(now_sec=None):
        ticks.append(1)
        if len(ticks) >= 2:
            stop.set()
        if len(ticks) == 1:
            raise RuntimeError("transient")
        return real_tick(now_sec)

    scheduler.run_tick = counting_tick
    scheduler.run_forever(stop)
    assert len(ticks) == 2


class OverlapRunner:
    """Counts how many runs are in flight at once."""

    def __init__(self, parties: int):
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()
        self._barrier = threading.Barrier(parties)

    def run(self, subscription, *, force: bool = False, now_sec: int | None = None) -> RunResult:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            self._barrier.wait(timeout=5)
        finally:
            with self._lock:
                self.active -= 1
        return RunResult(stream_id=subscription.stream_id, status="no_signals", closed_candle_time=now_sec)


def test_tick_runs_in_parallel_within_worker_limit(tmp_path) -> None:
    store = _store(tmp_path)
    for idx in range(6):
        store.upsert(symbol=f"C{idx}USDT", interval="1h", strategy_key="k")
    runner = OverlapRunner(parties=2)
    summary = Scheduler(store=store, runner=runner, workers=2).run_tick(now_sec=T0)

    assert summary.status_counts() == {"no_signals": 6}
    assert runner.peak == 2
