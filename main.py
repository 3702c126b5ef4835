from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sqlite3
import threading
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from signalbot.api.app import create_app
from signalbot.api.deps import ApiServices
from signalbot.config import AppConfig, apply_env_overrides, load_config
from signalbot.data.market_data import CandleSource
from signalbot.data.providers import BinanceProvider, BybitProvider
from signalbot.monitoring.notifier import NotifierConfig, TelegramNotifier
from signalbot.pipeline.exit_detector import ExitDetector
from signalbot.pipeline.processor import SignalProcessor
from signalbot.pipeline.runner import SubscriptionRunner
from signalbot.pipeline.scheduler import Scheduler
from signalbot.storage.db import get_connection, init_db
from signalbot.storage.signals import SignalLedger
from signalbot.storage.subscriptions import SubscriptionStore
from signalbot.strategy.ma_crossover import MovingAverageCrossover
from signalbot.strategy.registry import EvaluatorRegistry

LOGGER = logging.getLogger("signalbot")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Closed-candle strategy signal alert worker")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--once", action="store_true", help="Run a single scheduler tick, print the summary and exit.")
    mode_group.add_argument("--serve", action="store_true", help="Serve the HTTP API (scheduler runs in the background).")
    parser.add_argument("--no-scheduler", action="store_true", help="With --serve: do not start the background scheduler.")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def resolve_db_path(root: Path, config: AppConfig) -> str:
    raw_path = config.storage.sqlite_path.strip() or "signals.db"
    if raw_path == ":memory:":
        return raw_path
    path = Path(raw_path)
    if not path.is_absolute():
        path = root / path
    return str(path)


def build_candle_source(config: AppConfig) -> CandleSource:
    market = config.market_data
    return CandleSource(
        providers=[
            BybitProvider(market.bybit_api_bases),
            BinanceProvider(market.binance_api_bases),
        ],
        min_limit=config.signals.min_closed_candles,
        max_limit=config.signals.max_candle_limit,
        timeout_seconds=market.timeout_seconds,
        request_max_attempts=market.request_max_attempts,
        backoff_base_seconds=market.backoff_base_seconds,
        backoff_max_seconds=market.backoff_max_seconds,
        prefer_last_success=market.prefer_last_success,
    )


def build_notifier(config: AppConfig) -> TelegramNotifier:
    notifier = TelegramNotifier(
        NotifierConfig(
            bot_token=config.telegram.bot_token,
            chat_id=config.telegram.chat_id,
            timeout_seconds=config.telegram.timeout_seconds,
        )
    )
    if not notifier.configured:
        LOGGER.warning("Telegram is not configured; entry notifications will fail and be retried.")
    return notifier


def build_registry() -> EvaluatorRegistry:
    return EvaluatorRegistry([MovingAverageCrossover()])


def build_services(
    config: AppConfig,
    conn: sqlite3.Connection,
    *,
    candle_source: CandleSource | None = None,
    notifier: TelegramNotifier | None = None,
    registry: EvaluatorRegistry | None = None,
) -> tuple[ApiServices, Scheduler]:
    signals = config.signals
    db_lock = threading.Lock()
    store = SubscriptionStore(
        conn,
        lock=db_lock,
        min_candle_limit=signals.min_closed_candles,
        max_candle_limit=signals.max_candle_limit,
        default_candle_limit=signals.default_candle_limit,
    )
    ledger = SignalLedger(
        conn,
        lock=db_lock,
        history_default_limit=signals.history_default_limit,
        history_max_limit=signals.history_max_limit,
    )
    evaluator = registry or build_registry()
    notifier = notifier or build_notifier(config)
    processor = SignalProcessor(
        evaluator=evaluator,
        ledger=ledger,
        notifier=notifier,
        min_closed_candles=signals.min_closed_candles,
    )
    runner = SubscriptionRunner(
        candle_source=candle_source or build_candle_source(config),
        processor=processor,
        exit_detector=ExitDetector(evaluator=evaluator, ledger=ledger, notifier=notifier),
        store=store,
        min_closed_candles=signals.min_closed_candles,
        run_now_freshness_bars=signals.run_now_freshness_bars,
    )
    scheduler = Scheduler(
        store=store,
        runner=runner,
        workers=config.scheduler.workers,
        tick_seconds=config.scheduler.tick_seconds,
    )
    services = ApiServices(store=store, ledger=ledger, processor=processor, runner=runner)
    return services, scheduler


def install_stop_handlers(stop_event: threading.Event) -> None:
    def _stop(signum: int, _frame: object) -> None:
        LOGGER.info("Received signal %s, shutting down.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _stop)


def run_server(args: argparse.Namespace, config: AppConfig, services: ApiServices, scheduler: Scheduler) -> None:
    stop_event = threading.Event()
    worker: threading.Thread | None = None
    if not args.no_scheduler:
        worker = threading.Thread(target=scheduler.run_forever, args=(stop_event,), name="scheduler", daemon=True)
        worker.start()

    app = create_app(services, cors_origins=config.api.cors_origins)
    host = args.host or config.api.host
    port = args.port or config.api.port
    LOGGER.info("Serving API on %s:%s scheduler=%s", host, port, "off" if args.no_scheduler else "on")
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        stop_event.set()
        if worker is not None:
            worker.join(timeout=config.scheduler.tick_seconds)


def run() -> None:
    args = parse_args()
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    root = Path(__file__).resolve().parent
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = root / config_path
    config = apply_env_overrides(load_config(config_path))

    db_path = resolve_db_path(root, config)
    conn = get_connection(db_path)
    init_db(conn)
    LOGGER.info("SQLite state path: %s", db_path)

    services, scheduler = build_services(config, conn)

    if args.once:
        summary = scheduler.run_tick()
        print(json.dumps(summary.to_dict(), indent=2))
        return

    if args.serve:
        run_server(args, config, services, scheduler)
        return

    stop_event = threading.Event()
    install_stop_handlers(stop_event)
    scheduler.run_forever(stop_event)
    LOGGER.info("Worker stopped.")


if __name__ == "__main__":
    run()
