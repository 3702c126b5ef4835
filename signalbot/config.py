from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from signalbot.data.providers import (
    DEFAULT_BINANCE_API_BASES,
    DEFAULT_BYBIT_API_BASES,
    normalize_api_bases,
)


class ConfigurationError(ValueError):
    """Invalid subscription or service settings. Never retried."""


class MarketDataConfig(BaseModel):
    binance_api_bases: list[str] = Field(default_factory=lambda: list(DEFAULT_BINANCE_API_BASES))
    bybit_api_bases: list[str] = Field(default_factory=lambda: list(DEFAULT_BYBIT_API_BASES))
    timeout_seconds: float = 10.0
    request_max_attempts: int = 2
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 5.0
    prefer_last_success: bool = False

    @model_validator(mode="after")
    def validate_values(self) -> "MarketDataConfig":
        self.binance_api_bases = normalize_api_bases(self.binance_api_bases, DEFAULT_BINANCE_API_BASES)
        self.bybit_api_bases = normalize_api_bases(self.bybit_api_bases, DEFAULT_BYBIT_API_BASES)
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.request_max_attempts <= 0:
            raise ValueError("request_max_attempts must be > 0")
        if self.backoff_base_seconds < 0 or self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds >= 0")
        return self


class SignalsConfig(BaseModel):
    min_closed_candles: int = 200
    default_candle_limit: int = 350
    max_candle_limit: int = 1000
    run_now_freshness_bars: int = 24
    history_default_limit: int = 50
    history_max_limit: int = 200

    @model_validator(mode="after")
    def validate_values(self) -> "SignalsConfig":
        if self.min_closed_candles < 2:
            raise ValueError("min_closed_candles must be >= 2")
        if self.max_candle_limit < self.min_closed_candles:
            raise ValueError("max_candle_limit must be >= min_closed_candles")
        self.default_candle_limit = max(
            self.min_closed_candles,
            min(self.max_candle_limit, self.default_candle_limit),
        )
        if self.run_now_freshness_bars < 0:
            raise ValueError("run_now_freshness_bars must be >= 0")
        if self.history_max_limit <= 0:
            raise ValueError("history_max_limit must be > 0")
        self.history_default_limit = max(1, min(self.history_max_limit, self.history_default_limit))
        return self


class SchedulerConfig(BaseModel):
    tick_seconds: float = 60.0
    workers: int = 4

    @model_validator(mode="after")
    def validate_values(self) -> "SchedulerConfig":
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")
        if self.workers <= 0:
            raise ValueError("workers must be > 0")
        return self


class TelegramConfig(BaseModel):
    bot_token: str | None = None
    chat_id: str | None = None
    timeout_seconds: float = 10.0


class StorageConfig(BaseModel):
    sqlite_path: str = "signals.db"


class ApiConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8787
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseModel):
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    signals: SignalsConfig = Field(default_factory=SignalsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


def load_config(path: str | Path | None) -> AppConfig:
    if path is None:
        return AppConfig()
    config_path = Path(path)
    if not config_path.exists():
        return AppConfig()
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)


def _env_text(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Overlay environment variables on top of the file config and re-validate."""
    raw = config.model_dump()
    binance = _env_text("BINANCE_API_BASES")
    if binance is not None:
        raw["market_data"]["binance_api_bases"] = normalize_api_bases(binance, DEFAULT_BINANCE_API_BASES)
    bybit = _env_text("BYBIT_API_BASES")
    if bybit is not None:
        raw["market_data"]["bybit_api_bases"] = normalize_api_bases(bybit, DEFAULT_BYBIT_API_BASES)
    token = _env_text("TELEGRAM_BOT_TOKEN")
    if token is not None:
        raw["telegram"]["bot_token"] = token
    chat_id = _env_text("TELEGRAM_CHAT_ID")
    if chat_id is not None:
        raw["telegram"]["chat_id"] = chat_id
    min_closed = _env_text("MIN_CLOSED_CANDLES")
    if min_closed is not None:
        raw["signals"]["min_closed_candles"] = int(min_closed)
    sqlite_path = _env_text("SQLITE_PATH")
    if sqlite_path is not None:
        raw["storage"]["sqlite_path"] = sqlite_path
    tick_seconds = _env_text("SCHEDULER_TICK_SECONDS")
    if tick_seconds is not None:
        raw["scheduler"]["tick_seconds"] = float(tick_seconds)
    workers = _env_text("SCHEDULER_WORKERS")
    if workers is not None:
        raw["scheduler"]["workers"] = int(workers)
    return AppConfig.model_validate(raw)
