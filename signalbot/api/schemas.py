from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _required_text(value: str) -> str:
    text = str(value).strip()
    if not text:
        raise ValueError("must not be empty")
    return text


class StreamSignalRequest(_CamelModel):
    stream_id: str | None = Field(default=None, alias="streamId")
    symbol: str
    interval: str
    strategy_key: str = Field(alias="strategyKey")
    strategy_params: dict[str, Any] = Field(default_factory=dict, alias="strategyParams")
    backtest_settings: dict[str, Any] = Field(default_factory=dict, alias="backtestSettings")
    freshness_bars: int = Field(default=1, ge=0, alias="freshnessBars")
    candles: list[dict[str, Any]]
    notify_telegram: bool = Field(default=False, alias="notifyTelegram")

    @field_validator("symbol", "interval", "strategy_key")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _required_text(value)


class SubscriptionUpsertRequest(_CamelModel):
    stream_id: str | None = Field(default=None, alias="streamId")
    symbol: str | None = None
    interval: str | None = None
    strategy_key: str | None = Field(default=None, alias="strategyKey")
    config_name: str | None = Field(default=None, alias="configName")
    strategy_params: dict[str, Any] | None = Field(default=None, alias="strategyParams")
    backtest_settings: dict[str, Any] | None = Field(default=None, alias="backtestSettings")
    freshness_bars: int | None = Field(default=None, ge=0, alias="freshnessBars")
    notify_telegram: bool | None = Field(default=None, alias="notifyTelegram")
    notify_exit: bool | None = Field(default=None, alias="notifyExit")
    enabled: bool | None = None
    candle_limit: int | None = Field(default=None, ge=1, alias="candleLimit")
    two_hour_parity: str | None = Field(default=None, alias="twoHourParity")


class SubscriptionDeleteRequest(_CamelModel):
    stream_id: str = Field(alias="streamId")
    hard: bool = False

    @field_validator("stream_id")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _required_text(value)


class RunNowRequest(_CamelModel):
    stream_id: str = Field(alias="streamId")
    force: bool = False

    @field_validator("stream_id")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _required_text(value)
