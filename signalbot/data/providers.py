from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any

import requests

from signalbot.data.candles import Candle, candles_from_binance, candles_from_bybit
from signalbot.status import response_snippet

LOGGER = logging.getLogger(__name__)

USER_AGENT = "signalbot-alert-worker/1.0"

DEFAULT_BINANCE_API_BASES = [
    "https://data-api.binance.vision",
    "https://api.binance.com",
    "https://api1.binance.com",
    "https://api2.binance.com",
    "https://api3.binance.com",
    "https://api4.binance.com",
    "https://api.binance.us",
]
DEFAULT_BYBIT_API_BASES = [
    "https://api.bybit.com",
]

BINANCE_INTERVALS = {
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w", "1M",
}
_BINANCE_MINUTE_ALIASES = {
    1: "1m", 3: "3m", 5: "5m", 15: "15m", 30: "30m",
    60: "1h", 120: "2h", 240: "4h", 360: "6h", 480: "8h", 720: "12h",
    1440: "1d", 4320: "3d", 10080: "1w",
}
_BINANCE_HOUR_ALIASES = {
    1: "1h", 2: "2h", 4: "4h", 6: "6h", 8: "8h", 12: "12h",
    24: "1d", 72: "3d", 168: "1w",
}
_BYBIT_MINUTES = {1, 3, 5, 15, 30, 60, 120, 240, 360, 720}
_BYBIT_HOUR_MINUTES = {60, 120, 240, 360, 720}
BYBIT_CATEGORIES = ("spot", "linear")


class MarketDataError(RuntimeError):
    """Non-retryable market data error for a single endpoint."""


class RetryableMarketDataError(MarketDataError):
    """Endpoint still failing after all retry attempts (429, 5xx, network)."""


class MarketDataUnavailableError(MarketDataError):
    """Every configured provider endpoint failed."""

    def __init__(self, message: str, failures: list[str] | None = None):
        super().__init__(message)
        self.failures = list(failures or [])


def normalize_api_bases(raw: str | list[str] | None, defaults: list[str]) -> list[str]:
    if raw is None:
        return list(defaults)
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    bases = [str(item).strip().rstrip("/") for item in items]
    bases = [item for item in bases if item]
    return bases or list(defaults)


def _parse_retry_after(headers: Any) -> float | None:
    value = headers.get("Retry-After") if headers is not None else None
    if not value:
        return None
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


def to_binance_interval(interval: str) -> str | None:
    token = interval.strip()
    if token in BINANCE_INTERVALS:
        return token
    if token.endswith("m") and token[:-1].isdigit():
        return _BINANCE_MINUTE_ALIASES.get(int(token[:-1]))
    if token.endswith("h") and token[:-1].isdigit():
        return _BINANCE_HOUR_ALIASES.get(int(token[:-1]))
    return None


def to_bybit_interval(interval: str) -> str | None:
    token = interval.strip()
    if token.endswith("m") and token[:-1].isdigit():
        minutes = int(token[:-1])
        return str(minutes) if minutes in _BYBIT_MINUTES else None
    if token.endswith("h") and token[:-1].isdigit():
        minutes = int(token[:-1]) * 60
        return str(minutes) if minutes in _BYBIT_HOUR_MINUTES else None
    if token in {"1d", "24h"}:
        return "D"
    if token in {"1w", "7d"}:
        return "W"
    if token in {"1M", "30d"}:
        return "M"
    return None


@dataclass(slots=True)
class KlineRequest:
    provider: str
    label: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)


class KlineProvider:
    name = "provider"

    def __init__(self, bases: list[str]):
        self.bases = list(bases)

    def translate_interval(self, interval: str) -> str | None:
        raise NotImplementedError

    def requests_for(self, symbol: str, provider_interval: str, limit: int) -> list[KlineRequest]:
        raise NotImplementedError

    def parse_payload(self, payload: Any) -> list[Candle]:
        raise NotImplementedError


class BybitProvider(KlineProvider):
    name = "bybit"

    def translate_interval(self, interval: str) -> str | None:
        return to_bybit_interval(interval)

    def requests_for(self, symbol: str, provider_interval: str, limit: int) -> list[KlineRequest]:
        return [
            KlineRequest(
                provider=self.name,
                label=f"{base}/{category}",
                url=f"{base}/v5/market/kline",
                params={
                    "category": category,
                    "symbol": symbol,
                    "interval": provider_interval,
                    "limit": limit,
                },
            )
            for base in self.bases
            for category in BYBIT_CATEGORIES
        ]

    def parse_payload(self, payload: Any) -> list[Candle]:
        if not isinstance(payload, dict):
            raise MarketDataError("invalid_payload")
        ret_code = payload.get("retCode")
        if ret_code != 0:
            code = "?" if ret_code is None else ret_code
            raise MarketDataError(f"code:{code} {payload.get('retMsg') or ''}".strip())
        result = payload.get("result") or {}
        rows = result.get("list") if isinstance(result, dict) else None
        candles = candles_from_bybit(rows if isinstance(rows, list) else [])
        if not candles:
            raise MarketDataError("empty_response")
        return candles


class BinanceProvider(KlineProvider):
    name = "binance"

    def translate_interval(self, interval: str) -> str | None:
        return to_binance_interval(interval)

    def requests_for(self, symbol: str, provider_interval: str, limit: int) -> list[KlineRequest]:
        return [
            KlineRequest(
                provider=self.name,
                label=base,
                url=f"{base}/api/v3/klines",
                params={"symbol": symbol, "interval": provider_interval, "limit": limit},
            )
            for base in self.bases
        ]

    def parse_payload(self, payload: Any) -> list[Candle]:
        if not isinstance(payload, list):
            raise MarketDataError("invalid_payload")
        candles = candles_from_binance(payload)
        if not candles:
            raise MarketDataError("empty_response")
        return candles


class KlineHttpClient:
    """Thin ``requests`` wrapper with bounded retries for kline endpoints.

    Only HTTP 429, 5xx and network errors are retried; any other failure is returned to
    the caller immediately so it can fall through to the next endpoint.
    """

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 10.0,
        request_max_attempts: int = 2,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 5.0,
    ):
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.request_max_attempts = max(1, int(request_max_attempts))
        self.backoff_base_seconds = max(0.0, float(backoff_base_seconds))
        self.backoff_max_seconds = max(self.backoff_base_seconds, float(backoff_max_seconds))

    def _sleep_retry(self, *, label: str, attempt: int, reason: str, retry_after: float | None = None) -> None:
        if retry_after is not None:
            sleep_seconds = min(self.backoff_max_seconds, max(0.0, retry_after))
        else:
            exponential = min(
                self.backoff_max_seconds,
                self.backoff_base_seconds * (2 ** max(0, attempt - 1)),
            )
            jitter = random.uniform(0.0, max(0.0, exponential * 0.2))
            sleep_seconds = min(self.backoff_max_seconds, exponential + jitter)
        LOGGER.warning(
            "Retrying kline request endpoint=%s attempt=%d/%d sleep=%.2fs reason=%s",
            label,
            attempt,
            self.request_max_attempts,
            sleep_seconds,
            reason,
        )
        time.sleep(sleep_seconds)

    def get_json(self, request: KlineRequest) -> Any:
        for attempt in range(1, self.request_max_attempts + 1):
            try:
                response = self.session.get(
                    request.url,
                    params=request.params,
                    headers={"Accept": "application/json", "User-Agent": USER_AGENT},
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as exc:
                if attempt >= self.request_max_attempts:
                    raise RetryableMarketDataError(f"network:{type(exc).__name__} {exc}") from exc
                self._sleep_retry(
                    label=request.label,
                    attempt=attempt,
                    reason=f"network:{type(exc).__name__}",
                )
                continue

            status = response.status_code
            if status == 429 or status in (500, 502, 503, 504):
                if attempt >= self.request_max_attempts:
                    snippet = response_snippet(response.text)
                    raise RetryableMarketDataError(f"{status} {snippet}".strip())
                self._sleep_retry(
                    label=request.label,
                    attempt=attempt,
                    reason=f"http_{status}",
                    retry_after=_parse_retry_after(response.headers) if status == 429 else None,
                )
                continue

            if status >= 400:
                snippet = response_snippet(response.text)
                raise MarketDataError(f"{status} {snippet}".strip())

            try:
                return response.json()
            except ValueError as exc:
                raise MarketDataError("invalid_json") from exc

        raise RetryableMarketDataError("retries_exhausted")
