from __future__ import annotations

import logging
import threading

import requests

from signalbot.clock import TWO_HOUR_SECONDS, interval_seconds, is_two_hour_even
from signalbot.data.candles import Candle, resample_candles
from signalbot.data.providers import (
    DEFAULT_BINANCE_API_BASES,
    DEFAULT_BYBIT_API_BASES,
    BinanceProvider,
    BybitProvider,
    KlineHttpClient,
    KlineProvider,
    MarketDataError,
    MarketDataUnavailableError,
)
from signalbot.status import normalize_status_text

LOGGER = logging.getLogger(__name__)

MAX_CANDLE_LIMIT = 1000
FAILURE_TEXT_MAX = 1000


class CandleSource:
    """Fetch ascending OHLCV candles with ordered provider fallback.

    Providers are tried in order and the first endpoint that yields a non-empty,
    well-formed series wins; later endpoints are never contacted for that call.
    """

    def __init__(
        self,
        *,
        providers: list[KlineProvider] | None = None,
        http: KlineHttpClient | None = None,
        session: requests.Session | None = None,
        min_limit: int = 200,
        max_limit: int = MAX_CANDLE_LIMIT,
        timeout_seconds: float = 10.0,
        request_max_attempts: int = 2,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 5.0,
        prefer_last_success: bool = False,
    ):
        if providers is None:
            providers = [
                BybitProvider(list(DEFAULT_BYBIT_API_BASES)),
                BinanceProvider(list(DEFAULT_BINANCE_API_BASES)),
            ]
        self.providers = list(providers)
        self.http = http or KlineHttpClient(
            session=session,
            timeout_seconds=timeout_seconds,
            request_max_attempts=request_max_attempts,
            backoff_base_seconds=backoff_base_seconds,
            backoff_max_seconds=backoff_max_seconds,
        )
        self.max_limit = max(1, int(max_limit))
        self.min_limit = max(1, min(int(min_limit), self.max_limit))
        self.prefer_last_success = prefer_last_success
        self._preferred: dict[str, str] = {}
        self._lock = threading.Lock()

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.min_limit
        return max(self.min_limit, min(self.max_limit, int(limit)))

    def _ordered_providers(self, symbol: str) -> list[KlineProvider]:
        if not self.prefer_last_success:
            return list(self.providers)
        with self._lock:
            preferred = self._preferred.get(symbol)
        if preferred is None:
            return list(self.providers)
        head = [p for p in self.providers if p.name == preferred]
        tail = [p for p in self.providers if p.name != preferred]
        return head + tail

    def _remember(self, symbol: str, provider: str) -> None:
        if not self.prefer_last_success:
            return
        with self._lock:
            self._preferred[symbol] = provider

    def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int | None = None,
        parity: str | None = "odd",
    ) -> list[Candle]:
        symbol = symbol.strip().upper()
        interval = interval.strip()
        limit = self.clamp_limit(limit)
        if is_two_hour_even(interval_seconds(interval), parity):
            hourly_limit = min(2 * limit + 1, self.max_limit)
            hourly = self.fetch_native(symbol, "1h", hourly_limit)
            candles = resample_candles(hourly, TWO_HOUR_SECONDS, parity="even")
            return candles[-limit:]
        return self.fetch_native(symbol, interval, limit)

    def fetch_native(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        failures: list[str] = []
        for provider in self._ordered_providers(symbol):
            provider_interval = provider.translate_interval(interval)
            if provider_interval is None:
                failures.append(f"{provider.name} -> unsupported_interval:{interval}")
                continue
            for request in provider.requests_for(symbol, provider_interval, limit):
                try:
                    payload = self.http.get_json(request)
                    candles = provider.parse_payload(payload)
                except MarketDataError as exc:
                    reason = normalize_status_text(str(exc) or type(exc).__name__, 320)
                    LOGGER.warning(
                        "Kline endpoint failed provider=%s endpoint=%s symbol=%s interval=%s reason=%s",
                        provider.name,
                        request.label,
                        symbol,
                        interval,
                        reason,
                    )
                    failures.append(f"{request.label} -> {reason}")
                    continue
                self._remember(symbol, provider.name)
                LOGGER.debug(
                    "Fetched %d candles provider=%s endpoint=%s symbol=%s interval=%s",
                    len(candles),
                    provider.name,
                    request.label,
                    symbol,
                    interval,
                )
                return candles[-limit:]

        detail = " | ".join(failures) if failures else "no providers configured"
        message = normalize_status_text(
            f"Failed to fetch candles for {symbol} {interval}: {detail}",
            FAILURE_TEXT_MAX,
        )
        raise MarketDataUnavailableError(message, failures)
