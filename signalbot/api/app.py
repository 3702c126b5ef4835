from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signalbot.api.deps import ApiServices, get_services
from signalbot.api.schemas import (
    RunNowRequest,
    StreamSignalRequest,
    SubscriptionDeleteRequest,
    SubscriptionUpsertRequest,
)
from signalbot.clock import utc_now
from signalbot.config import ConfigurationError
from signalbot.data.candles import normalize_candles
from signalbot.pipeline.processor import SignalPayload
from signalbot.stream_id import build_channel_key, build_stream_id

LOGGER = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        loc = [str(item) for item in error.get("loc", ()) if item != "body"]
        field = ".".join(loc) or "body"
        parts.append(f"{field}: {error.get('msg', 'invalid')}")
    return "Invalid request: " + "; ".join(parts) if parts else "Invalid request"


def create_app(services: ApiServices, *, cors_origins: list[str] | None = None) -> FastAPI:
    app = FastAPI(title="signalbot", version="0.1.0")
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(_request: Any, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"ok": False, "error": _validation_message(exc)})

    @app.exception_handler(HTTPException)
    async def _on_http_error(_request: Any, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc.detail)})

    @app.exception_handler(ConfigurationError)
    async def _on_config_error(_request: Any, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})

    @app.get("/health")
    def health(deps: ApiServices = Depends(get_services)) -> dict[str, Any]:
        return {"ok": True, "service": deps.service_name, "now": utc_now().isoformat()}

    @app.post("/api/stream/signal")
    def stream_signal(dto: StreamSignalRequest, deps: ApiServices = Depends(get_services)) -> JSONResponse:
        """Evaluate caller-supplied candles once; no cursor, no catch-up."""
        symbol = dto.symbol.upper()
        stream_id = (dto.stream_id or "").strip() or build_stream_id(symbol, dto.interval, dto.strategy_key)
        result = deps.processor.process(
            SignalPayload(
                stream_id=stream_id,
                symbol=symbol,
                interval=dto.interval,
                strategy_key=dto.strategy_key,
                candles=normalize_candles(dto.candles),
                strategy_params=dto.strategy_params,
                backtest_settings=dto.backtest_settings,
                freshness_bars=dto.freshness_bars,
                notify=dto.notify_telegram,
            )
        )
        return JSONResponse(status_code=200 if result.ok else 422, content=result.to_dict())

    @app.get("/api/stream/signals")
    def signal_history(
        stream_id: str | None = Query(default=None, alias="streamId"),
        symbol: str | None = Query(default=None),
        interval: str | None = Query(default=None),
        strategy_key: str | None = Query(default=None, alias="strategyKey"),
        limit: int | None = Query(default=None),
        deps: ApiServices = Depends(get_services),
    ) -> dict[str, Any]:
        stream_text = (stream_id or "").strip()
        symbol_text = (symbol or "").strip().upper()
        interval_text = (interval or "").strip()
        strategy_text = (strategy_key or "").strip()
        if stream_text:
            channel_key = stream_text.lower()
        elif symbol_text and interval_text and strategy_text:
            channel_key = build_channel_key(
                stream_id=None,
                symbol=symbol_text,
                interval=interval_text,
                strategy_key=strategy_text,
            )
        else:
            raise HTTPException(status_code=400, detail="Provide streamId or (symbol, interval, strategyKey).")

        items = [record.to_dict() for record in deps.ledger.history(channel_key, limit)]
        # ``signals`` mirrors ``items`` for older clients.
        return {"ok": True, "count": len(items), "items": items, "signals": items}

    @app.post("/api/subscriptions/upsert")
    def upsert_subscription(
        dto: SubscriptionUpsertRequest,
        deps: ApiServices = Depends(get_services),
    ) -> dict[str, Any]:
        record = deps.store.upsert(
            stream_id=dto.stream_id,
            symbol=dto.symbol,
            interval=dto.interval,
            strategy_key=dto.strategy_key,
            config_name=dto.config_name,
            enabled=dto.enabled,
            strategy_params=dto.strategy_params,
            backtest_settings=dto.backtest_settings,
            freshness_bars=dto.freshness_bars,
            notify_entry=dto.notify_telegram,
            notify_exit=dto.notify_exit,
            candle_limit=dto.candle_limit,
            two_hour_parity=dto.two_hour_parity,
        )
        return {"ok": True, "streamId": record.stream_id, "subscription": record.to_dict()}

    @app.get("/api/subscriptions")
    def list_subscriptions(deps: ApiServices = Depends(get_services)) -> dict[str, Any]:
        items = [record.to_dict() for record in deps.store.list_all()]
        return {"ok": True, "count": len(items), "items": items}

    @app.post("/api/subscriptions/delete")
    def delete_subscription(
        dto: SubscriptionDeleteRequest,
        deps: ApiServices = Depends(get_services),
    ) -> dict[str, Any]:
        if dto.hard:
            deleted, signals_deleted = deps.store.hard_delete(dto.stream_id)
            if not deleted and signals_deleted == 0:
                raise HTTPException(status_code=404, detail="Subscription not found")
            LOGGER.info("Subscription hard-deleted stream=%s signals=%d", dto.stream_id, signals_deleted)
            return {
                "ok": True,
                "streamId": dto.stream_id,
                "mode": "hard",
                "deleted": deleted,
                "signalsDeleted": signals_deleted,
            }
        if not deps.store.disable(dto.stream_id):
            raise HTTPException(status_code=404, detail="Subscription not found")
        LOGGER.info("Subscription disabled stream=%s", dto.stream_id)
        return {"ok": True, "streamId": dto.stream_id, "mode": "soft", "disabled": True}

    @app.post("/api/subscriptions/run-now")
    def run_now(dto: RunNowRequest, deps: ApiServices = Depends(get_services)) -> dict[str, Any]:
        subscription = deps.store.get(dto.stream_id)
        if subscription is None:
            raise HTTPException(status_code=404, detail="Subscription not found")
        run = deps.runner.run(subscription, force=dto.force, run_now=True).to_dict()
        return {"ok": True, "run": run, **run}

    return app
