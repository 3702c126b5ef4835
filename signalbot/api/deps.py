from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from signalbot.pipeline.processor import SignalProcessor
from signalbot.pipeline.runner import SubscriptionRunner
from signalbot.storage.signals import SignalLedger
from signalbot.storage.subscriptions import SubscriptionStore


@dataclass(slots=True)
class ApiServices:
    store: SubscriptionStore
    ledger: SignalLedger
    processor: SignalProcessor
    runner: SubscriptionRunner
    service_name: str = "signalbot"


def get_services(request: Request) -> ApiServices:
    """Resolve the wired services from FastAPI app state."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services are not initialized in app.state.services")
    return services
