from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from signalbot.status import response_snippet

LOGGER = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class NotificationError(RuntimeError):
    """The message was not delivered."""


@dataclass(slots=True)
class NotifierConfig:
    bot_token: str | None = None
    chat_id: str | None = None
    timeout_seconds: float = 10.0
    api_base: str = TELEGRAM_API_BASE


class TelegramNotifier:
    def __init__(self, config: NotifierConfig, *, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool((self.config.bot_token or "").strip() and (self.config.chat_id or "").strip())

    def send(self, text: str) -> None:
        bot_token = (self.config.bot_token or "").strip()
        chat_id = (self.config.chat_id or "").strip()
        if not bot_token or not chat_id:
            raise NotificationError("Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID")
        url = f"{self.config.api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text}
        try:
            response = self.session.post(url, json=payload, timeout=self.config.timeout_seconds)
        except requests.RequestException as exc:
            raise NotificationError(f"Telegram send failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise NotificationError(
                f"Telegram send failed ({response.status_code}): {response_snippet(response.text)}"
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("ok") is False:
            raise NotificationError(f"Telegram send failed: {body.get('description') or 'ok=false'}")
        LOGGER.debug("Telegram message sent chat_id=%s chars=%d", chat_id, len(text))
