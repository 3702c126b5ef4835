from __future__ import annotations

import re

STATUS_TEXT_MAX = 1200
RESPONSE_SNIPPET_MAX = 320

INSUFFICIENT_CANDLES = "insufficient_candles"
NO_NEW_CLOSED_CANDLE = "no_new_closed_candle"
NEW_ENTRY = "new_entry"
CATCH_UP_ENTRY = "catch_up_entry"
NO_ENTRY = "no_entry"
STALE_SIGNAL = "stale_signal"
NOTIFY_FAILED = "notify_failed"
PROCESSING_ERROR = "processing_error"
ERROR_PREFIX = "error:"

_WS_RE = re.compile(r"\s+")
_TAG_RE = re.compile(r"<[^>]+>")


def normalize_status_text(value: str, max_len: int = STATUS_TEXT_MAX) -> str:
    """Collapse whitespace and cut to ``max_len``, preferring a word boundary."""
    normalized = _WS_RE.sub(" ", str(value)).strip()
    if len(normalized) <= max_len:
        return normalized
    if max_len <= 3:
        return normalized[:max_len]
    truncated = normalized[: max_len - 3]
    last_space = truncated.rfind(" ")
    if last_space > int((max_len - 3) * 0.6):
        truncated = truncated[:last_space]
    return f"{truncated}..."


def response_snippet(body: str, max_len: int = RESPONSE_SNIPPET_MAX) -> str:
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", body or "")).strip()[:max_len]


def error_status(detail: str) -> str:
    return ERROR_PREFIX + normalize_status_text(detail, max(32, STATUS_TEXT_MAX - len(ERROR_PREFIX)))
