from __future__ import annotations

from urllib.parse import quote, unquote

STREAM_CONFIG_MARKER = ":cfg:"
STREAM_PARITY_MARKER = ":2hcp:"


def build_channel_key(
    *,
    stream_id: str | None,
    symbol: str,
    interval: str,
    strategy_key: str,
) -> str:
    if stream_id and stream_id.strip():
        return stream_id.strip().lower()
    return f"{symbol}:{interval}:{strategy_key}".lower()


def build_stream_id(
    symbol: str,
    interval: str,
    strategy_key: str,
    config_name: str | None = None,
    two_hour_parity: str | None = None,
) -> str:
    base = f"{symbol.strip()}:{interval.strip()}:{strategy_key.strip()}".lower()
    parity = str(two_hour_parity or "").strip().lower()
    if parity in {"odd", "even"}:
        base = f"{base}{STREAM_PARITY_MARKER}{parity}"
    name = (config_name or "").strip()
    if not name:
        return base
    return f"{base}{STREAM_CONFIG_MARKER}{quote(name, safe='')}"


def parse_config_name(stream_id: str) -> str | None:
    index = stream_id.rfind(STREAM_CONFIG_MARKER)
    if index < 0:
        return None
    encoded = stream_id[index + len(STREAM_CONFIG_MARKER):]
    decoded = unquote(encoded).strip()
    return decoded or None


def parse_two_hour_parity(stream_id: str) -> str | None:
    index = stream_id.find(STREAM_PARITY_MARKER)
    if index < 0:
        return None
    start = index + len(STREAM_PARITY_MARKER)
    config_index = stream_id.find(STREAM_CONFIG_MARKER, start)
    raw = stream_id[start:config_index] if config_index >= 0 else stream_id[start:]
    raw = raw.strip().lower()
    return raw if raw in {"odd", "even"} else None
