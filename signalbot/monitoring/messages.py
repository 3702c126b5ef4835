from __future__ import annotations

from typing import Any

from signalbot.clock import to_iso

LONG_ICON = "\U0001F7E2"
SHORT_ICON = "\U0001F534"
TAKE_PROFIT_ICON = "\U0001F3AF"
STOP_LOSS_ICON = "\U0001F6D1"
EXIT_ICON = "\U0001F6AA"


def format_number(value: float) -> str:
    text = f"{float(value):.8f}".rstrip("0").rstrip(".")
    return text or "0"


def format_percent(value: float) -> str:
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}%"


def build_entry_message(payload: dict[str, Any]) -> str:
    """Telegram text for a stored entry payload (camelCase keys)."""
    direction = str(payload.get("direction") or "long")
    icon = LONG_ICON if direction == "long" else SHORT_ICON
    lines = [
        f"{icon} New Entry Signal",
        f"Symbol: {payload.get('symbol')}",
        f"Interval: {payload.get('interval')}",
        f"Strategy: {payload.get('strategyName')} ({payload.get('strategyKey')})",
        f"Direction: {direction.upper()}",
        f"Price: {format_number(payload.get('signalPrice') or 0.0)}",
    ]
    tp_price = payload.get("takeProfitPrice")
    tp_percent = payload.get("takeProfitPercent")
    if tp_price is not None and tp_percent is not None:
        lines.append(f"{TAKE_PROFIT_ICON} Take Profit: {float(tp_price):.4f} ({format_percent(float(tp_percent))})")
    sl_price = payload.get("stopLossPrice")
    sl_percent = payload.get("stopLossPercent")
    if sl_price is not None and sl_percent is not None:
        lines.append(
            f"{STOP_LOSS_ICON} Stop Loss: {float(sl_price):.4f} ({format_percent(-abs(float(sl_percent)))})"
        )
    lines.append(f"Time (UTC): {to_iso(int(payload.get('signalTimeSec') or 0))}")
    reason = payload.get("signalReason")
    if reason:
        lines.append(f"Reason: {reason}")
    return "\n".join(lines)


def build_exit_message(
    *,
    exit_direction: str,
    symbol: str,
    interval: str,
    strategy_name: str,
    strategy_key: str,
    price: float,
    time_sec: int,
) -> str:
    return "\n".join(
        [
            f"{EXIT_ICON} Exit Signal",
            f"Symbol: {symbol}",
            f"Interval: {interval}",
            f"Strategy: {strategy_name} ({strategy_key})",
            f"Closing: {exit_direction.upper()} position",
            f"Price: {format_number(price)}",
            f"Time (UTC): {to_iso(time_sec)}",
        ]
    )
