"""Shared display utilities: number formatting and colors for values."""

from __future__ import annotations

from typing import Optional

from dca_tracker.services.metrics import sats_to_btc
from dca_tracker.theming.style import COLOR_LOSS, COLOR_PROFIT, MISSING_VALUE, NEUTRAL_COLOR

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€"}


def color_for_value(value: Optional[float]) -> str:
    """
    Return foreground color for a numeric value (P/L, change, etc.).

    Args:
        value: Numeric value (e.g. P/L or 24h change).

    Returns:
        COLOR_PROFIT if value >= 0, COLOR_LOSS if value < 0,
        NEUTRAL_COLOR if value is None or not numeric.
    """
    if value is None:
        return NEUTRAL_COLOR
    try:
        v = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_COLOR
    return COLOR_PROFIT if v >= 0 else COLOR_LOSS


def format_sats(sats: int) -> str:
    """1234567 -> '1,234,567'."""
    return f"{int(sats):,}"


def format_btc(btc: float) -> str:
    return f"{btc:.8f}"


def format_goal(goal_sats: int, sats_mode: bool) -> str:
    if sats_mode:
        return f"{format_sats(goal_sats)} sats"
    return f"{format_btc(sats_to_btc(goal_sats))} BTC"


def format_money(value: Optional[float], currency: str = "USD") -> str:
    """Currency amount with grouping and 2 decimals; the placeholder for None."""
    if value is None:
        return MISSING_VALUE
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    sign = "-" if value < 0 else ""
    if symbol:
        return f"{sign}{symbol}{abs(value):,.2f}"
    return f"{sign}{abs(value):,.2f} {currency.upper()}"


def format_signed(value: Optional[float], suffix: str = "") -> str:
    """'+5000.00 USD' style; the placeholder for None."""
    if value is None:
        return MISSING_VALUE
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}{suffix}"


def format_pnl(pnl: Optional[float], pct: Optional[float], currency: str = "USD") -> str:
    """'P/L: +5000.00 USD (+25.00%)' or 'P/L: n/a' when there is no live price."""
    if pnl is None:
        return f"P/L: {MISSING_VALUE}"
    text = f"P/L: {format_signed(pnl, ' ' + currency)}"
    if pct is not None:
        text += f" ({format_signed(pct, '%')})"
    return text
