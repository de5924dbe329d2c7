"""
Pricing/Totals engine — pure estimate arithmetic and presentation helpers.

Covers:
  - low / typical / high totals over a project's line items
  - the total for the active price mode
  - peso formatting (full and compact "K" form)
  - the plain-text estimate summary used for sharing
  - relative "saved N days ago" dates

No I/O; every function is deterministic for its inputs.
"""
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Union

from estima.models.schemas import LineItem, PriceMode, Totals

CURRENCY_SYMBOL = "₱"
_DIVIDER = "-" * 28


def compute_totals(line_items: Iterable[LineItem]) -> Totals:
    """
    Sum ``price[mode] * quantity`` for every mode.

    ``item_count`` is the number of line items; ``material_count`` is the sum
    of their quantities.
    """
    totals = Totals()
    for item in line_items:
        prices = item.material.prices
        totals.low += prices.low * item.quantity
        totals.typical += prices.typical * item.quantity
        totals.high += prices.high * item.quantity
        totals.item_count += 1
        totals.material_count += item.quantity
    return totals


def current_total(totals: Totals, price_mode: PriceMode) -> float:
    return totals.for_mode(price_mode)


def line_subtotal(item: LineItem, price_mode: PriceMode) -> float:
    return item.material.prices.for_mode(price_mode) * item.quantity


def _plain_number(amount: float) -> str:
    # 1,250 / 12.5 / 1,000.75; integers lose the trailing ".00"
    text = f"{amount:,.2f}"
    return text.rstrip("0").rstrip(".")


def format_currency(amount: float, show_symbol: bool = True, decimals: int = 0, compact: bool = False) -> str:
    """
    Philippine peso formatting.

        format_currency(12500)                -> "₱12,500"
        format_currency(12500, compact=True)  -> "₱12.5K"
        format_currency(99.5, decimals=2)     -> "₱99.50"
    """
    if compact and amount >= 1000:
        formatted = f"{amount / 1000:.1f}"
        if formatted.endswith(".0"):
            formatted = formatted[:-2]
        formatted += "K"
    else:
        formatted = f"{amount:,.{decimals}f}"
    return f"{CURRENCY_SYMBOL}{formatted}" if show_symbol else formatted


def generate_estimate_text(line_items: List[LineItem], totals: Totals, price_mode: PriceMode = PriceMode.TYPICAL) -> str:
    """Plain-text estimate suitable for pasting into a chat message."""
    if not line_items:
        return "No items in estimate."

    mode = PriceMode(price_mode)
    lines = ["ESTIMA - Material Estimate", _DIVIDER, ""]
    for item in line_items:
        price = item.material.prices.for_mode(mode)
        subtotal = line_subtotal(item, mode)
        lines.append(f"* {item.material.name}")
        lines.append(
            f"  {item.quantity} {item.material.unit} x {CURRENCY_SYMBOL}{_plain_number(price)}"
            f" = {CURRENCY_SYMBOL}{_plain_number(subtotal)}"
        )
        lines.append("")
    lines.append(_DIVIDER)
    lines.append(f"TOTAL ({mode.value}): {CURRENCY_SYMBOL}{_plain_number(totals.for_mode(mode))}")
    lines.append(
        f"Range: {CURRENCY_SYMBOL}{_plain_number(totals.low)} - {CURRENCY_SYMBOL}{_plain_number(totals.high)}"
    )
    return "\n".join(lines)


def format_relative_date(when: Union[datetime, date], now: Optional[datetime] = None) -> str:
    """Today / Yesterday / N days ago / N weeks ago, then "Mon D"."""
    now = now or datetime.now(timezone.utc)
    if isinstance(when, datetime):
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        diff_days = int((now - when).total_seconds() // 86400)
    else:
        diff_days = (now.date() - when).days

    if diff_days <= 0:
        return "Today"
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    if diff_days < 30:
        return f"{diff_days // 7} weeks ago"
    return f"{when:%b} {when.day}"
