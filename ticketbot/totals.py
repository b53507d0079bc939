# ticketbot/totals.py
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

# First money-looking number in free text: "$15.50", "Total: 1,204.99 USD", "15"
_AMOUNT_RE = re.compile(
    r"(?:[$£€]\s*)?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)",
)

_CENT = Decimal("0.01")


def parse_amount(text: str | None) -> Optional[Decimal]:
    """
    Extract the leading currency-like amount from a scraped/typed total.
    Returns None when nothing usable is found.
    """
    m = _AMOUNT_RE.search(text or "")
    if not m:
        return None
    try:
        value = Decimal(m.group(1).replace(",", ""))
    except InvalidOperation:
        return None
    if value < 0:
        return None
    return value.quantize(_CENT)


def amount_or_fallback(text: str | None, fallback: Decimal) -> Decimal:
    parsed = parse_amount(text)
    return parsed if parsed is not None else Decimal(fallback).quantize(_CENT)


def format_money(amount: Decimal) -> str:
    return f"${Decimal(amount).quantize(_CENT)}"
