"""
Currency normalization and totals derivation.

Totals are always derivable from the entry list; the reconciler recomputes
them after every mutation so the two can never drift.
"""
from __future__ import annotations

import math
import re
from typing import Dict, Iterable, Optional

from core.trade_history.models import HistoryEntry, Price

_ORB_OF = re.compile(r"\borbs?\s+of\s+")
_ORB_WORD = re.compile(r"\borbs?\b")
_WHITESPACE = re.compile(r"\s+")

# prefix -> canonical name, checked in order
_CURRENCY_ALIASES = (
    (("exalted", "exalt", "exa", "ex"), "exalted"),
    (("divine", "divi", "div"), "divine"),
    (("annulment", "annul", "ann"), "annul"),
    (("chaos", "c"), "chaos"),
)


def normalize_currency(raw: Optional[str]) -> str:
    """
    Map a currency label to its canonical bucket.

    >>> normalize_currency("Exalted Orbs")
    'exalted'
    >>> normalize_currency("div")
    'divine'
    """
    if not raw:
        return ""
    cleaned = _ORB_OF.sub(" ", str(raw).lower())
    cleaned = _ORB_WORD.sub(" ", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if not cleaned:
        return ""
    first = cleaned.split(" ", 1)[0]
    for aliases, canonical in _CURRENCY_ALIASES:
        if first in aliases:
            return canonical
    if "altar" in cleaned:
        return "altar"
    return cleaned


def price_contribution(price: Optional[Price]) -> Optional[tuple[str, float]]:
    """(currency, amount) a price adds to totals, or None."""
    if price is None:
        return None
    amount = price.amount
    if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount == 0:
        return None
    currency = normalize_currency(price.currency)
    if not currency:
        return None
    return currency, float(amount)


def add_price(totals: Dict[str, float], price: Optional[Price], sign: int = 1) -> None:
    """Apply one price to a totals map in place (sign=-1 subtracts)."""
    contribution = price_contribution(price)
    if contribution is None:
        return
    currency, amount = contribution
    totals[currency] = totals.get(currency, 0.0) + sign * amount
    if totals[currency] == 0:
        del totals[currency]


def totals_from_entries(entries: Iterable[HistoryEntry]) -> Dict[str, float]:
    """Sum prices grouped by normalized currency."""
    totals: Dict[str, float] = {}
    for entry in entries:
        add_price(totals, entry.price)
    return totals
