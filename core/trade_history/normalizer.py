"""
Entry normalizer: raw trade history rows -> HistoryEntry.

The history endpoint has returned several row shapes over time (seconds vs
milliseconds, ISO strings, item nested under "data", price fields inline).
normalize() accepts all of them and never raises on a malformed row;
unusable fields degrade to their empty value.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional

from core.constants import SECONDS_EPOCH_CUTOFF
from core.trade_history.models import HistoryEntry, NormalizedBatch, Price

logger = logging.getLogger(__name__)


def canonical_timestamp(raw: Any) -> int:
    """
    Convert a raw time value to ms epoch; 0 when unknown.

    Numbers below 2e9 are seconds. Digit-only strings count as numbers,
    other strings are parsed as ISO-8601 (naive values are UTC).
    """
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, (int, float)):
        return _from_number(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return 0
        if text.isdecimal():
            try:
                return _from_number(int(text))
            except ValueError:
                return 0
        return _from_iso(text)
    return 0


def _from_number(value: float) -> int:
    try:
        if not math.isfinite(value) or value <= 0:
            return 0
    except OverflowError:
        return 0
    if value < SECONDS_EPOCH_CUTOFF:
        return int(value * 1000)
    return int(value)


def _from_iso(text: str) -> int:
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        ms = int(parsed.timestamp() * 1000)
    except (ValueError, OverflowError, OSError):
        return 0
    return ms if ms > 0 else 0


def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _extract_item(raw: Mapping[str, Any]) -> Optional[dict]:
    item = _as_mapping(raw.get("item"))
    if item is None:
        data = _as_mapping(raw.get("data"))
        if data is not None:
            item = _as_mapping(data.get("item"))
    return dict(item) if item is not None else None


def _extract_item_id(raw: Mapping[str, Any], item: Optional[Mapping[str, Any]]) -> str:
    value = _first_present(raw, "item_id", "itemId")
    if value is None and item is not None:
        value = item.get("id")
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value).strip()


def _to_amount(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            amount = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            amount = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return amount if math.isfinite(amount) else None


def _extract_price(raw: Mapping[str, Any]) -> Optional[Price]:
    source = _as_mapping(raw.get("price")) or raw
    amount = _to_amount(source.get("amount"))
    currency = source.get("currency")
    if amount is None or not isinstance(currency, str) or not currency.strip():
        return None
    return Price(amount=amount, currency=currency.strip())


def _extract_note(raw: Mapping[str, Any]) -> str:
    note = raw.get("note")
    if isinstance(note, str) and note:
        return note
    price = _as_mapping(raw.get("price"))
    if price is not None and isinstance(price.get("raw"), str):
        return price["raw"]
    return ""


def normalize(raw: Any) -> HistoryEntry:
    """Convert one raw row into a HistoryEntry. Non-mappings yield an empty entry."""
    if not isinstance(raw, Mapping):
        return HistoryEntry()
    item = _extract_item(raw)
    return HistoryEntry(
        item_id=_extract_item_id(raw, item),
        timestamp=canonical_timestamp(_first_present(raw, "time", "listedAt", "date")),
        price=_extract_price(raw),
        item=item,
        note=_extract_note(raw),
    )


def normalize_rows(rows: Iterable[Any]) -> NormalizedBatch:
    """
    Normalize a fetched page. Rows that are not mappings, or that fail
    unexpectedly, are skipped and counted as malformed.
    """
    entries: List[HistoryEntry] = []
    malformed = 0
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            logger.warning("Skipping malformed history row %d: %s", index, type(row).__name__)
            malformed += 1
            continue
        try:
            entries.append(normalize(row))
        except Exception as exc:  # a single bad row must not abort the batch
            logger.warning("Skipping malformed history row %d: %s", index, exc)
            malformed += 1
    if malformed:
        logger.info("Normalized %d rows, skipped %d malformed", len(entries), malformed)
    return NormalizedBatch(entries=entries, malformed=malformed)
