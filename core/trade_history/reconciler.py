"""
Reconciler: merges a normalized batch into a HistoryStore.

Rules:
- A new dedup key is appended, complete or not, so prices are never lost.
- An incomplete stored entry is replaced in place by a complete one.
- Nothing else changes an existing entry; completeness never regresses.
- Entries are never removed, so the count per league only grows.
- Totals are recomputed from the entry list after any mutation.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, Mapping, Optional

from core.trade_history.models import HistoryEntry, HistoryStore, ReconcileStats
from core.trade_history.totals import add_price, totals_from_entries

logger = logging.getLogger(__name__)


def _legacy_item_id(entry: HistoryEntry) -> Optional[str]:
    if entry.item_id or not isinstance(entry.item, Mapping):
        return None
    value = entry.item.get("id")
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    value = str(value).strip()
    return value or None


def backfill_item_ids(store: HistoryStore) -> int:
    """
    One-time migration: copy item["id"] into item_id on legacy entries.

    Entries keep their position. Returns the number of entries fixed and
    marks the store so the pass is not repeated.
    """
    if store.item_ids_backfilled:
        return 0
    fixed = 0
    for index, entry in enumerate(store.entries):
        legacy_id = _legacy_item_id(entry)
        if legacy_id:
            store.entries[index] = replace(entry, item_id=legacy_id)
            fixed += 1
    store.item_ids_backfilled = True
    if fixed:
        logger.info("Backfilled item_id on %d legacy entries (%s)", fixed, store.league)
    return fixed


def reconcile(store: HistoryStore, batch: Iterable[HistoryEntry], now_ms: int) -> ReconcileStats:
    """
    Merge batch into store in place.

    Replaying the same batch is a no-op: zero added, zero upgraded and
    totals unchanged.
    """
    backfilled = backfill_item_ids(store)

    index: Dict[str, int] = {}
    for position, entry in enumerate(store.entries):
        index.setdefault(entry.dedup_key, position)

    added = upgraded = incomplete_seen = 0
    for entry in batch:
        if not entry.is_complete:
            incomplete_seen += 1
        key = entry.dedup_key
        position = index.get(key)
        if position is None:
            store.entries.append(entry)
            index[key] = len(store.entries) - 1
            add_price(store.totals, entry.price)
            added += 1
            continue
        existing = store.entries[position]
        if not existing.is_complete and entry.is_complete:
            store.entries[position] = entry
            add_price(store.totals, existing.price, sign=-1)
            add_price(store.totals, entry.price)
            upgraded += 1

    stats = ReconcileStats(
        added=added,
        upgraded=upgraded,
        incomplete_seen=incomplete_seen,
        backfilled=backfilled,
    )
    if stats.changed:
        store.totals = totals_from_entries(store.entries)
        store.last_sync = now_ms
        logger.debug(
            "Reconciled %s: +%d added, %d upgraded, %d incomplete seen",
            store.league, added, upgraded, incomplete_seen,
        )
    return stats
