"""
Offline de-duplication of a trade history file.

Files written by older builds can hold several rows for the same trade
(same dedup key), typically an incomplete row next to its complete
version. cleanup_history_file() collapses each group to one row, keeping
the first complete row (or the first row when none is complete) at the
position of the group's first occurrence. Other rows are left alone.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from core.trade_history.backup import backup_file
from core.trade_history.models import HistoryEntry
from core.trade_history.persistence import (
    league_from_filename,
    store_from_dict,
    store_to_dict,
    write_json_atomic,
)
from core.trade_history.totals import totals_from_entries

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    success: bool
    backup_path: Optional[Path] = None
    removed_count: int = 0
    merged_count: int = 0
    total_before: int = 0
    total_after: int = 0
    error: Optional[str] = None


def dedupe_entries(entries: List[HistoryEntry]) -> tuple[List[HistoryEntry], int, int]:
    """
    Collapse duplicate keys.

    Returns:
        (entries, removed_count, merged_count) where merged_count is the
        number of groups resolved in favour of a complete row
    """
    groups: Dict[str, List[HistoryEntry]] = {}
    order: List[str] = []
    for entry in entries:
        key = entry.dedup_key
        if key not in groups:
            groups[key] = []
            order.append(key)
        groups[key].append(entry)

    result: List[HistoryEntry] = []
    removed = merged = 0
    for key in order:
        group = groups[key]
        if len(group) == 1:
            result.append(group[0])
            continue
        complete = [e for e in group if e.is_complete]
        if complete:
            result.append(complete[0])
            merged += 1
        else:
            result.append(group[0])
        removed += len(group) - 1
        logger.debug("[HistoryCleanup] %d rows for key %s", len(group), key)
    return result, removed, merged


def cleanup_history_file(path: Path, dry_run: bool = False) -> CleanupResult:
    """
    De-duplicate one history file in place (after backing it up).

    Args:
        path: trade-history-<game>-<league>.json
        dry_run: Only report what would change
    """
    path = Path(path)
    if not path.exists():
        return CleanupResult(success=False, error="History file not found")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"[HistoryCleanup] Failed to read {path}: {e}")
        return CleanupResult(success=False, error=str(e))
    if not isinstance(data, dict):
        return CleanupResult(success=False, error="History file is not a JSON object")

    league = data.get("league")
    if not isinstance(league, str) or not league.strip():
        league = league_from_filename(path)
    store = store_from_dict(data, league)
    total_before = len(store.entries)
    deduped, removed, merged = dedupe_entries(store.entries)
    result = CleanupResult(
        success=True,
        removed_count=removed,
        merged_count=merged,
        total_before=total_before,
        total_after=len(deduped),
    )
    if removed == 0:
        logger.info(f"[HistoryCleanup] No duplicates found in {path.name}")
        return result
    if dry_run:
        logger.info(f"[HistoryCleanup] Dry run: would remove {removed} duplicate(s) from {path.name}")
        return result

    try:
        result.backup_path = backup_file(path)
        store.entries = deduped
        store.totals = totals_from_entries(deduped)
        write_json_atomic(path, store_to_dict(store))
    except OSError as e:
        logger.error(f"[HistoryCleanup] Failed to rewrite {path}: {e}")
        result.success = False
        result.error = str(e)
        return result

    logger.info(
        f"[HistoryCleanup] {path.name}: {total_before} -> {len(deduped)} entries "
        f"({removed} removed, {merged} merged)"
    )
    return result
