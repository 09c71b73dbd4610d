"""
CSV export of trade history.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from core.trade_history.models import HistoryEntry, HistorySnapshot, HistoryStore
from core.trade_history.persistence import sanitize_league

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "Timestamp",
    "Item Name",
    "Item Type",
    "Rarity",
    "Price Amount",
    "Price Currency",
    "Note",
]


@dataclass
class ExportResult:
    """Result of an export operation."""
    success: bool
    file_path: Optional[Path] = None
    record_count: int = 0
    error: Optional[str] = None


def _iso(ms: int) -> str:
    if not ms:
        return ""
    return (
        datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def entry_to_row(entry: HistoryEntry) -> Dict[str, str]:
    item = entry.item or {}
    amount = ""
    if entry.price is not None:
        amount = f"{entry.price.amount:g}"
    return {
        "Timestamp": _iso(entry.timestamp),
        "Item Name": str(item.get("name") or ""),
        "Item Type": str(item.get("typeLine") or item.get("baseType") or ""),
        "Rarity": str(item.get("rarity") or ""),
        "Price Amount": amount,
        "Price Currency": entry.price.currency if entry.price else "",
        "Note": entry.note,
    }


def default_export_name(league: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"trade-history-export-{sanitize_league(league)}-{stamp}.csv"


def export_history_csv(
    source: Union[HistorySnapshot, HistoryStore],
    file_path: Path,
) -> ExportResult:
    """
    Write one row per entry, in store order.

    Args:
        source: Snapshot (or store) to export
        file_path: Output CSV file; parent directories are created

    Returns:
        ExportResult with success status
    """
    entries: List[HistoryEntry] = list(source.entries)
    if not entries:
        return ExportResult(success=False, error="No trade history to export")

    try:
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for entry in entries:
                writer.writerow(entry_to_row(entry))
    except OSError as e:
        logger.error(f"Failed to export to CSV: {e}")
        return ExportResult(success=False, error=str(e))

    logger.info(f"Exported {len(entries)} trade history entries to {file_path}")
    return ExportResult(success=True, file_path=file_path, record_count=len(entries))
