"""
Durable storage for trade history.

- HistoryFileStore: one JSON file per game + league
  (trade-history-<game>-<sanitized league>.json), written atomically.
- ConfigLeaguePreferenceStore: the league preference, kept in config.json.

File shape:
    {"entries": [{time, item_id, price: {amount, currency}, item, note}],
     "totals": {...}, "lastSync": ms, "lastFetchAt": ms, "league": str}
"""
from __future__ import annotations

import json
import logging
import math
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping

from core.config import Config
from core.constants import HISTORY_FILE_PREFIX
from core.game_version import GameVersion
from core.result import Err, Ok, Result
from core.trade_history.league import league_options
from core.trade_history.models import HistoryEntry, HistoryStore
from core.trade_history.normalizer import normalize
from core.trade_history.totals import totals_from_entries

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_league(league: str) -> str:
    """'Rise of the Abyssal' -> 'Rise_of_the_Abyssal'"""
    return _UNSAFE_CHARS.sub("_", (league or "").strip()) or "default"


def history_filename(game: GameVersion, league: str) -> str:
    return f"{HISTORY_FILE_PREFIX}-{game.value}-{sanitize_league(league)}.json"


def league_from_filename(path: Path) -> str:
    """
    Best guess at the league a history file belongs to.

    Sanitizing is lossy, so the name is matched against the listed leagues
    first; otherwise underscores are read back as spaces.
    """
    stem = Path(path).stem
    prefix = f"{HISTORY_FILE_PREFIX}-"
    if stem.startswith(prefix):
        stem = stem[len(prefix):]
    game_id, _, sanitized = stem.partition("-")
    game = GameVersion.from_string(game_id) if sanitized else None
    if game is None:
        sanitized = stem
    for candidate in ([game] if game else list(GameVersion)):
        for option in league_options(candidate):
            if sanitize_league(option.id) == sanitized:
                return option.id
    return sanitized.replace("_", " ").strip()


def entry_from_stored(row: Mapping[str, Any]) -> HistoryEntry:
    """
    Rebuild an entry from its stored row.

    Stored times are already canonical ms and are taken verbatim; anything
    else goes through the normalizer so older row shapes still load.
    """
    entry = normalize(row)
    stored_time = row.get("time")
    if isinstance(stored_time, int) and not isinstance(stored_time, bool) and stored_time >= 0:
        entry = replace(entry, timestamp=stored_time)
    return entry


def store_to_dict(store: HistoryStore) -> Dict[str, Any]:
    return {
        "entries": [entry.to_dict() for entry in store.entries],
        "totals": dict(store.totals),
        "lastSync": store.last_sync,
        "lastFetchAt": store.last_fetch_at,
        "league": store.league,
        "itemIdsBackfilled": store.item_ids_backfilled,
    }


def store_from_dict(data: Mapping[str, Any], league: str) -> HistoryStore:
    """Parse a stored file. Totals are re-derived, never trusted from disk."""
    rows = data.get("entries")
    entries: List[HistoryEntry] = []
    skipped = 0
    if isinstance(rows, list):
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                skipped += 1
                continue
            try:
                entries.append(entry_from_stored(row))
            except Exception as exc:  # one bad row must not make the league unreadable
                logger.warning("Skipping unreadable stored row %d for %s: %s", index, league, exc)
                skipped += 1
    if skipped:
        logger.warning("Skipped %d unreadable stored rows for %s", skipped, league)
    return HistoryStore(
        league=league,
        entries=entries,
        totals=totals_from_entries(entries),
        last_sync=_as_ms(data.get("lastSync")),
        last_fetch_at=_as_ms(data.get("lastFetchAt")),
        item_ids_backfilled=bool(data.get("itemIdsBackfilled", False)),
    )


def _as_ms(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 < value < math.inf:
        return int(value)
    return 0


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON via a temp file + os.replace so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(tmp, path)


class HistoryFileStore:
    """
    Loads and saves HistoryStores as JSON files under data_dir.

    Usage:
        files = HistoryFileStore(config.history_data_dir, GameVersion.POE2)
        store = files.load("Rise of the Abyssal")
        files.save(store, store.league)
    """

    def __init__(self, data_dir: Path, game: GameVersion = GameVersion.POE2):
        self.data_dir = Path(data_dir)
        self.game = game

    def path_for(self, league: str) -> Path:
        return self.data_dir / history_filename(self.game, league)

    def load(self, league: str) -> HistoryStore:
        """Load a league's store; a missing or unreadable file yields an empty one."""
        path = self.path_for(league)
        if not path.exists():
            logger.debug("No history file for %s", league)
            return HistoryStore(league=league)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to load trade history {path}: {exc}")
            return HistoryStore(league=league)
        if not isinstance(data, dict):
            logger.error(f"Trade history file {path} is not a JSON object")
            return HistoryStore(league=league)
        store = store_from_dict(data, league)
        logger.info(f"Loaded {len(store.entries)} history entries for {league}")
        return store

    def save(self, store: HistoryStore, league: str) -> Result[Path, str]:
        path = self.path_for(league)
        try:
            write_json_atomic(path, store_to_dict(store))
        except (OSError, TypeError, ValueError) as exc:
            logger.error(f"Failed to save trade history {path}: {exc}")
            return Err(str(exc))
        logger.debug("Saved %d entries to %s", len(store.entries), path)
        return Ok(path)

    def list_files(self) -> List[Path]:
        """History files for this game, sorted by name."""
        if not self.data_dir.exists():
            return []
        pattern = f"{HISTORY_FILE_PREFIX}-{self.game.value}-*.json"
        return sorted(self.data_dir.glob(pattern))


class ConfigLeaguePreferenceStore:
    """League preference persistence backed by the "trade_history" config section."""

    def __init__(self, config: Config):
        self._config = config

    def get(self) -> Dict[str, Any]:
        return {
            "league": self._config.history_league,
            "source": self._config.history_league_source,
            "has_stored_preference": self._config.has_stored_league(),
        }

    def set(self, league: str, source: str) -> Result[str, str]:
        if not self._config.set_history_league(league, source):
            return Err(f"could not write {self._config.config_file}")
        return Ok(league)
