"""
League preference manager.

Separates "which league string is active" from "has the user ever
confirmed a league". On first run the game's default league is active but
unconfirmed, and the orchestrator refuses to fetch until the user picks one.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from core.game_version import GameVersion
from core.result import Result
from core.trade_history.models import LeaguePreference, LeagueUpdateResult

logger = logging.getLogger(__name__)

SOURCE_AUTO = "auto"
SOURCE_MANUAL = "manual"


@dataclass(frozen=True)
class LeagueOption:
    id: str
    label: str
    tag: str
    hint: str = ""


LEAGUE_OPTIONS: Dict[GameVersion, List[LeagueOption]] = {
    GameVersion.POE1: [
        LeagueOption("Keepers of the Flame", "Keepers of the Flame", "Softcore", "Default trade league"),
        LeagueOption("Hardcore Keepers of the Flame", "Hardcore Keepers of the Flame", "Hardcore",
                     "Deletes characters on death"),
        LeagueOption("Standard", "Standard", "Legacy", "Permanent league"),
        LeagueOption("Hardcore", "Hardcore", "Legacy HC", "Legacy hardcore league"),
    ],
    GameVersion.POE2: [
        LeagueOption("Rise of the Abyssal", "Rise of the Abyssal", "Softcore", "Default trade league"),
        LeagueOption("HC Rise of the Abyssal", "HC Rise of the Abyssal", "Hardcore",
                     "Deletes characters on death"),
        LeagueOption("Standard", "Standard", "Legacy", "Permanent league"),
        LeagueOption("Hardcore", "Hardcore", "Legacy HC", "Legacy hardcore league"),
    ],
}

_LEAGUE_LABELS = {
    "keepers of the flame": "Softcore • Keepers of the Flame",
    "rise of the abyssal": "Softcore • Rise of the Abyssal",
    "hardcore keepers of the flame": "Hardcore • Keepers of the Flame",
    "hc rise of the abyssal": "Hardcore • Rise of the Abyssal",
    "hardcore rise of the abyssal": "Hardcore • Rise of the Abyssal",
    "standard": "Standard",
    "hardcore": "Hardcore (Legacy)",
}


def default_league(game: GameVersion) -> str:
    return LEAGUE_OPTIONS[game][0].id


def league_options(game: GameVersion) -> List[LeagueOption]:
    return list(LEAGUE_OPTIONS[game])


def is_known_league(game: GameVersion, league: str) -> bool:
    wanted = (league or "").strip().lower()
    return any(opt.id.lower() == wanted for opt in LEAGUE_OPTIONS[game])


def format_league_label(league: str) -> str:
    """
    Display label for a league id.

    >>> format_league_label("Rise of the Abyssal")
    'Softcore • Rise of the Abyssal'
    """
    trimmed = (league or "").strip()
    if not trimmed:
        return "Unknown"
    known = _LEAGUE_LABELS.get(trimmed.lower())
    if known:
        return known
    if trimmed.lower().startswith("hardcore"):
        rest = trimmed[len("hardcore"):].strip()
        return f"Hardcore • {rest}" if rest else "Hardcore"
    return trimmed


class PreferenceBackend(Protocol):
    """Durable storage for the league preference (see persistence.py)."""

    def get(self) -> dict: ...

    def set(self, league: str, source: str) -> Result: ...


class LeaguePreferenceManager:
    """Tracks the active league and whether the user confirmed it."""

    def __init__(self, backend: PreferenceBackend, game: GameVersion = GameVersion.POE2):
        self._backend = backend
        self._game = game
        self._lock = threading.RLock()
        self._league = default_league(game)
        self._source = SOURCE_AUTO
        self._confirmed = False

    @property
    def game(self) -> GameVersion:
        return self._game

    def initialize(self) -> LeaguePreference:
        """Load the stored preference. Only a manual choice counts as confirmed."""
        stored = self._backend.get() or {}
        league = str(stored.get("league") or "").strip()
        source = SOURCE_MANUAL if stored.get("source") == SOURCE_MANUAL else SOURCE_AUTO
        with self._lock:
            if stored.get("has_stored_preference") and league:
                self._league = league
                self._source = source
                self._confirmed = source == SOURCE_MANUAL
            else:
                self._league = default_league(self._game)
                self._source = SOURCE_AUTO
                self._confirmed = False
            logger.info(
                "League preference: %s (%s, confirmed=%s)",
                self._league, self._source, self._confirmed,
            )
            return self.get()

    def get(self) -> LeaguePreference:
        with self._lock:
            return LeaguePreference(
                league=self._league,
                source=self._source,
                explicitly_confirmed=self._confirmed,
            )

    @property
    def active_league(self) -> str:
        return self._league

    @property
    def has_confirmed_league(self) -> bool:
        return self._confirmed

    def set(self, league: Optional[str], source: str = SOURCE_MANUAL) -> LeagueUpdateResult:
        """
        Change the league.

        manual: confirms and persists. auto: a soft default, not persisted;
        a league change under auto clears confirmation.
        """
        requested = (league or "").strip() or default_league(self._game)
        source = SOURCE_MANUAL if source == SOURCE_MANUAL else SOURCE_AUTO
        with self._lock:
            league_changed = requested != self._league
            source_changed = source != self._source
            self._league = requested
            self._source = source
            if source == SOURCE_MANUAL:
                self._confirmed = True
            elif league_changed:
                self._confirmed = False

        if source == SOURCE_MANUAL:
            result = self._backend.set(requested, source)
            if result.is_err():
                logger.warning("Failed to persist league preference: %s", result.error)
        if league_changed or source_changed:
            logger.info("League set to %s (%s)", requested, source)
        return LeagueUpdateResult(league_changed=league_changed, source_changed=source_changed)
