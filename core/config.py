"""
Configuration management for the trade history sync engine.
Handles league preference, sync cadence, API credentials, and persistence.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from core.constants import (
    API_TIMEOUT_CONNECT,
    API_TIMEOUT_READ,
    APP_DIR_NAME,
    AUTO_REFRESH_INITIAL_DELAY,
    FETCH_TIMEOUT_DEFAULT,
    GLOBAL_MIN_INTERVAL_MS,
    MAX_BACKUPS_PER_FILE,
)
from core.game_version import GameVersion
from core.secure_storage import decrypt_credential, encrypt_credential

logger = logging.getLogger(__name__)


class Config:
    """
    Application configuration with JSON persistence.

    Key ideas:
    - "current_game" selects PoE1 / PoE2 (endpoint and default league).
    - "trade_history" holds the user's league choice. Only manual choices are
      written here; an automatic default is never persisted.
    - "sync" holds cadence and maintenance knobs, clamped by guardrails.
    - The backing store is a JSON file on disk (user config file).
    """

    # NOTE: This structure is treated as immutable. Always use
    # _default_config_deepcopy() when you need a fresh copy of defaults.
    DEFAULT_CONFIG: Dict[str, Any] = {
        "current_game": "poe2",
        "trade_history": {
            "league": "",
            "league_source": "auto",
            # Empty = store history files next to config.json
            "data_dir": "",
        },
        "sync": {
            # GUARDRAIL: Min 60s, Max 3600s between remote fetches
            "min_interval_seconds": GLOBAL_MIN_INTERVAL_MS // 1000,
            "auto_refresh_minutes": 15,
            "initial_delay_seconds": AUTO_REFRESH_INITIAL_DELAY,
            "fetch_timeout_seconds": FETCH_TIMEOUT_DEFAULT,
            # Stop the auto-refresh chain when a league returns no rows
            "pause_on_empty": True,
            "max_backups": MAX_BACKUPS_PER_FILE,
        },
        "api": {
            "poesessid": "",  # encrypted at rest
            "user_agent": "PoE-Trade-History-Sync/1.0",
            "timeouts": {
                "connect": API_TIMEOUT_CONNECT,
                "read": API_TIMEOUT_READ,
            },
        },
    }

    def __init__(self, config_file: Optional[Path] = None) -> None:
        """
        Args:
            config_file: Optional path to config JSON file. When omitted,
                         ~/.poe_trade_history/config.json is used.
        """
        self.config_file: Path = self._resolve_config_path(config_file)
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        self.data: Dict[str, Any] = self._load()
        logger.info(f"Config loaded from {self.config_file}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_config_path(config_file: Optional[Path]) -> Path:
        if config_file is not None:
            return config_file
        return Path.home() / APP_DIR_NAME / "config.json"

    def _load(self) -> Dict[str, Any]:
        """Load configuration from JSON file, merging with defaults."""
        if not self.config_file.exists():
            logger.info("No config file found, using defaults")
            return self._default_config_deepcopy()
        try:
            with self.config_file.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to load config: {exc}. Using defaults.")
            return self._default_config_deepcopy()
        if not isinstance(raw, dict):
            logger.error("Config file is not a JSON object. Using defaults.")
            return self._default_config_deepcopy()
        return self._merge_with_defaults(raw)

    @classmethod
    def _default_config_deepcopy(cls) -> Dict[str, Any]:
        return copy.deepcopy(cls.DEFAULT_CONFIG)

    def _merge_with_defaults(self, user_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge user config with defaults so keys added in newer versions
        appear without discarding user-provided values.
        """
        merged = self._default_config_deepcopy()

        for key, value in user_config.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key].update(value)
            else:
                merged[key] = value

        return merged

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name)
        if not isinstance(section, dict):
            section = copy.deepcopy(self.DEFAULT_CONFIG.get(name, {}))
            self.data[name] = section
        return section

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> bool:
        """Persist the current configuration. Returns False on I/O failure."""
        try:
            with self.config_file.open("w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
        except OSError as exc:
            logger.error(f"Failed to save config: {exc}")
            return False
        logger.debug("Configuration saved")
        return True

    # ------------------------------------------------------------------
    # Current Game
    # ------------------------------------------------------------------

    @property
    def current_game(self) -> GameVersion:
        """Get the currently selected game version."""
        game_str = str(self.data.get("current_game", "poe2"))
        return GameVersion.from_string(game_str) or GameVersion.get_default()

    @current_game.setter
    def current_game(self, value: GameVersion) -> None:
        self.data["current_game"] = value.value
        self.save()

    # ------------------------------------------------------------------
    # Trade history league preference
    # ------------------------------------------------------------------

    @property
    def history_league(self) -> str:
        return str(self._section("trade_history").get("league") or "").strip()

    @property
    def history_league_source(self) -> str:
        source = str(self._section("trade_history").get("league_source") or "auto")
        return "manual" if source == "manual" else "auto"

    def has_stored_league(self) -> bool:
        """True when a league string has been persisted."""
        return bool(self.history_league)

    def set_history_league(self, league: str, source: str) -> bool:
        """Persist the league preference. Returns the save outcome."""
        section = self._section("trade_history")
        section["league"] = (league or "").strip()
        section["league_source"] = "manual" if source == "manual" else "auto"
        return self.save()

    @property
    def history_data_dir(self) -> Path:
        """Directory holding per-league history files."""
        raw = str(self._section("trade_history").get("data_dir") or "").strip()
        return Path(raw).expanduser() if raw else self.config_file.parent

    @history_data_dir.setter
    def history_data_dir(self, value: Path) -> None:
        self._section("trade_history")["data_dir"] = str(value)
        self.save()

    # ------------------------------------------------------------------
    # Sync settings
    # ------------------------------------------------------------------

    @property
    def min_interval_seconds(self) -> int:
        """
        Floor between two remote history fetches.

        Guardrails: Min 60s, Max 3600s. The trade history endpoint has
        tight account-wide buckets; going lower invites 429 penalties.
        """
        value = self._section("sync").get("min_interval_seconds", GLOBAL_MIN_INTERVAL_MS // 1000)
        return max(60, min(3600, int(value)))

    @min_interval_seconds.setter
    def min_interval_seconds(self, value: int) -> None:
        self._section("sync")["min_interval_seconds"] = max(60, min(3600, int(value)))
        self.save()

    @property
    def auto_refresh_minutes(self) -> int:
        """Base auto-refresh cadence. Guardrails: 5 to 120 minutes."""
        value = self._section("sync").get("auto_refresh_minutes", 15)
        return max(5, min(120, int(value)))

    @auto_refresh_minutes.setter
    def auto_refresh_minutes(self, value: int) -> None:
        self._section("sync")["auto_refresh_minutes"] = max(5, min(120, int(value)))
        self.save()

    @property
    def initial_delay_seconds(self) -> float:
        value = self._section("sync").get("initial_delay_seconds", AUTO_REFRESH_INITIAL_DELAY)
        return max(0.0, min(60.0, float(value)))

    @property
    def fetch_timeout_seconds(self) -> float:
        """Upper bound for one fetch. Guardrails: 5 to 120 seconds."""
        value = self._section("sync").get("fetch_timeout_seconds", FETCH_TIMEOUT_DEFAULT)
        return max(5.0, min(120.0, float(value)))

    @property
    def pause_on_empty(self) -> bool:
        return bool(self._section("sync").get("pause_on_empty", True))

    @pause_on_empty.setter
    def pause_on_empty(self, value: bool) -> None:
        self._section("sync")["pause_on_empty"] = bool(value)
        self.save()

    @property
    def max_backups(self) -> int:
        value = self._section("sync").get("max_backups", MAX_BACKUPS_PER_FILE)
        return max(1, min(100, int(value)))

    # ------------------------------------------------------------------
    # API Settings
    # ------------------------------------------------------------------

    @property
    def poesessid(self) -> str:
        """POESESSID session cookie (decrypted)."""
        encrypted = self._section("api").get("poesessid", "")
        if not encrypted:
            return ""
        return decrypt_credential(encrypted)

    @poesessid.setter
    def poesessid(self, value: str) -> None:
        self._section("api")["poesessid"] = encrypt_credential(value) if value else ""
        self.save()

    @property
    def user_agent(self) -> str:
        return str(self._section("api").get("user_agent") or self.DEFAULT_CONFIG["api"]["user_agent"])

    def get_api_timeouts(self) -> tuple[int, int]:
        """
        Return (connect, read) timeouts in seconds for API calls.
        """
        t = self._section("api").get("timeouts", {}) or {}
        connect = int(t.get("connect", API_TIMEOUT_CONNECT))
        read = int(t.get("read", API_TIMEOUT_READ))
        return max(1, min(120, connect)), max(1, min(300, read))

    def set_api_timeouts(self, connect: int | float, read: int | float) -> None:
        """Set API timeouts (seconds). Guardrails: connect [1..120], read [1..300]."""
        timeouts = self._section("api").setdefault("timeouts", {})
        timeouts["connect"] = int(max(1, min(120, int(connect))))
        timeouts["read"] = int(max(1, min(300, int(read))))
        self.save()

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def reset_to_defaults(self) -> None:
        """Reset all settings to defaults and persist."""
        self.data = self._default_config_deepcopy()
        self.save()
        logger.warning("Configuration reset to defaults")

    def __repr__(self) -> str:
        return f"Config(game={self.current_game}, league={self.history_league!r})"
