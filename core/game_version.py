"""
Game version enumeration for Path of Exile 1 and Path of Exile 2.
Used to pick the trade history endpoint and the default trade league.
"""

from enum import Enum
from typing import Optional


class GameVersion(Enum):
    """
    Enum for Path of Exile game versions.

    POE1 and POE2 are separate games with different:
    - Economies (separate leagues)
    - Trade history endpoints
    """
    POE1 = "poe1"
    POE2 = "poe2"

    def __str__(self) -> str:
        """String representation"""
        return self.value

    def display_name(self) -> str:
        """Human-readable name"""
        return {
            GameVersion.POE1: "Path of Exile 1",
            GameVersion.POE2: "Path of Exile 2"
        }[self]

    @property
    def trade_path(self) -> str:
        """Trade API path segment ("trade" for PoE1, "trade2" for PoE2)."""
        return "trade2" if self is GameVersion.POE2 else "trade"

    @classmethod
    def from_string(cls, value: str) -> Optional['GameVersion']:
        """
        Create GameVersion from string.

        Args:
            value: "poe1", "poe2", "PoE1", "PoE2", etc.

        Returns:
            GameVersion enum or None if invalid
        """
        value_lower = (value or "").lower().strip()

        for version in cls:
            if version.value == value_lower:
                return version

        return None

    @classmethod
    def get_default(cls) -> 'GameVersion':
        """Get default game version (PoE2, where merchant history lives)"""
        return cls.POE2
