"""
Data model for the trade history sync engine.

Everything past the normalizer boundary works with these types; raw API rows
never leak further than core.trade_history.normalizer.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

_ITEM_NAME_FIELDS = ("name", "typeLine", "baseType")


@dataclass(frozen=True)
class Price:
    """Sale price as reported by the trade site."""
    amount: float
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency}


@dataclass(frozen=True)
class HistoryEntry:
    """
    One normalized sale.

    item_id may be empty on degraded rows; timestamp is ms epoch (0 when
    unknown). An entry without usable item detail is kept for its price
    until a complete version of the same trade arrives.
    """
    item_id: str = ""
    timestamp: int = 0
    price: Optional[Price] = None
    item: Optional[Dict[str, Any]] = None
    note: str = ""

    @property
    def display_name(self) -> str:
        """First non-empty of name / typeLine / baseType, else ""."""
        if not isinstance(self.item, Mapping):
            return ""
        for key in _ITEM_NAME_FIELDS:
            value = self.item.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    @property
    def is_complete(self) -> bool:
        return bool(self.display_name)

    @property
    def dedup_key(self) -> str:
        if self.item_id:
            return f"{self.item_id}##{self.timestamp}"
        return f"{self.display_name}##{self.timestamp}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the on-disk row shape."""
        return {
            "time": self.timestamp,
            "item_id": self.item_id,
            "price": self.price.to_dict() if self.price else None,
            "item": copy.deepcopy(self.item) if self.item is not None else None,
            "note": self.note,
        }


@dataclass
class HistoryStore:
    """
    Sales for one league plus derived currency totals.

    Owned by the orchestrator. Readers get a HistorySnapshot instead.
    """
    league: str
    entries: List[HistoryEntry] = field(default_factory=list)
    totals: Dict[str, float] = field(default_factory=dict)
    last_sync: int = 0
    last_fetch_at: int = 0
    item_ids_backfilled: bool = False

    def snapshot(self) -> "HistorySnapshot":
        return HistorySnapshot(
            league=self.league,
            entries=tuple(self.entries),
            totals=dict(self.totals),
            last_sync=self.last_sync,
            last_fetch_at=self.last_fetch_at,
        )


@dataclass(frozen=True)
class HistorySnapshot:
    """Read-only copy of a HistoryStore handed to consumers."""
    league: str
    entries: tuple
    totals: Dict[str, float]
    last_sync: int
    last_fetch_at: int

    @property
    def entry_count(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class NormalizedBatch:
    """Result of normalizing one fetched page of rows."""
    entries: List[HistoryEntry]
    malformed: int = 0


@dataclass(frozen=True)
class ReconcileStats:
    added: int = 0
    upgraded: int = 0
    incomplete_seen: int = 0
    backfilled: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.upgraded or self.backfilled)


class SyncFailureReason(str, Enum):
    """Why a refresh did not merge new data."""
    NOT_CONFIRMED = "not-confirmed"
    RATE_LIMITED = "rate-limited"
    AUTH_REQUIRED = "auth"
    EMPTY_RESULT = "empty"
    NETWORK_FAILURE = "network"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of Orchestrator.refresh().

    ok=True carries added/upgraded counts; ok=False carries a reason.
    A soft refresh blocked by the governor is reported as rate-limited
    with cached=True and the time the next fetch becomes allowed.
    """
    ok: bool
    added: int = 0
    upgraded: int = 0
    reason: Optional[SyncFailureReason] = None
    cached: bool = False
    next_allowed_at: Optional[int] = None
    message: str = ""

    @classmethod
    def success(cls, added: int, upgraded: int) -> "SyncResult":
        return cls(ok=True, added=added, upgraded=upgraded)

    @classmethod
    def failure(
        cls,
        reason: SyncFailureReason,
        *,
        cached: bool = False,
        next_allowed_at: Optional[int] = None,
        message: str = "",
    ) -> "SyncResult":
        return cls(
            ok=False,
            reason=reason,
            cached=cached,
            next_allowed_at=next_allowed_at,
            message=message,
        )


@dataclass
class FetchResponse:
    """
    What a remote fetch capability returns.

    Fetch callables may also return a plain mapping using the wire names
    (rows, rateLimited, retryAfter, lastFetchAt); see from_mapping().
    """
    ok: bool
    status: Optional[int] = None
    rows: List[Any] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    error: str = ""
    rate_limited: bool = False
    retry_after: Optional[float] = None
    last_fetch_at: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FetchResponse":
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return None

        rows = pick("rows")
        headers = pick("headers") or {}
        status = pick("status")
        retry_after = pick("retry_after", "retryAfter")
        last_fetch_at = pick("last_fetch_at", "lastFetchAt")
        return cls(
            ok=bool(data.get("ok")),
            status=int(status) if isinstance(status, (int, float)) else None,
            rows=list(rows) if isinstance(rows, (list, tuple)) else [],
            headers={str(k): str(v) for k, v in dict(headers).items()},
            error=str(pick("error") or ""),
            rate_limited=bool(pick("rate_limited", "rateLimited")),
            retry_after=float(retry_after) if isinstance(retry_after, (int, float)) else None,
            last_fetch_at=int(last_fetch_at) if isinstance(last_fetch_at, (int, float)) else None,
        )


@dataclass(frozen=True)
class LeaguePreference:
    league: str
    source: str  # "auto" | "manual"
    explicitly_confirmed: bool


@dataclass(frozen=True)
class LeagueUpdateResult:
    league_changed: bool
    source_changed: bool
