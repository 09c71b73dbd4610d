"""
core.trade_history - Local, rate-limit aware sync of marketplace sales.

Keeps a durable per-league record of the account's trade history in sync
with the pathofexile.com history endpoint:
- Normalizer: raw API rows -> HistoryEntry
- Reconciler: merges batches, upgrading incomplete rows in place
- Rate-limit governor: decides when the next fetch is allowed
- Auto-refresh scheduler: timer chain on a governor-aware cadence
- League preference manager: active league vs. user-confirmed league
- Orchestrator: ties it together (single-flight refresh, persistence)

Usage:
    from core.config import Config
    from core.trade_history import TradeHistoryOrchestrator
    from data_sources.trade_history_api import TradeHistoryClient

    config = Config()
    client = TradeHistoryClient(config.poesessid, game=config.current_game)
    orchestrator = TradeHistoryOrchestrator.from_config(config, client.fetch)
    orchestrator.initialize()
    result = orchestrator.refresh()
"""
from __future__ import annotations

from core.trade_history.league import (
    LeaguePreferenceManager,
    format_league_label,
    league_options,
)
from core.trade_history.models import (
    FetchResponse,
    HistoryEntry,
    HistorySnapshot,
    HistoryStore,
    LeaguePreference,
    LeagueUpdateResult,
    NormalizedBatch,
    Price,
    ReconcileStats,
    SyncFailureReason,
    SyncResult,
)
from core.trade_history.normalizer import normalize, normalize_rows
from core.trade_history.orchestrator import TradeHistoryOrchestrator
from core.trade_history.persistence import ConfigLeaguePreferenceStore, HistoryFileStore
from core.trade_history.rate_limit import RateLimitGovernor
from core.trade_history.reconciler import reconcile
from core.trade_history.scheduler import AutoRefreshScheduler
from core.trade_history.totals import normalize_currency, totals_from_entries

__all__ = [
    "AutoRefreshScheduler",
    "ConfigLeaguePreferenceStore",
    "FetchResponse",
    "HistoryEntry",
    "HistoryFileStore",
    "HistorySnapshot",
    "HistoryStore",
    "LeaguePreference",
    "LeaguePreferenceManager",
    "LeagueUpdateResult",
    "NormalizedBatch",
    "Price",
    "RateLimitGovernor",
    "ReconcileStats",
    "SyncFailureReason",
    "SyncResult",
    "TradeHistoryOrchestrator",
    "format_league_label",
    "league_options",
    "normalize",
    "normalize_currency",
    "normalize_rows",
    "reconcile",
    "totals_from_entries",
]
