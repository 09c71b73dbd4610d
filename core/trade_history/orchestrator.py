"""Sync orchestrator for trade history."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from core.config import Config
from core.constants import FETCH_TIMEOUT_DEFAULT
from core.trade_history.league import LeaguePreferenceManager, SOURCE_MANUAL
from core.trade_history.models import (
    FetchResponse,
    HistorySnapshot,
    HistoryStore,
    LeaguePreference,
    LeagueUpdateResult,
    SyncFailureReason,
    SyncResult,
)
from core.trade_history.normalizer import normalize_rows
from core.trade_history.persistence import ConfigLeaguePreferenceStore, HistoryFileStore
from core.trade_history.rate_limit import Clock, RateLimitGovernor, now_ms
from core.trade_history.reconciler import reconcile
from core.trade_history.scheduler import AutoRefreshScheduler, TimerFactory
from core.trade_history.totals import totals_from_entries

logger = logging.getLogger(__name__)

FetchCallable = Callable[[str], Union[FetchResponse, Mapping[str, Any]]]
UpdateListener = Callable[[HistorySnapshot], None]

AUTH_STATUSES = frozenset({401, 403})


class TradeHistoryOrchestrator:
    """
    Single writer of the per-league history stores.

    Methods:
    - initialize(): load league preference and the active store
    - refresh(): one sync cycle (single-flight; concurrent callers share it)
    - set_league(): switch league; each league keeps its own store
    - start_auto_refresh() / stop_auto_refresh()
    - get_snapshot() / add_update_listener(): read side for consumers
    - status(): current state for display
    """

    def __init__(
        self,
        fetch: FetchCallable,
        *,
        file_store: HistoryFileStore,
        leagues: LeaguePreferenceManager,
        governor: Optional[RateLimitGovernor] = None,
        scheduler: Optional[AutoRefreshScheduler] = None,
        clock: Optional[Clock] = None,
        fetch_timeout: float = FETCH_TIMEOUT_DEFAULT,
        pause_on_empty: bool = True,
        logger_override: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger_override or logger
        self._fetch = fetch
        self._files = file_store
        self._leagues = leagues
        self._clock: Clock = clock or now_ms
        self.governor = governor or RateLimitGovernor(clock=self._clock)
        self.scheduler = scheduler or AutoRefreshScheduler(clock=self._clock)
        self.fetch_timeout = float(fetch_timeout)
        self.pause_on_empty = pause_on_empty

        self._store_lock = threading.RLock()
        self._stores: Dict[str, HistoryStore] = {}
        self._active: HistoryStore = HistoryStore(league=leagues.active_league)
        self._pending_saves: Dict[str, HistoryStore] = {}

        self._flight_lock = threading.Lock()
        self._inflight: Optional[Future] = None

        self._listeners: List[UpdateListener] = []
        self._listener_lock = threading.Lock()

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="trade-history-fetch")
        self._last_result: Optional[SyncResult] = None
        self._counters = {"refreshes": 0, "network_calls": 0, "joined": 0}

    @classmethod
    def from_config(
        cls,
        config: Config,
        fetch: FetchCallable,
        *,
        timer_factory: Optional[TimerFactory] = None,
        clock: Optional[Clock] = None,
    ) -> "TradeHistoryOrchestrator":
        """Wire an orchestrator from the user's config."""
        clock = clock or now_ms
        game = config.current_game
        return cls(
            fetch,
            file_store=HistoryFileStore(config.history_data_dir, game),
            leagues=LeaguePreferenceManager(ConfigLeaguePreferenceStore(config), game),
            governor=RateLimitGovernor(config.min_interval_seconds * 1000, clock=clock),
            scheduler=AutoRefreshScheduler(
                base_interval=config.auto_refresh_minutes * 60,
                initial_delay=config.initial_delay_seconds,
                timer_factory=timer_factory,
                clock=clock,
            ),
            clock=clock,
            fetch_timeout=config.fetch_timeout_seconds,
            pause_on_empty=config.pause_on_empty,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> LeaguePreference:
        preference = self._leagues.initialize()
        self._activate(preference.league)
        return preference

    def close(self) -> None:
        self.stop_auto_refresh()
        self._flush_pending_saves()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.logger.info("Trade history orchestrator closed")

    # ------------------------------------------------------------------
    # League handling
    # ------------------------------------------------------------------

    @property
    def league_preference(self) -> LeaguePreference:
        return self._leagues.get()

    def set_league(self, league: str, source: str = SOURCE_MANUAL) -> LeagueUpdateResult:
        """
        Change the target league. The new league gets its own store (loaded
        from disk on first use); switching back resumes the previous one.
        """
        result = self._leagues.set(league, source)
        if result.league_changed:
            self._activate(self._leagues.active_league)
        return result

    def _activate(self, league: str) -> HistoryStore:
        with self._store_lock:
            store = self._stores.get(league)
            if store is None:
                store = self._files.load(league)
                self._stores[league] = store
            self._active = store
            # rate_limit_until is account-wide and survives the switch
            self.governor.restore(store.last_fetch_at)
        self.logger.info("Active trade history league: %s (%d entries)", league, len(store.entries))
        return store

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_snapshot(self) -> HistorySnapshot:
        with self._store_lock:
            return self._active.snapshot()

    def add_update_listener(self, callback: UpdateListener) -> None:
        with self._listener_lock:
            if callback not in self._listeners:
                self._listeners.append(callback)

    def remove_update_listener(self, callback: UpdateListener) -> None:
        with self._listener_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, snapshot: HistorySnapshot) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(snapshot)
            except Exception:
                self.logger.exception("Trade history update listener failed")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, origin: str = "manual") -> SyncResult:
        """
        Run one sync cycle. A call made while another cycle is in progress
        waits for it and returns the same SyncResult.
        """
        with self._flight_lock:
            inflight = self._inflight
            if inflight is None:
                inflight = self._inflight = Future()
                leader = True
            else:
                self._counters["joined"] += 1
                leader = False

        if not leader:
            self.logger.debug("Refresh (%s) joined the one in progress", origin)
            return inflight.result()

        self._counters["refreshes"] += 1
        updates: List[HistorySnapshot] = []
        try:
            result = self._run_refresh(origin, updates)
        except Exception as exc:
            self.logger.exception("Trade history refresh failed")
            result = SyncResult.failure(SyncFailureReason.NETWORK_FAILURE, message=str(exc))
        finally:
            with self._flight_lock:
                self._inflight = None
        self._last_result = result
        inflight.set_result(result)
        # listeners run after the flight is resolved so they may call refresh()
        for snapshot in updates:
            self._notify(snapshot)
        return result

    def _run_refresh(self, origin: str, updates: List[HistorySnapshot]) -> SyncResult:
        preference = self._leagues.get()
        if not preference.explicitly_confirmed:
            self.logger.info("Refresh skipped: league %r not confirmed", preference.league)
            return SyncResult.failure(
                SyncFailureReason.NOT_CONFIRMED, message="Select a league before syncing"
            )

        self._flush_pending_saves()

        with self._store_lock:
            store = self._active
        now = self._clock()
        next_allowed = self.governor.next_allowed_fetch_at()
        if now < next_allowed:
            with self._store_lock:
                store.totals = totals_from_entries(store.entries)
            self.logger.debug("Soft refresh (%s): next fetch allowed at %d", origin, next_allowed)
            return SyncResult.failure(
                SyncFailureReason.RATE_LIMITED, cached=True, next_allowed_at=next_allowed
            )

        league = store.league
        self.logger.info("Fetching trade history for %s (%s)", league, origin)
        try:
            response = self._fetch_with_timeout(league)
        except FuturesTimeout:
            self.logger.warning("Trade history fetch timed out after %.0fs", self.fetch_timeout)
            return SyncResult.failure(SyncFailureReason.NETWORK_FAILURE, message="timed out")
        except Exception as exc:
            self.logger.warning("Trade history fetch failed: %s", exc)
            return SyncResult.failure(SyncFailureReason.NETWORK_FAILURE, message=str(exc))

        return self._handle_response(store, response, now, updates)

    def _fetch_with_timeout(self, league: str) -> FetchResponse:
        self._counters["network_calls"] += 1
        future = self._executor.submit(self._fetch, league)
        try:
            raw = future.result(timeout=self.fetch_timeout)
        except FuturesTimeout:
            # the worker may still finish; its answer is dropped
            future.cancel()
            raise
        if isinstance(raw, FetchResponse):
            return raw
        if isinstance(raw, Mapping):
            return FetchResponse.from_mapping(raw)
        raise TypeError(f"fetch returned {type(raw).__name__}")

    def _handle_response(
        self, store: HistoryStore, response: FetchResponse, now: int, updates: List[HistorySnapshot]
    ) -> SyncResult:
        if response.rate_limited or response.status == 429:
            self.governor.on_response(response.headers, response.status)
            self.governor.on_server_rate_limited(response.retry_after)
            self.governor.record_fetch(now)
            return SyncResult.failure(
                SyncFailureReason.RATE_LIMITED,
                next_allowed_at=self.governor.next_allowed_fetch_at(),
                message=response.error,
            )

        if not response.ok:
            if response.headers:
                self.governor.on_response(response.headers, response.status)
            if response.status in AUTH_STATUSES:
                self.logger.warning("Trade history: session rejected (HTTP %s)", response.status)
                return SyncResult.failure(
                    SyncFailureReason.AUTH_REQUIRED, message=response.error or "Login required"
                )
            self.logger.warning(
                "Trade history fetch failed: HTTP %s %s", response.status, response.error
            )
            return SyncResult.failure(SyncFailureReason.NETWORK_FAILURE, message=response.error)

        self.governor.on_response(response.headers, response.status)
        fetched_at = response.last_fetch_at or now
        self.governor.record_fetch(fetched_at)

        if not response.rows:
            self.logger.info("Trade history for %s is empty; check the league selection", store.league)
            return SyncResult.failure(
                SyncFailureReason.EMPTY_RESULT,
                message=f"No trades found for {store.league}",
            )

        batch = normalize_rows(response.rows)
        with self._store_lock:
            stats = reconcile(store, batch.entries, now)
            store.last_fetch_at = max(store.last_fetch_at, fetched_at)
            store.last_sync = max(store.last_sync, now)
            snapshot = store.snapshot()
            is_active = store is self._active

        if self._persist(store):
            self._flush_pending_saves()
        self.logger.info(
            "Trade history %s: %d rows, +%d new, %d upgraded, %d malformed",
            store.league, len(response.rows), stats.added, stats.upgraded, batch.malformed,
        )
        if is_active:
            updates.append(snapshot)
        return SyncResult.success(stats.added, stats.upgraded)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, store: HistoryStore) -> bool:
        with self._store_lock:
            result = self._files.save(store, store.league)
            if result.is_ok():
                self._pending_saves.pop(store.league, None)
                return True
            self._pending_saves[store.league] = store
        self.logger.warning("Trade history save for %s deferred: %s", store.league, result.error)
        return False

    def _flush_pending_saves(self) -> None:
        with self._store_lock:
            pending = list(self._pending_saves.values())
        for store in pending:
            self.logger.info("Retrying trade history save for %s", store.league)
            self._persist(store)

    @property
    def pending_saves(self) -> List[str]:
        with self._store_lock:
            return sorted(self._pending_saves)

    # ------------------------------------------------------------------
    # Auto refresh
    # ------------------------------------------------------------------

    def start_auto_refresh(self) -> None:
        self.scheduler.start(self._auto_refresh_tick, self.governor.next_allowed_fetch_at)

    def stop_auto_refresh(self) -> None:
        self.scheduler.stop()

    def _auto_refresh_tick(self) -> None:
        result = self.refresh(origin="auto")
        if self.pause_on_empty and result.reason is SyncFailureReason.EMPTY_RESULT:
            self.logger.info("Auto-refresh paused: no trades for the selected league")
            self.scheduler.stop()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    def stats(self) -> Dict[str, int]:
        return dict(self._counters)

    def status(self) -> Dict[str, Any]:
        preference = self._leagues.get()
        with self._store_lock:
            store = self._active
            entry_count = len(store.entries)
            totals = dict(store.totals)
            last_sync = store.last_sync
        last = self._last_result
        return {
            "league": preference.league,
            "league_source": preference.source,
            "confirmed": preference.explicitly_confirmed,
            "entries": entry_count,
            "totals": totals,
            "last_sync": last_sync,
            "next_allowed_at": self.governor.next_allowed_fetch_at(),
            "can_fetch": self.governor.can_fetch(),
            "next_fetch_in": self.governor.wait_seconds(),
            "rate_limit": self.governor.status_text(),
            "auto_refresh": self.scheduler.status_text(),
            "pending_saves": self.pending_saves,
            "last_result": None if last is None else (
                "ok" if last.ok else str(last.reason)
            ),
        }
