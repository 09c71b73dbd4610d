"""
Rate-limit governor for the trade history endpoint.

Tracks the locally enforced minimum interval between fetches, server-side
cool-downs (429 / Retry-After) and the bucket budgets advertised in the
X-Rate-Limit-* response headers. The governor only answers "when may the
next fetch happen"; it never sleeps and never performs I/O.

Header format (GGG):
    x-rate-limit-account:        "5:60:60,10:600:120,15:10800:3600"
    x-rate-limit-account-state:  "4:60:55,9:600:115,12:10800:3595"
    retry-after:                 "30"
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional

from core.constants import (
    BUCKET_RESET_MARGIN_MS,
    GLOBAL_MIN_INTERVAL_MS,
    RETRY_AFTER_DEFAULT_SECONDS,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitBucket:
    """One advertised bucket joined with its current usage."""
    limit: int
    period: int  # seconds
    penalty: int = 0
    used: int = 0
    reset_in: int = 0  # seconds until the bucket drains

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def is_exhausted(self) -> bool:
        return self.limit > 0 and self.remaining <= 1


@dataclass(frozen=True)
class RateLimitBudget:
    """Parsed X-Rate-Limit-* headers from the last response."""
    scope: str  # "account" or "ip"
    buckets: List[RateLimitBucket] = field(default_factory=list)

    @property
    def sustainable_interval_ms(self) -> int:
        """Slowest pace (ms per request) any bucket allows in steady state."""
        intervals = [
            math.ceil(b.period * 1000 / b.limit) for b in self.buckets if b.limit > 0 and b.period > 0
        ]
        return max(intervals, default=0)


@dataclass
class RateLimitState:
    global_min_interval_ms: int = GLOBAL_MIN_INTERVAL_MS
    remote_last_fetch_at: int = 0
    rate_limit_until: int = 0
    last_budget: Optional[RateLimitBudget] = None


def _split_triples(value: str) -> List[List[int]]:
    triples = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        triples.append([int(float(x or 0)) for x in part.split(":")])
    return triples


def parse_rate_limit_headers(headers: Mapping[str, str]) -> Optional[RateLimitBudget]:
    """
    Parse the account (preferred) or ip rule/state headers.

    Returns None when the headers are absent or malformed.
    """
    lowered = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
    for scope in ("account", "ip"):
        rules_raw = lowered.get(f"x-rate-limit-{scope}", "").strip()
        if not rules_raw:
            continue
        state_raw = lowered.get(f"x-rate-limit-{scope}-state", "").strip()
        try:
            rules = _split_triples(rules_raw)
            states = _split_triples(state_raw) if state_raw else []
        except (ValueError, OverflowError):
            logger.debug("Malformed rate limit headers: %r / %r", rules_raw, state_raw)
            return None
        buckets = []
        for i, rule in enumerate(rules):
            if len(rule) < 2:
                return None
            state = states[i] if i < len(states) else []
            buckets.append(
                RateLimitBucket(
                    limit=rule[0],
                    period=rule[1],
                    penalty=rule[2] if len(rule) > 2 else 0,
                    used=state[0] if state else 0,
                    reset_in=state[2] if len(state) > 2 else 0,
                )
            )
        return RateLimitBudget(scope=scope, buckets=buckets) if buckets else None
    return None


def parse_retry_after(value: object) -> Optional[float]:
    """Retry-After value in seconds ("30", "30,60", 30) or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = float(value)
        else:
            seconds = float(str(value).split(",")[0].strip())
    except (ValueError, OverflowError):
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


class RateLimitGovernor:
    """
    Decides when the next remote history fetch is permitted.

        next_allowed = max(remote_last_fetch_at + min_interval, rate_limit_until)

    rate_limit_until only moves forward. Thread-safe.
    """

    def __init__(
        self,
        min_interval_ms: int = GLOBAL_MIN_INTERVAL_MS,
        clock: Optional[Clock] = None,
    ):
        self._floor_ms = int(min_interval_ms)
        self._clock: Clock = clock or now_ms
        self._state = RateLimitState(global_min_interval_ms=self._floor_ms)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> RateLimitState:
        """Copy of the current state."""
        with self._lock:
            s = self._state
            return RateLimitState(
                global_min_interval_ms=s.global_min_interval_ms,
                remote_last_fetch_at=s.remote_last_fetch_at,
                rate_limit_until=s.rate_limit_until,
                last_budget=s.last_budget,
            )

    @property
    def min_interval_floor_ms(self) -> int:
        return self._floor_ms

    def next_allowed_fetch_at(self) -> int:
        with self._lock:
            s = self._state
            return max(s.remote_last_fetch_at + s.global_min_interval_ms, s.rate_limit_until)

    def can_fetch(self) -> bool:
        return self._clock() >= self.next_allowed_fetch_at()

    def wait_seconds(self) -> float:
        return max(0.0, (self.next_allowed_fetch_at() - self._clock()) / 1000.0)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _extend_until(self, until_ms: int) -> None:
        if until_ms > self._state.rate_limit_until:
            self._state.rate_limit_until = until_ms

    def on_server_rate_limited(self, retry_after_seconds: Optional[float] = None) -> int:
        """
        Record a server-side rate limit. A missing or invalid retry_after
        falls back to 30 seconds. Returns the new rate_limit_until.
        """
        seconds = parse_retry_after(retry_after_seconds)
        if seconds is None:
            seconds = RETRY_AFTER_DEFAULT_SECONDS
        with self._lock:
            self._extend_until(self._clock() + int(seconds * 1000))
            until = self._state.rate_limit_until
        logger.warning("Trade history rate limited; next fetch not before %s", until)
        return until

    def on_response(
        self,
        headers: Optional[Mapping[str, str]],
        status: Optional[int] = None,
        retry_after_seconds: Optional[float] = None,
    ) -> None:
        """Feed a response's headers and status into the governor."""
        headers = headers or {}
        lowered = {str(k).lower(): v for k, v in headers.items()}
        try:
            budget = parse_rate_limit_headers(lowered)
        except Exception as exc:  # header garbage must never break a sync
            logger.debug("Ignoring unparsable rate limit headers: %s", exc)
            budget = None

        with self._lock:
            now = self._clock()
            self._state.last_budget = budget
            if budget is not None:
                for bucket in budget.buckets:
                    if bucket.is_exhausted:
                        reset_ms = (bucket.reset_in or 1) * 1000 + BUCKET_RESET_MARGIN_MS
                        self._extend_until(now + reset_ms)
                self._state.global_min_interval_ms = max(
                    self._floor_ms, budget.sustainable_interval_ms
                )

        retry_after = parse_retry_after(retry_after_seconds)
        if retry_after is None:
            retry_after = parse_retry_after(lowered.get("retry-after"))
        if retry_after is not None or status == 429:
            self.on_server_rate_limited(retry_after)

    def record_fetch(self, at_ms: Optional[int] = None) -> None:
        """Mark a completed remote fetch. Never moves backwards."""
        at = self._clock() if at_ms is None else int(at_ms)
        with self._lock:
            if at > self._state.remote_last_fetch_at:
                self._state.remote_last_fetch_at = at

    def restore(self, last_fetch_at: int) -> None:
        """Adopt the last fetch time of a newly activated store."""
        with self._lock:
            self._state.remote_last_fetch_at = max(0, int(last_fetch_at or 0))

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def status_text(self) -> str:
        with self._lock:
            now = self._clock()
            s = self._state
            parts = []
            wait_ms = max(s.remote_last_fetch_at + s.global_min_interval_ms, s.rate_limit_until) - now
            if s.rate_limit_until > now:
                parts.append(f"Rate limited for {math.ceil((s.rate_limit_until - now) / 1000)}s")
            if wait_ms > 0:
                parts.append(f"Next fetch in {math.ceil(wait_ms / 1000)}s")
            else:
                parts.append("Ready")
            if s.last_budget is not None:
                buckets = ", ".join(
                    f"{b.used}/{b.limit} per {b.period}s" for b in s.last_budget.buckets
                )
                parts.append(f"{s.last_budget.scope}: {buckets}")
            return " | ".join(parts)
