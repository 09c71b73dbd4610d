"""
Auto-refresh scheduler.

A small state machine (STOPPED / RUNNING) driving a chain of one-shot
timers. Each run re-arms the next timer at

    max(base_interval, next_allowed_provider() - now)

so the cadence never outpaces the rate-limit governor. The timer is an
injected factory so tests can fire callbacks without wall-clock waits.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from core.constants import AUTO_REFRESH_INITIAL_DELAY, AUTO_REFRESH_INTERVAL

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Cancellable]


def thread_timer_factory(delay_seconds: float, fn: Callable[[], None]) -> Cancellable:
    """Default timer: a daemon threading.Timer, started immediately."""
    timer = threading.Timer(delay_seconds, fn)
    timer.daemon = True
    timer.name = "TradeHistoryAutoRefresh"
    timer.start()
    return timer


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class AutoRefreshScheduler:
    """
    Calls a refresh callback on a rate-limit aware cadence.

    Usage:
        scheduler = AutoRefreshScheduler()
        scheduler.start(orchestrator.refresh, governor.next_allowed_fetch_at)
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        base_interval: float = AUTO_REFRESH_INTERVAL,
        initial_delay: float = AUTO_REFRESH_INITIAL_DELAY,
        timer_factory: Optional[TimerFactory] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            base_interval: Seconds between runs when the governor allows it
            initial_delay: Seconds before the first run after start()
            timer_factory: (delay_seconds, fn) -> object with cancel()
            clock: Returns now in ms epoch
        """
        self.base_interval = float(base_interval)
        self.initial_delay = float(initial_delay)
        self._timer_factory: TimerFactory = timer_factory or thread_timer_factory
        self._clock = clock or (lambda: int(time.time() * 1000))

        self._lock = threading.RLock()
        self._state = SchedulerState.STOPPED
        self._generation = 0
        self._timer: Optional[Cancellable] = None
        self._callback: Optional[Callable[[], Any]] = None
        self._next_allowed: Optional[Callable[[], int]] = None
        self._next_run_at: Optional[int] = None
        self.runs = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def next_run_at(self) -> Optional[int]:
        return self._next_run_at

    def start(self, callback: Callable[[], Any], next_allowed_provider: Callable[[], int]) -> None:
        """Start (or restart) the chain. A previous chain is cancelled first."""
        with self._lock:
            if self.is_running:
                logger.debug("Auto-refresh restart requested; cancelling previous chain")
                self._cancel_timer()
            self._generation += 1
            self._callback = callback
            self._next_allowed = next_allowed_provider
            self._state = SchedulerState.RUNNING
            self._arm(self.initial_delay, self._generation)
        logger.info("Auto-refresh started (first run in %.1fs)", self.initial_delay)

    def stop(self) -> None:
        """Cancel the pending timer. No-op when already stopped."""
        with self._lock:
            if not self.is_running:
                return
            self._generation += 1
            self._cancel_timer()
            self._callback = None
            self._next_allowed = None
            self._next_run_at = None
            self._state = SchedulerState.STOPPED
        logger.info("Auto-refresh stopped")

    def compute_next_delay(self) -> float:
        """Seconds until the next run: base interval or the governor's wait."""
        provider = self._next_allowed
        if provider is None:
            return self.base_interval
        try:
            wait = (int(provider()) - self._clock()) / 1000.0
        except Exception:
            logger.exception("next-allowed provider failed; using base interval")
            wait = 0.0
        return max(self.base_interval, wait)

    def status_text(self) -> str:
        if not self.is_running:
            return "Auto-refresh: off"
        if self._next_run_at is None:
            return "Auto-refresh: running"
        remaining = max(0, (self._next_run_at - self._clock()) // 1000)
        return f"Auto-refresh: next run in {remaining // 60}m {remaining % 60}s"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _arm(self, delay: float, generation: int) -> None:
        self._next_run_at = self._clock() + int(delay * 1000)
        self._timer = self._timer_factory(delay, lambda: self._fire(generation))
        logger.debug("Auto-refresh armed: %.1fs (generation %d)", delay, generation)

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self.is_running:
                logger.debug("Discarding stale auto-refresh timer (generation %d)", generation)
                return
            callback = self._callback
            self._timer = None

        if callback is not None:
            self.runs += 1
            try:
                callback()
            except Exception:
                logger.exception("Auto-refresh callback failed")

        with self._lock:
            # stop() or start() inside the callback bumps the generation
            if generation != self._generation or not self.is_running:
                return
            self._arm(self.compute_next_delay(), generation)
