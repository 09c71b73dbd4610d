import faulthandler
import sys
import time
from pathlib import Path
from typing import List, Optional

import pytest

from core.config import Config
from core.game_version import GameVersion
from core.trade_history.league import LeaguePreferenceManager
from core.trade_history.orchestrator import TradeHistoryOrchestrator
from core.trade_history.persistence import ConfigLeaguePreferenceStore, HistoryFileStore
from core.trade_history.rate_limit import RateLimitGovernor
from core.trade_history.scheduler import AutoRefreshScheduler
from tests.conftest_utils import FakeClock, FakeTimerFactory


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """
    Point Path.home() at a temp dir so nothing (salt file, default config,
    logs) touches the real user profile.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))

    # Reset the credential singleton so it picks up the temp home
    import core.secure_storage as secure_storage
    monkeypatch.setattr(secure_storage, "_storage", None)
    return home


@pytest.fixture
def temp_config(tmp_path):
    """
    Provide a fresh Config with validation.

    This fixture GUARANTEES a clean config or fails loudly.
    """
    config_path = tmp_path / f"config_{id(tmp_path)}_{time.time_ns()}.json"
    config = Config(config_file=config_path)

    # VALIDATE it starts clean (will fail test if not)
    assert config.history_league == "", \
        f"FIXTURE CONTAMINATED! league={config.history_league}, file={config.config_file}"
    assert config.min_interval_seconds == 300, \
        f"FIXTURE CONTAMINATED! min_interval={config.min_interval_seconds}, file={config.config_file}"

    return config


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_timer():
    return FakeTimerFactory()


@pytest.fixture
def file_store(tmp_path):
    return HistoryFileStore(tmp_path / "history", GameVersion.POE2)


@pytest.fixture
def make_orchestrator(temp_config, file_store, fake_clock, fake_timer):
    """
    Factory building an orchestrator on temp storage with a fake clock and
    timer. league= starts it with a confirmed (manual) league; None leaves
    the first-run default in place.
    """
    created: List[TradeHistoryOrchestrator] = []

    def _make(fetch, league: Optional[str] = "Rise of the Abyssal", **kwargs) -> TradeHistoryOrchestrator:
        if league:
            temp_config.set_history_league(league, "manual")
        orchestrator = TradeHistoryOrchestrator(
            fetch,
            file_store=file_store,
            leagues=LeaguePreferenceManager(ConfigLeaguePreferenceStore(temp_config), GameVersion.POE2),
            governor=RateLimitGovernor(clock=fake_clock),
            scheduler=AutoRefreshScheduler(timer_factory=fake_timer, clock=fake_clock),
            clock=fake_clock,
            **kwargs,
        )
        orchestrator.initialize()
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.close()


def pytest_collection_modifyitems(config, items):
    """Assign tier markers based on test location."""
    for item in items:
        path = Path(str(item.fspath)).as_posix()

        if "/tests/integration/" in path:
            item.add_marker(pytest.mark.integration)
            continue

        if "/tests/unit/" in path:
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


def pytest_sessionstart(session):  # pragma: no cover - test harness init
    """Enable faulthandler for the entire test run to aid diagnosing hangs.

    When a test hangs, Python will dump stack traces of all threads to stderr.
    """
    try:
        faulthandler.enable(file=sys.stderr, all_threads=True)
    except Exception:
        pass
