"""Tests for core/trade_history/rate_limit.py."""
from __future__ import annotations

import pytest

from core.trade_history.rate_limit import (
    RateLimitGovernor,
    parse_rate_limit_headers,
    parse_retry_after,
)
from tests.conftest_utils import START_MS, FakeClock

pytestmark = pytest.mark.unit

FLOOR_MS = 300_000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    return RateLimitGovernor(FLOOR_MS, clock=clock)


class TestNextAllowed:

    def test_fresh_governor_allows_immediately(self, governor):
        assert governor.next_allowed_fetch_at() == FLOOR_MS
        assert governor.can_fetch()

    def test_floor_after_fetch(self, governor, clock):
        governor.record_fetch()

        assert governor.next_allowed_fetch_at() == START_MS + FLOOR_MS
        assert not governor.can_fetch()
        clock.advance(300)
        assert governor.can_fetch()

    def test_record_fetch_never_moves_backwards(self, governor):
        governor.record_fetch(START_MS)
        governor.record_fetch(START_MS - 10_000)

        assert governor.state.remote_last_fetch_at == START_MS

    def test_restore_replaces_last_fetch(self, governor):
        governor.record_fetch(START_MS)
        governor.restore(0)

        assert governor.state.remote_last_fetch_at == 0


class TestServerRateLimited:

    def test_retry_after_sets_until(self, governor):
        governor.on_server_rate_limited(120)

        assert governor.state.rate_limit_until == START_MS + 120_000
        assert governor.next_allowed_fetch_at() >= START_MS + 120_000

    @pytest.mark.parametrize("value", [None, 0, -3, "soon", float("nan")])
    def test_missing_retry_after_defaults_to_30s(self, governor, value):
        governor.on_server_rate_limited(value)

        assert governor.state.rate_limit_until == START_MS + 30_000

    def test_until_is_monotonic(self, governor, clock):
        governor.on_server_rate_limited(120)
        first = governor.state.rate_limit_until

        for seconds in (120, 60, 1):
            governor.on_server_rate_limited(seconds)
            assert governor.state.rate_limit_until == first

        clock.advance(10)
        governor.on_server_rate_limited(100)
        assert governor.state.rate_limit_until == first

    def test_short_retry_after_does_not_beat_floor(self, governor):
        governor.record_fetch()
        governor.on_server_rate_limited(5)

        assert governor.next_allowed_fetch_at() == START_MS + FLOOR_MS


class TestOnResponse:

    def test_parses_account_buckets(self, governor):
        governor.on_response({
            "X-Rate-Limit-Account": "5:60:60,10:600:120",
            "X-Rate-Limit-Account-State": "1:60:0,2:600:0",
        }, 200)

        budget = governor.state.last_budget
        assert budget is not None
        assert budget.scope == "account"
        assert [(b.limit, b.period, b.used) for b in budget.buckets] == [(5, 60, 1), (10, 600, 2)]
        assert governor.state.rate_limit_until == 0

    def test_nearly_full_bucket_cools_down_until_reset(self, governor):
        governor.on_response({
            "x-rate-limit-account": "5:60:60",
            "x-rate-limit-account-state": "4:60:55",
        }, 200)

        assert governor.state.rate_limit_until == START_MS + 55_000 + 500

    def test_full_bucket_without_reset_waits_one_second(self, governor):
        governor.on_response({
            "x-rate-limit-ip": "5:10:60",
            "x-rate-limit-ip-state": "5:10:0",
        }, 200)

        assert governor.state.rate_limit_until == START_MS + 1_000 + 500

    def test_buckets_widen_min_interval(self, governor):
        governor.on_response({
            "x-rate-limit-account": "5:60:60,10:600:120,15:10800:3600",
            "x-rate-limit-account-state": "0:60:0,0:600:0,0:10800:0",
        }, 200)

        # 10800s / 15 requests = one request per 720s
        assert governor.state.global_min_interval_ms == 720_000

    def test_widening_never_goes_below_floor(self, governor):
        governor.on_response({"x-rate-limit-account": "100:60:60"}, 200)

        assert governor.state.global_min_interval_ms == FLOOR_MS

    @pytest.mark.parametrize("headers", [
        {},
        None,
        {"x-rate-limit-account": "garbage"},
        {"x-rate-limit-account": "5:abc", "x-rate-limit-account-state": "1:2:3"},
        {"x-rate-limit-account": "5:60", "x-rate-limit-account-state": "x:y:z"},
    ])
    def test_malformed_headers_leave_budget_unset(self, governor, headers):
        governor.on_response(headers, 200)

        assert governor.state.last_budget is None
        assert governor.state.rate_limit_until == 0

    def test_status_429_without_headers_waits_30s(self, governor):
        governor.on_response({}, 429)

        assert governor.state.rate_limit_until == START_MS + 30_000

    def test_retry_after_header(self, governor):
        governor.on_response({"Retry-After": "90"}, 429)

        assert governor.state.rate_limit_until == START_MS + 90_000

    def test_retry_after_argument_wins_over_default(self, governor):
        governor.on_response({}, 200, retry_after_seconds=45)

        assert governor.state.rate_limit_until == START_MS + 45_000


class TestParsers:

    def test_parse_retry_after_list(self):
        assert parse_retry_after("30,60") == 30.0

    def test_ip_scope_used_when_no_account_headers(self):
        budget = parse_rate_limit_headers({"x-rate-limit-ip": "8:10:60", "x-rate-limit-ip-state": "1:10:0"})

        assert budget.scope == "ip"
        assert budget.buckets[0].remaining == 7


def test_status_text_mentions_wait(governor):
    governor.on_server_rate_limited(120)

    text = governor.status_text()

    assert "Rate limited for 120s" in text
    assert "Next fetch in 120s" in text
