"""Tests for data_sources/trade_history_api.py - trade history client."""
from unittest.mock import MagicMock, Mock

import pytest
import requests

from core.game_version import GameVersion
from data_sources.trade_history_api import TradeHistoryClient, extract_rows

pytestmark = pytest.mark.unit

ROW = {"item_id": "a", "time": 1_735_689_600, "price": {"amount": 1, "currency": "divine"}}


def make_response(status=200, payload=None, headers=None):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.text = ""
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    mock = MagicMock()
    mock.headers = {}
    mock.cookies = requests.cookies.RequestsCookieJar()
    return mock


@pytest.fixture
def client(session):
    return TradeHistoryClient("secret-session", game=GameVersion.POE2, session=session)


class TestExtractRows:

    def test_result_key(self):
        assert extract_rows({"result": [ROW], "entries": []}) == [ROW]

    def test_entries_key(self):
        assert extract_rows({"entries": [ROW]}) == [ROW]

    def test_bare_list(self):
        assert extract_rows([ROW]) == [ROW]

    @pytest.mark.parametrize("payload", [None, {}, {"result": "nope"}, "text"])
    def test_unusable_payload(self, payload):
        assert extract_rows(payload) == []


class TestRequest:

    def test_sets_session_cookie(self, client, session):
        """Should attach POESESSID for pathofexile.com."""
        assert session.cookies.get("POESESSID", domain=".pathofexile.com") == "secret-session"

    def test_missing_session_id_sets_no_cookie(self, session):
        TradeHistoryClient("", session=session)

        assert "POESESSID" not in session.cookies

    def test_poe2_endpoint_and_headers(self, client, session):
        session.get.return_value = make_response(payload={"result": [ROW]})

        client.fetch("Rise of the Abyssal")

        args, kwargs = session.get.call_args
        assert args[0] == "https://www.pathofexile.com/api/trade2/history/Rise%20of%20the%20Abyssal"
        assert kwargs["headers"]["Referer"] == "https://www.pathofexile.com/trade2"
        assert kwargs["headers"]["X-Requested-With"] == "XMLHttpRequest"

    def test_poe1_endpoint(self, session):
        client = TradeHistoryClient("x", game=GameVersion.POE1, session=session)

        assert client.history_endpoint("Standard") == "/api/trade/history/Standard"

    def test_league_is_fully_quoted(self, client):
        assert client.history_endpoint("a/b") == "/api/trade2/history/a%2Fb"


class TestFetch:
    """fetch() classifies every outcome into a FetchResponse."""

    def test_success(self, client, session):
        session.get.return_value = make_response(
            payload={"result": [ROW], "lastFetchAt": 1_735_689_000_000},
            headers={"X-Rate-Limit-Account": "5:60:60", "X-Rate-Limit-Account-State": "1:60:0"},
        )

        response = client.fetch("Standard")

        assert response.ok
        assert response.status == 200
        assert response.rows == [ROW]
        assert response.last_fetch_at == 1_735_689_000_000
        assert response.headers["x-rate-limit-account"] == "5:60:60"

    def test_rate_limited(self, client, session):
        session.get.return_value = make_response(429, headers={"Retry-After": "120"})

        response = client.fetch("Standard")

        assert not response.ok
        assert response.rate_limited
        assert response.status == 429
        assert response.retry_after == 120.0
        assert response.headers["retry-after"] == "120"

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, client, session, status):
        session.get.return_value = make_response(status)

        response = client.fetch("Standard")

        assert not response.ok
        assert response.status == status
        assert response.error == "Unauthorized"

    def test_server_error(self, client, session):
        session.get.return_value = make_response(503)

        response = client.fetch("Standard")

        assert not response.ok
        assert response.status == 503
        assert not response.rate_limited

    def test_network_error_does_not_raise(self, client, session):
        session.get.side_effect = requests.Timeout("read timed out")

        response = client.fetch("Standard")

        assert not response.ok
        assert response.status == 0
        assert "read timed out" in response.error

    def test_invalid_json(self, client, session):
        session.get.return_value = make_response(payload=ValueError("bad"))

        response = client.fetch("Standard")

        assert not response.ok
        assert response.error == "Invalid JSON"

    def test_empty_history(self, client, session):
        session.get.return_value = make_response(payload={"result": []})

        response = client.fetch("Standard")

        assert response.ok
        assert response.rows == []

    def test_non_finite_last_fetch_at_is_ignored(self, client, session):
        session.get.return_value = make_response(payload={"result": [], "lastFetchAt": float("inf")})

        assert client.fetch("Standard").last_fetch_at is None


def test_verify_session(client, session):
    session.get.return_value = make_response(payload={"result": []})
    assert client.verify_session("Standard")

    session.get.return_value = make_response(401)
    assert not client.verify_session("Standard")
