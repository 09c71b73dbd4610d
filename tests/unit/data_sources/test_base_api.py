"""
Unit tests for data_sources.base_api module - Base API client infrastructure.

Tests cover:
- Session setup (headers, retry adapter)
- Status code classification
- GET transport, connection errors wrapped as APIError
- Context manager support
"""

import pytest
from unittest.mock import MagicMock, Mock
import requests
from requests.adapters import HTTPAdapter

from data_sources.base_api import (
    APIError,
    AuthenticationError,
    BaseAPIClient,
    RateLimitExceeded,
)

pytestmark = pytest.mark.unit


def make_response(status=200, payload=None, headers=None, text=""):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    mock = MagicMock()
    mock.headers = {}
    return mock


@pytest.fixture
def client(session):
    return BaseAPIClient("https://example.com/", user_agent="TestAgent/1.0", timeout=(3, 7), session=session)


class TestSetup:
    """Test client construction."""

    def test_default_headers(self, client, session):
        """Should send an identifying User-Agent and accept JSON."""
        assert session.headers["User-Agent"] == "TestAgent/1.0"
        assert session.headers["Accept"] == "application/json"

    def test_strips_trailing_slash(self, client):
        assert client._url("/api/x") == "https://example.com/api/x"

    def test_real_session_gets_retry_adapter(self):
        """Should mount a retrying adapter when it owns the session."""
        real = BaseAPIClient("https://example.com")
        try:
            adapter = real.session.get_adapter("https://example.com/")
            assert isinstance(adapter, HTTPAdapter)
            assert adapter.max_retries.total == BaseAPIClient.MAX_RETRIES
            assert 503 in adapter.max_retries.status_forcelist
        finally:
            real.close()

    def test_default_user_agent(self, session):
        BaseAPIClient("https://example.com", session=session)

        assert session.headers["User-Agent"].startswith("PoE-Trade-History-Sync/")


class TestGetRaw:
    """Test the GET transport."""

    def test_passes_params_headers_and_timeout(self, client, session):
        session.get.return_value = make_response(payload={"ok": 1})

        response = client._get_raw("/data", params={"a": 1}, headers={"X-Test": "1"})

        assert response is session.get.return_value
        session.get.assert_called_once_with(
            "https://example.com/data", params={"a": 1}, headers={"X-Test": "1"}, timeout=(3, 7),
        )

    def test_error_status_is_returned_unraised(self, client, session):
        session.get.return_value = make_response(500)

        assert client._get_raw("/data").status_code == 500

    def test_connection_error_is_wrapped(self, client, session):
        """Should wrap transport errors so callers only catch APIError."""
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(APIError) as exc_info:
            client._get_raw("/data")

        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)


class TestRaiseForStatus:
    """Test status code classification."""

    @pytest.mark.parametrize("status", [200, 204, 304])
    def test_success_passes(self, status):
        BaseAPIClient.raise_for_status(make_response(status))

    def test_rate_limited(self):
        with pytest.raises(RateLimitExceeded) as exc_info:
            BaseAPIClient.raise_for_status(make_response(429, headers={"Retry-After": "60"}))

        assert exc_info.value.retry_after == 60.0
        assert exc_info.value.status == 429
        assert exc_info.value.headers == {"Retry-After": "60"}

    @pytest.mark.parametrize("retry_after", [None, "soon"])
    def test_rate_limited_without_usable_retry_after(self, retry_after):
        headers = {"Retry-After": retry_after} if retry_after else {}

        with pytest.raises(RateLimitExceeded) as exc_info:
            BaseAPIClient.raise_for_status(make_response(429, headers=headers))

        assert exc_info.value.retry_after is None

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, status):
        with pytest.raises(AuthenticationError) as exc_info:
            BaseAPIClient.raise_for_status(make_response(status))

        assert exc_info.value.status == status

    def test_server_error(self):
        with pytest.raises(APIError) as exc_info:
            BaseAPIClient.raise_for_status(make_response(500, text="boom"))

        assert exc_info.value.status == 500
        assert "boom" in str(exc_info.value)


def test_context_manager_closes_session(session):
    with BaseAPIClient("https://example.com", session=session) as client:
        assert client.session is session

    session.close.assert_called_once()
