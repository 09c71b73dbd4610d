"""
Path of Exile trade history client.

Fetches the logged-in account's sold items from
/api/trade2/history/<league> (PoE1: /api/trade/history/<league>) using the
POESESSID cookie.

SECURITY NOTE: POESESSID is a sensitive credential that grants full
account access. Only use locally - never send to third-party servers.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from core.constants import API_TIMEOUT_CONNECT, API_TIMEOUT_READ
from core.game_version import GameVersion
from core.trade_history.models import FetchResponse
from data_sources.base_api import (
    APIError,
    AuthenticationError,
    BaseAPIClient,
    RateLimitExceeded,
    TimeoutType,
)

logger = logging.getLogger(__name__)


def extract_rows(payload: Any) -> List[Any]:
    """Rows live under "result", else "entries", else the payload is the list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("result", "entries"):
            rows = payload.get(key)
            if isinstance(rows, list):
                return rows
    return []


class TradeHistoryClient(BaseAPIClient):
    """
    Remote fetch capability for the sync orchestrator.

    fetch() never raises for transport problems; every outcome comes back
    as a FetchResponse so the orchestrator can classify it.

    Usage:
        with TradeHistoryClient(poesessid) as client:
            response = client.fetch("Rise of the Abyssal")
    """

    BASE_URL = "https://www.pathofexile.com"

    def __init__(
        self,
        poesessid: str,
        game: GameVersion = GameVersion.POE2,
        user_agent: Optional[str] = None,
        timeout: TimeoutType = (API_TIMEOUT_CONNECT, API_TIMEOUT_READ),
        session=None,
    ):
        super().__init__(self.BASE_URL, user_agent=user_agent, timeout=timeout, session=session)
        self.game = game
        if poesessid:
            self.session.cookies.set("POESESSID", poesessid, domain=".pathofexile.com")
        else:
            logger.warning("No POESESSID configured; trade history requests will be rejected")

    def history_endpoint(self, league: str) -> str:
        return f"/api/{self.game.trade_path}/history/{quote(league, safe='')}"

    @property
    def _request_headers(self) -> Dict[str, str]:
        return {
            "Referer": f"{self.BASE_URL}/{self.game.trade_path}",
            "X-Requested-With": "XMLHttpRequest",
        }

    def fetch(self, league: str) -> FetchResponse:
        """Fetch a league's history as a FetchResponse."""
        try:
            response = self._get_raw(self.history_endpoint(league), headers=self._request_headers)
        except APIError as e:
            return FetchResponse(ok=False, status=0, error=str(e) or "Network error")

        headers = {str(k).lower(): str(v) for k, v in response.headers.items()}
        try:
            self.raise_for_status(response)
        except RateLimitExceeded as e:
            return FetchResponse(
                ok=False, status=429, headers=headers, error=str(e),
                rate_limited=True, retry_after=e.retry_after,
            )
        except AuthenticationError as e:
            return FetchResponse(ok=False, status=e.status, headers=headers, error="Unauthorized")
        except APIError as e:
            return FetchResponse(ok=False, status=e.status, headers=headers, error=f"HTTP {e.status}")

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Trade history response was not JSON")
            return FetchResponse(
                ok=False, status=response.status_code, headers=headers, error="Invalid JSON"
            )

        last_fetch_at = None
        if isinstance(payload, dict):
            value = payload.get("lastFetchAt")
            if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
                last_fetch_at = int(value)
        rows = extract_rows(payload)
        logger.info(f"Fetched {len(rows)} trade history rows for {league}")
        return FetchResponse(
            ok=True,
            status=response.status_code,
            rows=rows,
            headers=headers,
            last_fetch_at=last_fetch_at,
        )

    def verify_session(self, league: str) -> bool:
        """
        Check whether the session cookie is accepted.

        Note: this spends one request of the account's history budget.
        """
        response = self.fetch(league)
        return response.ok and response.status == 200
