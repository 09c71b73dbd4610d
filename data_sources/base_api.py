"""
Base API client with connection pooling and error handling.
The trade history client inherits from this.
"""

import logging
from typing import Any, Dict, Optional, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# Get logger - configuration should be done by application entrypoint, not library modules
logger = logging.getLogger(__name__)


class APIError(Exception):
    """Generic API error"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RateLimitExceeded(APIError):
    """Raised when API rate limit is hit"""

    def __init__(self, retry_after: Optional[float] = None, headers: Optional[Dict[str, str]] = None):
        self.retry_after = retry_after
        self.headers = headers or {}
        suffix = f" Retry after {retry_after:g} seconds." if retry_after else ""
        super().__init__(f"Rate limit exceeded.{suffix}", status=429)


class AuthenticationError(APIError):
    """Raised when the session cookie is missing, expired or rejected (401/403)."""


TimeoutType = Union[int, float, Tuple[int, int], Tuple[float, float]]


class BaseAPIClient:
    """
    Shared HTTP plumbing: a pooled requests.Session with urllib3 retries
    for transient server errors, default headers and context-manager support.

    Rate limiting is not done here. Callers consult the trade history
    governor before every request instead of sleeping in the client.
    """

    # Connection pool settings
    POOL_CONNECTIONS = 4
    POOL_MAXSIZE = 4
    MAX_RETRIES = 2        # Retries for connection errors / 5xx
    BACKOFF_FACTOR = 0.5   # Exponential backoff multiplier
    RETRY_STATUS_CODES = frozenset({500, 502, 503, 504})  # Server errors to retry

    def __init__(
            self,
            base_url: str,
            user_agent: Optional[str] = None,
            timeout: TimeoutType = 10,
            session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Base URL for the API
            user_agent: Custom User-Agent header
            timeout: Request timeout in seconds, or (connect, read)
            session: Pre-built session (tests inject a mock)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout: TimeoutType = timeout

        # GGG requires an identifying User-Agent
        self.user_agent = user_agent or "PoE-Trade-History-Sync/1.0"

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': self.user_agent,
            'Accept': 'application/json'
        })

        if session is None:
            retry_strategy = Retry(
                total=self.MAX_RETRIES,
                backoff_factor=self.BACKOFF_FACTOR,
                status_forcelist=self.RETRY_STATUS_CODES,
                allowed_methods=["GET"],
                raise_on_status=False  # Don't raise, let us handle status codes
            )
            adapter = HTTPAdapter(
                pool_connections=self.POOL_CONNECTIONS,
                pool_maxsize=self.POOL_MAXSIZE,
                max_retries=retry_strategy
            )
            self.session.mount('https://', adapter)
            self.session.mount('http://', adapter)

        logger.info(f"Initialized {self.__class__.__name__} - {self.base_url}")

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _get_raw(
            self,
            endpoint: str,
            params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        GET without status handling.

        Raises:
            APIError: On connection errors and timeouts
        """
        url = self._url(endpoint)
        logger.debug(f"GET {url} - params: {params}")
        try:
            return self.session.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Request failed: {e}")
            raise APIError(f"Request failed: {e}") from e

    @staticmethod
    def raise_for_status(response: requests.Response) -> None:
        status = response.status_code
        if status == 429:
            retry_after = response.headers.get('Retry-After')
            try:
                seconds = float(str(retry_after).split(",")[0]) if retry_after else None
            except ValueError:
                seconds = None
            logger.warning(f"Rate limited! Retry after {seconds}s")
            raise RateLimitExceeded(retry_after=seconds, headers=dict(response.headers))
        if status in (401, 403):
            raise AuthenticationError(f"Unauthorized (HTTP {status})", status=status)
        if status >= 400:
            error_msg = f"API error {status}: {response.text[:200]}"
            logger.error(error_msg)
            raise APIError(error_msg, status=status)

    def close(self):
        """Clean up resources"""
        self.session.close()
        logger.info(f"Closed {self.__class__.__name__}")

    def __enter__(self):
        """Context manager entry - returns self for use in 'with' blocks."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures session is closed."""
        self.close()
        return False  # Don't suppress exceptions
