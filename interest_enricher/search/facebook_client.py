"""Facebook Marketing API ad-interest search client."""
import asyncio
import logging
from typing import Optional

import aiohttp

from .base import BaseSearchClient, InterestCandidate
from .call_log import SearchCallLog
from .exceptions import (
    FacebookApiError,
    NetworkError,
    ParseError,
    RateLimitError,
    ServerError,
    TokenInvalidError,
)

logger = logging.getLogger(__name__)

# Graph API error codes that signal throttling
RATE_LIMIT_CODES = {4, 17, 32, 613, 80004}
# Graph API error codes for expired / invalid access tokens
TOKEN_ERROR_CODES = {102, 190}


class FacebookInterestSearchClient(BaseSearchClient):
    """Client for the Graph API ``search?type=adinterest`` endpoint."""

    name = "facebook"

    BASE_URL = "https://graph.facebook.com"

    def __init__(
        self,
        access_token: Optional[str],
        api_version: str = "v18.0",
        limit: int = 15,
        timeout: int = 30,
        locale: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        call_log: Optional[SearchCallLog] = None,
    ):
        """
        Initialize the search client.

        Args:
            access_token: Marketing API access token
            api_version: Graph API version segment (e.g. "v18.0")
            limit: Maximum candidates per search
            timeout: Request timeout in seconds
            locale: Optional locale for candidate names
            session: Shared aiohttp session (created lazily if omitted)
            call_log: Call log receiving one record per request
        """
        super().__init__(call_log=call_log)
        self.access_token = access_token
        self.api_version = api_version
        self.limit = limit
        self.timeout = timeout
        self.locale = locale
        self._session = session
        self._owns_session = session is None

    @property
    def search_url(self) -> str:
        return f"{self.BASE_URL}/{self.api_version}/search"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "FacebookInterestSearchClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _fetch(self, term: str, country: str) -> tuple[list[InterestCandidate], Optional[int]]:
        if not self.access_token:
            raise TokenInvalidError("FACEBOOK_ACCESS_TOKEN is not set")

        params = {
            "type": "adinterest",
            "q": term,
            "limit": str(self.limit),
            "access_token": self.access_token,
        }
        if self.locale:
            params["locale"] = self.locale

        logger.debug("Searching ad interests for '%s' (%s)", term, country)

        session = await self._get_session()
        try:
            async with session.get(
                self.search_url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                status = response.status
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                try:
                    payload = await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError) as e:
                    if status == 429:
                        raise RateLimitError("Rate limited", status, retry_after) from e
                    if status >= 500:
                        raise ServerError(f"HTTP {status} from Graph API", status) from e
                    raise ParseError(f"Malformed response body: {e}", status) from e
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Request timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e

        return self._parse_payload(payload, status, retry_after), status

    def _parse_payload(
        self,
        payload,
        status: int,
        retry_after: Optional[float] = None,
    ) -> list[InterestCandidate]:
        """Classify the response and convert it to candidates."""
        error = payload.get("error") if isinstance(payload, dict) else None
        code = _error_code(error)
        message = _error_message(error) or f"HTTP {status}"

        if status == 429 or code in RATE_LIMIT_CODES:
            raise RateLimitError(message, status, retry_after)
        if status >= 500:
            raise ServerError(message, status)
        if status == 401 or code in TOKEN_ERROR_CODES:
            raise TokenInvalidError(message, status)
        if status >= 400 or error:
            raise FacebookApiError(message, status)

        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise ParseError("Response has no 'data' list", status)

        candidates = []
        for entry in payload["data"]:
            if not isinstance(entry, dict):
                raise ParseError(f"Unexpected entry in 'data': {entry!r}", status)
            candidate = InterestCandidate.from_dict(entry)
            if candidate.name:
                candidates.append(candidate)
        return candidates


def _error_code(error) -> Optional[int]:
    if not isinstance(error, dict):
        return None
    try:
        return int(error.get("code"))
    except (TypeError, ValueError):
        return None


def _error_message(error) -> Optional[str]:
    if not isinstance(error, dict):
        return None
    return error.get("message")


def _parse_retry_after(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None
