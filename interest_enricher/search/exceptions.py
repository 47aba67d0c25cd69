"""Error taxonomy for the ad-interest search API."""
from enum import Enum
from typing import Optional

from interest_enricher.exceptions import EnricherError


class ErrorType(str, Enum):
    """Classification attached to every failed search call."""

    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    TOKEN_INVALID = "TOKEN_INVALID"
    FACEBOOK_API = "FACEBOOK_API"
    PARSE = "PARSE"
    SERVER_ERROR = "SERVER_ERROR"


RETRYABLE_ERROR_TYPES = frozenset(
    {ErrorType.NETWORK, ErrorType.RATE_LIMIT, ErrorType.PARSE, ErrorType.SERVER_ERROR}
)


class SearchError(EnricherError):
    """Base exception for a failed search call."""

    error_type: ErrorType = ErrorType.FACEBOOK_API

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.error_type in RETRYABLE_ERROR_TYPES


class NetworkError(SearchError):
    """Transport-level failure (connection reset, DNS, timeout)."""

    error_type = ErrorType.NETWORK


class RateLimitError(SearchError):
    """HTTP 429 or a Graph API throttling error code."""

    error_type = ErrorType.RATE_LIMIT

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code)


class TokenInvalidError(SearchError):
    """Access token missing, expired or revoked."""

    error_type = ErrorType.TOKEN_INVALID


class FacebookApiError(SearchError):
    """Semantic 4xx error returned by the Graph API."""

    error_type = ErrorType.FACEBOOK_API


class ParseError(SearchError):
    """Response body could not be decoded into search results."""

    error_type = ErrorType.PARSE


class ServerError(SearchError):
    """5xx response from the Graph API."""

    error_type = ErrorType.SERVER_ERROR


def should_retry(
    error_type: ErrorType,
    attempt: int,
    max_retries: int,
    previous_error_type: Optional[ErrorType] = None,
) -> bool:
    """Decide whether a failed item gets another pass.

    Args:
        error_type: Classification of the failure that just happened
        attempt: Number of failed attempts before this one
        max_retries: Total attempts allowed per item
        previous_error_type: Classification of the previous failure, if any

    Returns:
        True if the item should be set to ``retry``, False for ``failed``
    """
    if error_type not in RETRYABLE_ERROR_TYPES:
        return False
    # Malformed bodies get a single second chance
    if error_type == ErrorType.PARSE and previous_error_type == ErrorType.PARSE:
        return False
    return attempt + 1 < max_retries
