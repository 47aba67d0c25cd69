"""Ad-interest search clients."""
from .base import BaseSearchClient, CallContext, InterestCandidate, SearchResult
from .call_log import CallOutcome, CallType, SearchCallLog, SearchCallRecord
from .exceptions import (
    ErrorType,
    FacebookApiError,
    NetworkError,
    ParseError,
    RateLimitError,
    SearchError,
    ServerError,
    TokenInvalidError,
    should_retry,
)
from .facebook_client import FacebookInterestSearchClient
from .throttle import RequestThrottle

__all__ = [
    "BaseSearchClient",
    "CallContext",
    "InterestCandidate",
    "SearchResult",
    "CallOutcome",
    "CallType",
    "SearchCallLog",
    "SearchCallRecord",
    "ErrorType",
    "SearchError",
    "NetworkError",
    "RateLimitError",
    "TokenInvalidError",
    "FacebookApiError",
    "ParseError",
    "ServerError",
    "should_retry",
    "FacebookInterestSearchClient",
    "RequestThrottle",
]
