"""Base search client interface."""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from interest_enricher.search.call_log import CallOutcome, CallType, SearchCallLog, SearchCallRecord
from interest_enricher.search.exceptions import ErrorType, SearchError, should_retry


@dataclass
class InterestCandidate:
    """Standardized candidate returned by an ad-interest search."""

    name: str
    candidate_id: Optional[str] = None
    audience_lower_bound: Optional[int] = None
    audience_upper_bound: Optional[int] = None
    path: list[str] = field(default_factory=list)
    brand: Optional[str] = None
    type: Optional[str] = None

    @property
    def audience(self) -> int:
        """Midpoint of the audience bounds, a missing bound counting as 0 (half rounds up)."""
        lower = self.audience_lower_bound or 0
        upper = self.audience_upper_bound or 0
        return (lower + upper + 1) // 2

    def to_dict(self) -> dict:
        return {
            "id": self.candidate_id,
            "name": self.name,
            "audience_size_lower_bound": self.audience_lower_bound,
            "audience_size_upper_bound": self.audience_upper_bound,
            "path": list(self.path),
            "brand": self.brand,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InterestCandidate":
        """Build a candidate from a Graph API entry or a cached dict."""
        path = data.get("path") or []
        if isinstance(path, str):
            path = [path]
        candidate_id = data.get("id")
        return cls(
            name=str(data.get("name") or ""),
            candidate_id=str(candidate_id) if candidate_id not in (None, "") else None,
            audience_lower_bound=_as_int(data.get("audience_size_lower_bound")),
            audience_upper_bound=_as_int(data.get("audience_size_upper_bound")),
            path=[str(p) for p in path],
            brand=data.get("brand"),
            type=data.get("type"),
        )


def _as_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class SearchResult:
    """Candidates returned by one successful search call."""

    term: str
    country: str
    candidates: list[InterestCandidate] = field(default_factory=list)
    status_code: Optional[int] = None


@dataclass
class CallContext:
    """Where a search call comes from, used for the call log."""

    call_type: CallType = CallType.AUTO_ENRICHMENT
    job_id: Optional[str] = None
    retry_attempt: int = 0
    max_retries: int = 3
    previous_error_type: Optional[ErrorType] = None


class BaseSearchClient(ABC):
    """Abstract base class for ad-interest search clients.

    Subclasses implement ``_fetch``; ``search`` wraps it with timing and
    emits one call-log record per call, successful or not.
    """

    name: str = "base"

    def __init__(self, call_log: Optional[SearchCallLog] = None):
        self.call_log = call_log or SearchCallLog()

    @abstractmethod
    async def _fetch(self, term: str, country: str) -> tuple[list[InterestCandidate], Optional[int]]:
        """
        Issue a single search request.

        Args:
            term: Search term
            country: Two-letter country code

        Returns:
            Tuple of (candidates, HTTP status code)

        Raises:
            SearchError: classified failure
        """
        pass

    async def search(
        self,
        term: str,
        country: str,
        *,
        context: Optional[CallContext] = None,
    ) -> SearchResult:
        """Search candidates for a term and log the call."""
        context = context or CallContext()
        started = time.perf_counter()
        try:
            candidates, status_code = await self._fetch(term, country)
        except SearchError as exc:
            retry = should_retry(
                exc.error_type,
                context.retry_attempt,
                context.max_retries,
                context.previous_error_type,
            )
            self.call_log.emit(
                SearchCallRecord(
                    call_type=context.call_type,
                    term=term,
                    country=country,
                    job_id=context.job_id,
                    status_code=exc.status_code,
                    processing_time_ms=_elapsed_ms(started),
                    retry_attempt=context.retry_attempt,
                    max_retries=context.max_retries,
                    final_result=CallOutcome.RETRY if retry else CallOutcome.FAILED,
                    error_type=exc.error_type.value,
                    error_message=exc.message,
                )
            )
            raise

        self.call_log.emit(
            SearchCallRecord(
                call_type=context.call_type,
                term=term,
                country=country,
                job_id=context.job_id,
                status_code=status_code,
                processing_time_ms=_elapsed_ms(started),
                retry_attempt=context.retry_attempt,
                max_retries=context.max_retries,
                final_result=CallOutcome.SUCCESS,
                candidate_count=len(candidates),
            )
        )
        return SearchResult(
            term=term,
            country=country,
            candidates=candidates,
            status_code=status_code,
        )

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)
