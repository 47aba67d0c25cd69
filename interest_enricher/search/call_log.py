"""Structured call log for ad-interest search requests.

Every search call produces one ``SearchCallRecord``. Records go to the
``interest_enricher.search.calls`` logger (the record dict is attached as
``extra={"search_call": ...}`` and written as JSON by ``SearchCallFormatter``) and a
bounded in-memory buffer used for the summary report. Nothing in the
pipeline reads the log back to make decisions.
"""
import logging
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

call_logger = logging.getLogger("interest_enricher.search.calls")


class CallType(str, Enum):
    """Origin of a search call."""

    AUTO_ENRICHMENT = "AUTO_ENRICHMENT"
    MANUAL_SEARCH = "MANUAL_SEARCH"
    RETRY_ITEM = "RETRY_ITEM"


class CallOutcome(str, Enum):
    """Final result of a search call as seen by the pipeline."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRY = "RETRY"


@dataclass
class SearchCallRecord:
    """One search call."""

    call_type: CallType
    term: str
    country: str
    final_result: CallOutcome
    processing_time_ms: float
    job_id: Optional[str] = None
    status_code: Optional[int] = None
    retry_attempt: int = 0
    max_retries: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    candidate_count: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["call_type"] = self.call_type.value
        data["final_result"] = self.final_result.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


class SearchCallLog:
    """Emit and keep the most recent search call records.

    Usage:
        log = SearchCallLog(max_records=500)
        log.emit(record)
        log.summary()["failed_requests"]
    """

    def __init__(self, max_records: int = 1000, logger: Optional[logging.Logger] = None):
        self._records: deque[SearchCallRecord] = deque(maxlen=max_records)
        self._logger = logger or call_logger

    def emit(self, record: SearchCallRecord) -> None:
        """Record a call and write it to the call logger."""
        self._records.append(record)

        if record.final_result == CallOutcome.SUCCESS:
            level = logging.INFO
        elif record.final_result == CallOutcome.RETRY:
            level = logging.WARNING
        else:
            level = logging.ERROR

        self._logger.log(
            level,
            "%s %s '%s' (%s) status=%s attempt=%d/%d %.0fms candidates=%d%s",
            record.call_type.value,
            record.final_result.value,
            record.term,
            record.country,
            record.status_code,
            record.retry_attempt + 1,
            record.max_retries,
            record.processing_time_ms,
            record.candidate_count,
            f" error={record.error_type}: {record.error_message}" if record.error_type else "",
            extra={"search_call": record.to_dict()},
        )

    def records(self) -> list[SearchCallRecord]:
        """Recorded calls, oldest first."""
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def summary(self) -> dict:
        """Aggregate counts over the buffered records."""
        records = list(self._records)
        total = len(records)
        outcomes = Counter(r.final_result for r in records)
        call_types = Counter(r.call_type for r in records)
        error_types = Counter(r.error_type for r in records if r.error_type)
        average_ms = (
            round(sum(r.processing_time_ms for r in records) / total, 1) if total else 0.0
        )

        return {
            "total_requests": total,
            "successful_requests": outcomes[CallOutcome.SUCCESS],
            "failed_requests": outcomes[CallOutcome.FAILED],
            "retry_requests": outcomes[CallOutcome.RETRY],
            "by_call_type": {t.value: call_types[t] for t in CallType},
            "error_types": dict(error_types),
            "average_processing_time_ms": average_ms,
        }
