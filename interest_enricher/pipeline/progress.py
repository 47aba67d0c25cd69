"""Progress read model for enrichment jobs."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from interest_enricher.exceptions import JobNotFoundError
from interest_enricher.persistence.repository import Repository
from interest_enricher.pipeline.state import ItemStatus, JobStatus


@dataclass
class ProgressMetrics:
    total_items: int = 0
    with_suggestions: int = 0
    processed: int = 0
    failed: int = 0
    pending: int = 0
    in_progress: int = 0
    retry: int = 0
    cancelled: int = 0

    def to_dict(self) -> dict:
        return {
            "totalItems": self.total_items,
            "withSuggestions": self.with_suggestions,
            "processed": self.processed,
            "failed": self.failed,
            "pending": self.pending,
            "inProgress": self.in_progress,
            "retry": self.retry,
            "cancelled": self.cancelled,
        }


@dataclass
class ProgressReport:
    """Snapshot of a job's progress.

    Only coarse status and counts are exposed; error details stay in the
    logs.
    """

    job_id: str
    status: str
    current: int
    total: int
    percentage: float
    metrics: ProgressMetrics
    current_label: Optional[str] = None
    paused_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = {
            "jobId": self.job_id,
            "status": self.status,
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
            "metrics": self.metrics.to_dict(),
        }
        if self.current_label is not None:
            data["currentLabel"] = self.current_label
        if self.paused_at is not None:
            data["pausedAt"] = self.paused_at.isoformat()
        return data


def calculate_percentage(finished: int, total: int) -> float:
    """Share of finished items, rounded to two decimals (0 when empty)."""
    if total <= 0:
        return 0.0
    return round(finished / total * 100, 2)


class ProgressReporter:
    """Builds ``ProgressReport`` snapshots from the repository."""

    def __init__(self, repository: Repository):
        self.repository = repository

    def get_progress(self, job_id: str) -> ProgressReport:
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        counts = self.repository.count_items_by_status(job_id)
        metrics = ProgressMetrics(
            total_items=sum(counts.values()),
            with_suggestions=self.repository.count_items_with_suggestions(job_id),
            processed=counts.get(ItemStatus.DONE.value, 0),
            failed=counts.get(ItemStatus.FAILED.value, 0),
            pending=counts.get(ItemStatus.PENDING.value, 0),
            in_progress=counts.get(ItemStatus.IN_PROGRESS.value, 0),
            retry=counts.get(ItemStatus.RETRY.value, 0),
            cancelled=counts.get(ItemStatus.CANCELLED.value, 0),
        )

        finished = metrics.processed + metrics.failed
        if job.status == JobStatus.DONE:
            percentage = 100.0
        else:
            percentage = calculate_percentage(finished, metrics.total_items)

        current_label = None
        if job.status == JobStatus.PROCESSING and job.current_index is not None:
            item = self.repository.get_item_at_position(job_id, job.current_index)
            current_label = item.label if item else None

        return ProgressReport(
            job_id=job_id,
            status=job.status,
            current=finished,
            total=metrics.total_items,
            percentage=percentage,
            metrics=metrics,
            current_label=current_label,
            paused_at=job.paused_at,
        )
