"""Enrichment pipeline: job runs, control actions and progress."""
from .orchestrator import ControlResult, EnrichmentOrchestrator, ItemOutcome, JobHandle
from .pool import ConcurrencyPool, TaskResult
from .progress import ProgressMetrics, ProgressReport, ProgressReporter
from .state import ControlAction, ItemStatus, JobKind, JobStatus

__all__ = [
    "EnrichmentOrchestrator",
    "JobHandle",
    "ControlResult",
    "ItemOutcome",
    "ConcurrencyPool",
    "TaskResult",
    "ProgressReporter",
    "ProgressReport",
    "ProgressMetrics",
    "ControlAction",
    "ItemStatus",
    "JobKind",
    "JobStatus",
]
