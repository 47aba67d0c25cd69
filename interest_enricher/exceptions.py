"""Exceptions for Interest Enricher."""


class EnricherError(Exception):
    """Base exception for all enrichment errors."""

    pass


class RepositoryError(EnricherError):
    """Raised when the storage backend fails (connection, constraint, etc.)."""

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Repository operation '{operation}' failed{detail}")


class PipelineError(EnricherError):
    """Base exception for orchestration errors surfaced to callers."""

    pass


class JobNotFoundError(PipelineError):
    """Raised when an enrichment job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Enrichment job not found: {job_id}")


class ItemNotFoundError(PipelineError):
    """Raised when an item does not exist or belongs to another job."""

    def __init__(self, job_id: str, item_id: str):
        self.job_id = job_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found in job {job_id}")


class InvalidTransitionError(PipelineError):
    """Raised when a control action is not legal from the job's current status."""

    def __init__(self, job_id: str, status: str, action: str, reason: str):
        self.job_id = job_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} job {job_id} (status '{status}'): {reason}")


class JobAlreadyRunningError(InvalidTransitionError):
    """Raised when starting a job that is already processing."""

    def __init__(self, job_id: str):
        super().__init__(job_id, "processing", "start", "enrichment is already running")


class ItemBusyError(PipelineError):
    """Raised when an item is already being searched by another task."""

    def __init__(self, job_id: str, item_id: str):
        self.job_id = job_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} of job {job_id} is already being processed")
