"""Job and item status values and the job control state machine."""
from enum import Enum

from interest_enricher.exceptions import InvalidTransitionError


class JobKind(str, Enum):
    PROJECT = "project"
    INTEREST_CHECK = "interest_check"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    DONE = "done"
    ERROR = "error"


class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"
    RETRY = "retry"
    CANCELLED = "cancelled"


class ControlAction(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.DONE, JobStatus.CANCELLED})

# Items the processing loop still has to visit
ACTIVE_ITEM_STATUSES = (ItemStatus.PENDING, ItemStatus.RETRY, ItemStatus.IN_PROGRESS)

# action -> (statuses it is legal from, resulting status)
CONTROL_TRANSITIONS = {
    ControlAction.PAUSE: ({JobStatus.PROCESSING}, JobStatus.PAUSED),
    ControlAction.RESUME: ({JobStatus.PAUSED}, JobStatus.PROCESSING),
    ControlAction.CANCEL: ({JobStatus.PROCESSING, JobStatus.PAUSED}, JobStatus.CANCELLED),
}

# Status given to unfinished items when a job is cancelled.
# Interactive projects keep their criteria editable and re-runnable;
# batch interest checks close them out.
CANCEL_POLICY = {
    JobKind.PROJECT: ItemStatus.PENDING,
    JobKind.INTEREST_CHECK: ItemStatus.CANCELLED,
}


def cancel_target(kind: str) -> ItemStatus:
    """Item status applied on cancel for a job kind."""
    try:
        return CANCEL_POLICY[JobKind(kind)]
    except ValueError:
        return ItemStatus.CANCELLED


def validate_transition(job_id: str, current: str, action: str) -> JobStatus:
    """Check a control action against the job's current status.

    Returns:
        The status the job moves to

    Raises:
        InvalidTransitionError: If the action is not legal from ``current``
    """
    try:
        action = ControlAction(action)
    except ValueError:
        raise InvalidTransitionError(job_id, current, str(action), "unknown action")

    allowed, target = CONTROL_TRANSITIONS[action]
    current = getattr(current, "value", current)
    if current not in {status.value for status in allowed}:
        expected = " or ".join(sorted(status.value for status in allowed))
        raise InvalidTransitionError(
            job_id, current, action.value, f"job must be {expected}"
        )
    return target
