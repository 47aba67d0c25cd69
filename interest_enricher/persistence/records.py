"""Plain records exchanged between the pipeline and the repository.

The pipeline never touches ORM objects; the repository converts rows to
these detached dataclasses.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class JobRecord:
    id: str
    kind: str
    name: str
    country: str
    status: str
    current_index: Optional[int] = None
    paused_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ItemRecord:
    id: str
    job_id: str
    label: str
    country: str
    status: str
    position: int = 0
    retry_count: int = 0
    last_error_type: Optional[str] = None
    category_path: Optional[list[str]] = None
    selected_suggestion_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class SuggestionRecord:
    id: str
    item_id: str
    label: str
    external_id: Optional[str]
    audience: int
    similarity_score: float
    is_best_match: bool = False
    is_selected_by_user: bool = False


@dataclass
class NewSuggestion:
    """Suggestion about to be inserted."""

    label: str
    external_id: Optional[str]
    audience: int
    similarity_score: float
    is_best_match: bool = False


@dataclass
class CacheRecord:
    cache_key: str
    country: str
    suggestions: list[dict] = field(default_factory=list)
    created_at: Optional[datetime] = None
