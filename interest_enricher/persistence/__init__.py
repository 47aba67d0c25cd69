"""Persistence layer: ORM models, sessions and the repository."""
from .records import CacheRecord, ItemRecord, JobRecord, NewSuggestion, SuggestionRecord
from .repository import Repository, SqlRepository

__all__ = [
    "Repository",
    "SqlRepository",
    "JobRecord",
    "ItemRecord",
    "SuggestionRecord",
    "NewSuggestion",
    "CacheRecord",
]
