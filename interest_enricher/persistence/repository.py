"""Repository interface and its SQLAlchemy implementation.

Every pipeline read and write goes through ``Repository``. Each call runs
in its own short session so no transaction is held across an await.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Generator, Iterable, Optional, Protocol, Sequence, runtime_checkable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from interest_enricher.exceptions import RepositoryError
from interest_enricher.persistence.models import (
    AppSetting,
    EnrichmentJob,
    Item,
    Suggestion,
    SuggestionCacheEntry,
    utcnow,
)
from interest_enricher.persistence.records import (
    CacheRecord,
    ItemRecord,
    JobRecord,
    NewSuggestion,
    SuggestionRecord,
    as_utc,
)

logger = logging.getLogger(__name__)

JOB_FIELDS = {"status", "current_index", "paused_at", "name", "country"}
ITEM_FIELDS = {
    "status",
    "retry_count",
    "last_error_type",
    "selected_suggestion_id",
    "category_path",
}


@runtime_checkable
class Repository(Protocol):
    """Storage operations used by the enrichment pipeline."""

    def create_job(
        self,
        kind: str,
        name: str,
        labels: Sequence[str],
        country: str = "US",
        category_paths: Optional[dict[str, list[str]]] = None,
    ) -> JobRecord: ...

    def get_job(self, job_id: str) -> Optional[JobRecord]: ...

    def list_jobs(self, statuses: Optional[Iterable[str]] = None) -> list[JobRecord]: ...

    def update_job(self, job_id: str, *, only_from: Optional[Iterable[str]] = None, **fields) -> bool: ...

    def get_item(self, item_id: str) -> Optional[ItemRecord]: ...

    def get_item_at_position(self, job_id: str, position: int) -> Optional[ItemRecord]: ...

    def list_items(self, job_id: str, statuses: Optional[Iterable[str]] = None) -> list[ItemRecord]: ...

    def update_item(self, item_id: str, **fields) -> bool: ...

    def bulk_update_item_status(self, job_id: str, from_statuses: Iterable[str], to_status: str) -> int: ...

    def count_items_by_status(self, job_id: str) -> dict[str, int]: ...

    def count_items_with_suggestions(self, job_id: str) -> int: ...

    def list_suggestions(self, item_id: str) -> list[SuggestionRecord]: ...

    def replace_suggestions(self, item_id: str, suggestions: Sequence[NewSuggestion]) -> list[SuggestionRecord]: ...

    def delete_suggestions(self, item_id: str) -> int: ...

    def update_suggestion_scores(
        self,
        item_id: str,
        scores: dict[str, float],
        best_match_id: Optional[str],
    ) -> int: ...

    def get_cache_entry(self, cache_key: str) -> Optional[CacheRecord]: ...

    def upsert_cache_entry(
        self,
        cache_key: str,
        suggestions: list[dict],
        country: str,
        created_at: Optional[datetime] = None,
    ) -> None: ...

    def delete_cache_entries(self, older_than: Optional[datetime] = None) -> int: ...

    def get_setting(self, key: str) -> Optional[str]: ...

    def set_setting(self, key: str, value: str) -> None: ...


def _plain(value):
    """Store enum members by value."""
    return value.value if isinstance(value, Enum) else value


def _plain_all(values: Iterable) -> list:
    return [_plain(v) for v in values]


def _job_record(job: EnrichmentJob) -> JobRecord:
    return JobRecord(
        id=job.id,
        kind=job.kind,
        name=job.name,
        country=job.country,
        status=job.status,
        current_index=job.current_index,
        paused_at=as_utc(job.paused_at),
        created_at=as_utc(job.created_at),
        updated_at=as_utc(job.updated_at),
    )


def _item_record(item: Item) -> ItemRecord:
    return ItemRecord(
        id=item.id,
        job_id=item.job_id,
        label=item.label,
        country=item.country,
        status=item.status,
        position=item.position,
        retry_count=item.retry_count or 0,
        last_error_type=item.last_error_type,
        category_path=list(item.category_path) if item.category_path else None,
        selected_suggestion_id=item.selected_suggestion_id,
        created_at=as_utc(item.created_at),
    )


def _suggestion_record(suggestion: Suggestion) -> SuggestionRecord:
    return SuggestionRecord(
        id=suggestion.id,
        item_id=suggestion.item_id,
        label=suggestion.label,
        external_id=suggestion.external_id,
        audience=suggestion.audience or 0,
        similarity_score=suggestion.similarity_score or 0.0,
        is_best_match=bool(suggestion.is_best_match),
        is_selected_by_user=bool(suggestion.is_selected_by_user),
    )


class SqlRepository:
    """``Repository`` backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session]):
        """
        Initialize the repository.

        Args:
            session_factory: Callable returning a new Session (e.g. a sessionmaker)
        """
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Repository operation %s failed: %s", operation, e)
            raise RepositoryError(operation, e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(
        self,
        kind: str,
        name: str,
        labels: Sequence[str],
        country: str = "US",
        category_paths: Optional[dict[str, list[str]]] = None,
    ) -> JobRecord:
        """Create a job and its items (one item per distinct label)."""
        category_paths = category_paths or {}
        with self._session("create_job") as session:
            job = EnrichmentJob(kind=_plain(kind), name=name, country=country, status="pending")
            session.add(job)

            seen: set[str] = set()
            position = 0
            for label in labels:
                label = label.strip()
                if not label or label in seen:
                    continue
                seen.add(label)
                job.items.append(
                    Item(
                        label=label,
                        country=country,
                        position=position,
                        category_path=category_paths.get(label),
                        status="pending",
                    )
                )
                position += 1

            session.flush()
            return _job_record(job)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self._session("get_job") as session:
            job = session.get(EnrichmentJob, job_id)
            return _job_record(job) if job else None

    def list_jobs(self, statuses: Optional[Iterable[str]] = None) -> list[JobRecord]:
        with self._session("list_jobs") as session:
            stmt = select(EnrichmentJob).order_by(EnrichmentJob.created_at)
            if statuses is not None:
                stmt = stmt.where(EnrichmentJob.status.in_(_plain_all(statuses)))
            return [_job_record(job) for job in session.execute(stmt).scalars().all()]

    def update_job(self, job_id: str, *, only_from: Optional[Iterable[str]] = None, **fields) -> bool:
        """
        Update job columns.

        Args:
            job_id: Job to update
            only_from: Apply only if the current status is one of these
            **fields: Columns to set (status, current_index, paused_at, ...)

        Returns:
            True if a row was updated
        """
        unknown = set(fields) - JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        values = {key: _plain(value) for key, value in fields.items()}
        values["updated_at"] = utcnow()

        with self._session("update_job") as session:
            stmt = update(EnrichmentJob).where(EnrichmentJob.id == job_id)
            if only_from is not None:
                stmt = stmt.where(EnrichmentJob.status.in_(_plain_all(only_from)))
            result = session.execute(stmt.values(**values))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        with self._session("get_item") as session:
            item = session.get(Item, item_id)
            return _item_record(item) if item else None

    def get_item_at_position(self, job_id: str, position: int) -> Optional[ItemRecord]:
        with self._session("get_item_at_position") as session:
            stmt = select(Item).where(Item.job_id == job_id, Item.position == position)
            item = session.execute(stmt).scalars().first()
            return _item_record(item) if item else None

    def list_items(self, job_id: str, statuses: Optional[Iterable[str]] = None) -> list[ItemRecord]:
        """Items of a job in creation order, optionally filtered by status."""
        with self._session("list_items") as session:
            stmt = (
                select(Item)
                .where(Item.job_id == job_id)
                .order_by(Item.position, Item.created_at)
            )
            if statuses is not None:
                stmt = stmt.where(Item.status.in_(_plain_all(statuses)))
            return [_item_record(item) for item in session.execute(stmt).scalars().all()]

    def update_item(self, item_id: str, **fields) -> bool:
        unknown = set(fields) - ITEM_FIELDS
        if unknown:
            raise ValueError(f"Unknown item fields: {sorted(unknown)}")

        values = {key: _plain(value) for key, value in fields.items()}
        values["updated_at"] = utcnow()

        with self._session("update_item") as session:
            result = session.execute(
                update(Item).where(Item.id == item_id).values(**values)
            )
            return result.rowcount > 0

    def bulk_update_item_status(self, job_id: str, from_statuses: Iterable[str], to_status: str) -> int:
        with self._session("bulk_update_item_status") as session:
            result = session.execute(
                update(Item)
                .where(Item.job_id == job_id)
                .where(Item.status.in_(_plain_all(from_statuses)))
                .values(status=_plain(to_status), updated_at=utcnow())
            )
            return result.rowcount

    def count_items_by_status(self, job_id: str) -> dict[str, int]:
        with self._session("count_items_by_status") as session:
            stmt = (
                select(Item.status, func.count(Item.id))
                .where(Item.job_id == job_id)
                .group_by(Item.status)
            )
            return {status: count for status, count in session.execute(stmt).all()}

    def count_items_with_suggestions(self, job_id: str) -> int:
        with self._session("count_items_with_suggestions") as session:
            stmt = (
                select(func.count(func.distinct(Suggestion.item_id)))
                .join(Item, Suggestion.item_id == Item.id)
                .where(Item.job_id == job_id)
            )
            return session.execute(stmt).scalar_one()

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def list_suggestions(self, item_id: str) -> list[SuggestionRecord]:
        """Suggestions of an item, best score first."""
        with self._session("list_suggestions") as session:
            stmt = (
                select(Suggestion)
                .where(Suggestion.item_id == item_id)
                .order_by(Suggestion.similarity_score.desc(), Suggestion.created_at)
            )
            return [_suggestion_record(s) for s in session.execute(stmt).scalars().all()]

    def replace_suggestions(self, item_id: str, suggestions: Sequence[NewSuggestion]) -> list[SuggestionRecord]:
        """Delete an item's suggestions and insert new ones in one transaction."""
        with self._session("replace_suggestions") as session:
            session.execute(delete(Suggestion).where(Suggestion.item_id == item_id))
            rows = [
                Suggestion(
                    item_id=item_id,
                    label=s.label,
                    external_id=s.external_id,
                    audience=s.audience,
                    similarity_score=s.similarity_score,
                    is_best_match=s.is_best_match,
                    is_selected_by_user=False,
                )
                for s in suggestions
            ]
            session.add_all(rows)
            session.flush()
            return [_suggestion_record(row) for row in rows]

    def delete_suggestions(self, item_id: str) -> int:
        with self._session("delete_suggestions") as session:
            result = session.execute(delete(Suggestion).where(Suggestion.item_id == item_id))
            return result.rowcount

    def update_suggestion_scores(
        self,
        item_id: str,
        scores: dict[str, float],
        best_match_id: Optional[str],
    ) -> int:
        """Set new similarity scores and move the best-match flag."""
        with self._session("update_suggestion_scores") as session:
            stmt = select(Suggestion).where(Suggestion.item_id == item_id)
            updated = 0
            for suggestion in session.execute(stmt).scalars().all():
                if suggestion.id in scores:
                    suggestion.similarity_score = scores[suggestion.id]
                    updated += 1
                suggestion.is_best_match = suggestion.id == best_match_id
            return updated

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get_cache_entry(self, cache_key: str) -> Optional[CacheRecord]:
        with self._session("get_cache_entry") as session:
            entry = session.get(SuggestionCacheEntry, cache_key)
            if entry is None:
                return None
            return CacheRecord(
                cache_key=entry.cache_key,
                country=entry.country,
                suggestions=list(entry.suggestions or []),
                created_at=as_utc(entry.created_at),
            )

    def upsert_cache_entry(
        self,
        cache_key: str,
        suggestions: list[dict],
        country: str,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Insert or overwrite a cache row (last write wins)."""
        with self._session("upsert_cache_entry") as session:
            session.merge(
                SuggestionCacheEntry(
                    cache_key=cache_key,
                    suggestions=suggestions,
                    country=country,
                    created_at=created_at or utcnow(),
                )
            )

    def delete_cache_entries(self, older_than: Optional[datetime] = None) -> int:
        """Delete cache rows created before ``older_than`` (all rows if None)."""
        with self._session("delete_cache_entries") as session:
            stmt = delete(SuggestionCacheEntry)
            if older_than is not None:
                stmt = stmt.where(SuggestionCacheEntry.created_at < older_than)
            return session.execute(stmt).rowcount

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> Optional[str]:
        with self._session("get_setting") as session:
            setting = session.get(AppSetting, key)
            return setting.value if setting else None

    def set_setting(self, key: str, value: str) -> None:
        with self._session("set_setting") as session:
            session.merge(AppSetting(key=key, value=str(value)))
