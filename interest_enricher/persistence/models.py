"""SQLAlchemy models for Interest Enricher."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class EnrichmentJob(Base):
    """A project or interest check undergoing enrichment."""

    __tablename__ = "enrichment_jobs"

    id = Column(String, primary_key=True, default=generate_uuid)
    kind = Column(String, nullable=False)  # project, interest_check
    name = Column(String, nullable=False)
    country = Column(String, nullable=False, default="US")

    # Status: pending, processing, paused, cancelled, done, error
    status = Column(String, nullable=False, default="pending", index=True)
    current_index = Column(Integer, nullable=True)  # Cursor, only while processing
    paused_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    items = relationship(
        "Item",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="Item.position",
    )

    def __repr__(self) -> str:
        return f"<EnrichmentJob {self.kind}:{self.name} ({self.status})>"


class Item(Base):
    """One search term to enrich (a critere or an interest)."""

    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("job_id", "label", name="uq_items_job_label"),
        Index("ix_items_job_status", "job_id", "status"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    job_id = Column(String, ForeignKey("enrichment_jobs.id"), nullable=False)
    label = Column(String, nullable=False)
    country = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Creation order within the job
    category_path = Column(JSON)  # Target category path used for contextual scoring

    # Status: pending, in_progress, done, failed, retry, cancelled
    status = Column(String, nullable=False, default="pending")
    retry_count = Column(Integer, nullable=False, default=0)
    last_error_type = Column(String, nullable=True)
    selected_suggestion_id = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    job = relationship("EnrichmentJob", back_populates="items")
    suggestions = relationship(
        "Suggestion",
        back_populates="item",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Item {self.label} ({self.status})>"


class Suggestion(Base):
    """A scored search candidate for an item."""

    __tablename__ = "suggestions"

    id = Column(String, primary_key=True, default=generate_uuid)
    item_id = Column(String, ForeignKey("items.id"), nullable=False, index=True)
    label = Column(String, nullable=False)
    external_id = Column(String, nullable=True)  # Null when the API gave no canonical id
    audience = Column(Integer, default=0)
    similarity_score = Column(Float, default=0.0)  # 0.0-1.0
    is_best_match = Column(Boolean, default=False)
    is_selected_by_user = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    item = relationship("Item", back_populates="suggestions")

    def __repr__(self) -> str:
        return f"<Suggestion {self.label} {self.similarity_score:.2f}>"


class SuggestionCacheEntry(Base):
    """Memoized search result keyed by normalized term + country."""

    __tablename__ = "suggestion_cache"

    cache_key = Column(String, primary_key=True)
    suggestions = Column(JSON, nullable=False)  # Raw candidate dicts
    country = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SuggestionCacheEntry {self.cache_key}>"


class AppSetting(Base):
    """Key/value settings edited by administrators."""

    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<AppSetting {self.key}>"
