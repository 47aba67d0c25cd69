"""Two-tier cache of raw search results.

An in-process tier with a short TTL serves repeats inside a batch; a
repository-backed tier with a longer TTL serves repeats across runs. Both
tiers expire lazily on read.
"""
import logging
import re
import time
import unicodedata
from datetime import datetime
from typing import Callable, Optional, Protocol

from interest_enricher.exceptions import RepositoryError
from interest_enricher.persistence.models import utcnow
from interest_enricher.persistence.repository import Repository

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_term(term: str) -> str:
    """Lowercase, trim, collapse whitespace and strip diacritics."""
    term = _WHITESPACE.sub(" ", term.strip().lower())
    decomposed = unicodedata.normalize("NFD", term)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def make_cache_key(term: str, country: str) -> str:
    """Build the cache key for a term and country.

    >>> make_cache_key("Café ", "FR") == make_cache_key("cafe", "fr")
    True
    """
    return f"{normalize_term(term)}::{country.strip().lower()}"


class CacheTier(Protocol):
    """One storage level of the suggestion cache."""

    name: str

    def get(self, key: str) -> Optional[list[dict]]: ...

    def set(self, key: str, suggestions: list[dict], country: str) -> None: ...

    def clear(self) -> None: ...


class MemoryCacheTier:
    """In-process map with read-time TTL eviction."""

    name = "memory"

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, list[dict]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[list[dict]]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        stored_at, suggestions = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return list(suggestions)

    def set(self, key: str, suggestions: list[dict], country: str) -> None:
        self._entries[key] = (self._clock(), list(suggestions))

    def clear(self) -> None:
        self._entries.clear()


class PersistentCacheTier:
    """Repository-backed tier; rows older than the TTL read as misses."""

    name = "persistent"

    def __init__(
        self,
        repository: Repository,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def get(self, key: str) -> Optional[list[dict]]:
        entry = self.repository.get_cache_entry(key)
        if entry is None:
            return None

        if entry.created_at is not None:
            age = (self._clock() - entry.created_at).total_seconds()
            if age >= self.ttl_seconds:
                return None
        return list(entry.suggestions)

    def set(self, key: str, suggestions: list[dict], country: str) -> None:
        self.repository.upsert_cache_entry(key, suggestions, country, created_at=self._clock())

    def clear(self) -> None:
        self.repository.delete_cache_entries()


class SuggestionCache:
    """Read-through cache combining a memory tier and a persistent tier.

    Usage:
        cache = SuggestionCache(MemoryCacheTier(), PersistentCacheTier(repo))
        hit = cache.get("Coca Cola", "US")
        if hit is None:
            ...
            cache.set("Coca Cola", "US", candidates)
    """

    def __init__(self, memory: CacheTier, persistent: Optional[CacheTier] = None):
        self.memory = memory
        self.persistent = persistent
        self._hits = {"memory": 0, "persistent": 0}
        self._misses = 0

    @classmethod
    def from_settings(cls, repository: Repository, settings) -> "SuggestionCache":
        return cls(
            MemoryCacheTier(ttl_seconds=settings.memory_cache_ttl),
            PersistentCacheTier(repository, ttl_seconds=settings.db_cache_ttl),
        )

    def get(self, term: str, country: str) -> Optional[list[dict]]:
        """Return cached candidate dicts, or None when not cached."""
        key = make_cache_key(term, country)

        suggestions = self.memory.get(key)
        if suggestions is not None:
            self._hits["memory"] += 1
            return suggestions

        if self.persistent is not None:
            try:
                suggestions = self.persistent.get(key)
            except RepositoryError as e:
                logger.warning("Persistent cache read failed for %s: %s", key, e)
                suggestions = None

            if suggestions is not None:
                self._hits["persistent"] += 1
                self.memory.set(key, suggestions, country)
                return suggestions

        self._misses += 1
        return None

    def set(self, term: str, country: str, suggestions: list[dict]) -> None:
        """Write a non-empty result to both tiers (last write wins)."""
        if not suggestions:
            return

        key = make_cache_key(term, country)
        self.memory.set(key, suggestions, country)

        if self.persistent is not None:
            try:
                self.persistent.set(key, suggestions, country)
            except RepositoryError as e:
                logger.warning("Persistent cache write failed for %s: %s", key, e)

    def clear(self) -> None:
        self.memory.clear()
        if self.persistent is not None:
            self.persistent.clear()

    def stats(self) -> dict:
        """Hit/miss counters and tier configuration."""
        stats = {
            "memory_hits": self._hits["memory"],
            "persistent_hits": self._hits["persistent"],
            "misses": self._misses,
            "memory_ttl_seconds": getattr(self.memory, "ttl_seconds", None),
            "persistent_ttl_seconds": getattr(self.persistent, "ttl_seconds", None),
        }
        try:
            stats["memory_entries"] = len(self.memory)
        except TypeError:
            stats["memory_entries"] = None
        return stats
