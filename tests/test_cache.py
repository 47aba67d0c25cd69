"""Tests for the two-tier suggestion cache."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from interest_enricher.cache import (
    MemoryCacheTier,
    PersistentCacheTier,
    SuggestionCache,
    make_cache_key,
)
from interest_enricher.exceptions import RepositoryError

SUGGESTIONS = [{"id": "6003", "name": "Coca-Cola", "audience_size_lower_bound": 1000}]


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestCacheKey:
    """Tests for cache key normalization."""

    def test_case_whitespace_and_accents(self):
        assert make_cache_key("Café", "FR") == make_cache_key("cafe ", "fr")

    def test_collapses_internal_whitespace(self):
        assert make_cache_key("  coca   cola ", "US") == "coca cola::us"

    def test_country_is_part_of_key(self):
        assert make_cache_key("coca cola", "US") != make_cache_key("coca cola", "FR")


class TestMemoryCacheTier:
    """Tests for the in-process tier."""

    def test_read_after_write(self):
        tier = MemoryCacheTier()
        tier.set("k", SUGGESTIONS, "US")
        assert tier.get("k") == SUGGESTIONS

    def test_expires_lazily(self):
        clock = FakeClock(100.0)
        tier = MemoryCacheTier(ttl_seconds=300, clock=clock)
        tier.set("k", SUGGESTIONS, "US")

        clock.now = 399.0
        assert tier.get("k") == SUGGESTIONS
        assert len(tier) == 1

        clock.now = 400.0
        assert tier.get("k") is None
        assert len(tier) == 0

    def test_miss(self):
        assert MemoryCacheTier().get("missing") is None


class TestPersistentCacheTier:
    """Tests for the repository-backed tier."""

    def test_read_after_write(self, repository):
        tier = PersistentCacheTier(repository)
        tier.set("coca cola::us", SUGGESTIONS, "US")
        assert tier.get("coca cola::us") == SUGGESTIONS

    def test_expired_rows_read_as_miss(self, repository):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        clock = FakeClock(now)
        tier = PersistentCacheTier(repository, ttl_seconds=24 * 3600, clock=clock)
        tier.set("coca cola::us", SUGGESTIONS, "US")

        clock.now = now + timedelta(hours=23)
        assert tier.get("coca cola::us") == SUGGESTIONS

        clock.now = now + timedelta(hours=25)
        assert tier.get("coca cola::us") is None
        # Lazy expiry leaves the row for the maintenance sweep
        assert repository.get_cache_entry("coca cola::us") is not None

    def test_last_write_wins(self, repository):
        tier = PersistentCacheTier(repository)
        tier.set("k", SUGGESTIONS, "US")
        tier.set("k", [{"id": "1", "name": "Pepsi"}], "US")
        assert tier.get("k") == [{"id": "1", "name": "Pepsi"}]


class TestSuggestionCache:
    """Tests for the combined read-through cache."""

    def test_miss_in_both_tiers(self, cache):
        assert cache.get("coca cola", "US") is None
        assert cache.stats()["misses"] == 1

    def test_set_writes_both_tiers(self, cache, repository):
        cache.set("Coca Cola", "US", SUGGESTIONS)

        assert cache.memory.get("coca cola::us") == SUGGESTIONS
        assert repository.get_cache_entry("coca cola::us").suggestions == SUGGESTIONS

    def test_empty_results_not_cached(self, cache, repository):
        cache.set("nothing", "US", [])
        assert cache.get("nothing", "US") is None
        assert repository.get_cache_entry("nothing::us") is None

    def test_persistent_hit_backfills_memory(self, repository):
        memory = MemoryCacheTier()
        cache = SuggestionCache(memory, PersistentCacheTier(repository))
        repository.upsert_cache_entry("coca cola::us", SUGGESTIONS, "US")

        assert cache.get("COCA COLA", "us") == SUGGESTIONS
        assert memory.get("coca cola::us") == SUGGESTIONS

        assert cache.get("coca cola", "US") == SUGGESTIONS
        stats = cache.stats()
        assert stats["persistent_hits"] == 1
        assert stats["memory_hits"] == 1

    def test_persistent_read_error_is_a_miss(self):
        persistent = MagicMock()
        persistent.get.side_effect = RepositoryError("get_cache_entry")
        cache = SuggestionCache(MemoryCacheTier(), persistent)

        assert cache.get("coca cola", "US") is None

    def test_persistent_write_error_is_logged(self, caplog):
        persistent = MagicMock()
        persistent.set.side_effect = RepositoryError("upsert_cache_entry")
        cache = SuggestionCache(MemoryCacheTier(), persistent)

        cache.set("coca cola", "US", SUGGESTIONS)

        assert cache.memory.get("coca cola::us") == SUGGESTIONS
        assert "Persistent cache write failed" in caplog.text

    def test_clear(self, cache, repository):
        cache.set("coca cola", "US", SUGGESTIONS)
        cache.clear()
        assert cache.get("coca cola", "US") is None
        assert repository.get_cache_entry("coca cola::us") is None

    def test_from_settings(self, repository):
        settings = MagicMock(memory_cache_ttl=60.0, db_cache_ttl=7200.0)
        cache = SuggestionCache.from_settings(repository, settings)

        stats = cache.stats()
        assert stats["memory_ttl_seconds"] == 60.0
        assert stats["persistent_ttl_seconds"] == 7200.0
        assert stats["memory_entries"] == 0

    @pytest.mark.parametrize("term", ["Café", "cafe", " CAFÉ  "])
    def test_accent_variants_share_entry(self, cache, term):
        cache.set("café", "FR", SUGGESTIONS)
        assert cache.get(term, "fr") == SUGGESTIONS
