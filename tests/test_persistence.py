"""Tests for the SQLAlchemy repository, cleanup and run options."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from interest_enricher.exceptions import RepositoryError
from interest_enricher.persistence import NewSuggestion, Repository, SqlRepository
from interest_enricher.persistence.cleanup import purge_expired_cache
from interest_enricher.pipeline.options import load_run_options
from interest_enricher.pipeline.state import ItemStatus, JobStatus
from interest_enricher.scoring import DEFAULT_WEIGHTS


class TestSchema:
    def test_tables_created(self, engine):
        tables = set(inspect(engine).get_table_names())
        assert {"enrichment_jobs", "items", "suggestions", "suggestion_cache", "app_settings"} <= tables


class TestJobs:
    """Job and item storage."""

    def test_implements_protocol(self, repository):
        assert isinstance(repository, Repository)

    def test_create_job_assigns_positions_and_dedupes(self, repository):
        job = repository.create_job(
            "interest_check",
            "Import",
            ["Surf", " Ski ", "Surf", "", "Sail"],
            country="FR",
            category_paths={"Ski": ["Sports", "Winter"]},
        )

        assert job.status == "pending"
        items = repository.list_items(job.id)
        assert [(i.label, i.position) for i in items] == [("Surf", 0), ("Ski", 1), ("Sail", 2)]
        assert all(i.country == "FR" for i in items)
        assert items[1].category_path == ["Sports", "Winter"]

    def test_update_job_only_from(self, repository, make_job):
        job = make_job(["a"])

        assert not repository.update_job(job.id, only_from=[JobStatus.PAUSED], status=JobStatus.PROCESSING)
        assert repository.get_job(job.id).status == "pending"

        assert repository.update_job(job.id, only_from=[JobStatus.PENDING], status=JobStatus.PROCESSING)
        assert repository.get_job(job.id).status == "processing"

    def test_update_job_rejects_unknown_field(self, repository, make_job):
        with pytest.raises(ValueError):
            repository.update_job(make_job(["a"]).id, kind="other")

    def test_list_jobs_by_status(self, repository, make_job):
        first = make_job(["a"], name="first")
        make_job(["b"], name="second")
        repository.update_job(first.id, status="processing")

        assert [j.id for j in repository.list_jobs(["processing"])] == [first.id]
        assert len(repository.list_jobs()) == 2

    def test_bulk_update_and_counts(self, repository, make_job):
        job = make_job(["a", "b", "c"])
        first = repository.list_items(job.id)[0]
        repository.update_item(first.id, status=ItemStatus.DONE)

        moved = repository.bulk_update_item_status(job.id, [ItemStatus.PENDING], ItemStatus.CANCELLED)

        assert moved == 2
        assert repository.count_items_by_status(job.id) == {"done": 1, "cancelled": 2}
        assert [i.label for i in repository.list_items(job.id, [ItemStatus.CANCELLED])] == ["b", "c"]

    def test_get_item_at_position(self, repository, make_job):
        job = make_job(["a", "b"])
        assert repository.get_item_at_position(job.id, 1).label == "b"
        assert repository.get_item_at_position(job.id, 5) is None


class TestSuggestions:
    """Suggestion replacement and scoring updates."""

    def test_replace_deletes_previous(self, repository, make_job):
        item = repository.list_items(make_job(["a"]).id)[0]
        repository.replace_suggestions(item.id, [NewSuggestion("old", "1", 10, 0.5, True)])

        stored = repository.replace_suggestions(
            item.id,
            [NewSuggestion("new", "2", 20, 0.9, True), NewSuggestion("other", None, 0, 0.1)],
        )

        assert len(stored) == 2
        assert [s.label for s in repository.list_suggestions(item.id)] == ["new", "other"]

    def test_count_items_with_suggestions(self, repository, make_job):
        job = make_job(["a", "b"])
        first = repository.list_items(job.id)[0]
        repository.replace_suggestions(
            first.id,
            [NewSuggestion("x", "1", 0, 0.5, True), NewSuggestion("y", "2", 0, 0.4)],
        )
        assert repository.count_items_with_suggestions(job.id) == 1

    def test_update_scores_moves_best_match(self, repository, make_job):
        item = repository.list_items(make_job(["a"]).id)[0]
        first, second = repository.replace_suggestions(
            item.id,
            [NewSuggestion("x", "1", 0, 0.9, True), NewSuggestion("y", "2", 0, 0.1)],
        )

        updated = repository.update_suggestion_scores(item.id, {first.id: 0.2, second.id: 0.8}, second.id)

        assert updated == 2
        best = repository.list_suggestions(item.id)[0]
        assert best.id == second.id
        assert best.is_best_match
        assert best.similarity_score == 0.8


class TestRepositoryErrors:
    def test_sqlalchemy_errors_are_wrapped(self):
        session = MagicMock()
        session.get.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        repository = SqlRepository(lambda: session)

        with pytest.raises(RepositoryError) as exc_info:
            repository.get_job("job-1")

        assert exc_info.value.operation == "get_job"
        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestSettings:
    def test_round_trip(self, repository):
        assert repository.get_setting("facebookBatchSize") is None
        repository.set_setting("facebookBatchSize", "50")
        repository.set_setting("facebookBatchSize", "60")
        assert repository.get_setting("facebookBatchSize") == "60"


class TestCacheCleanup:
    """Maintenance sweep of the persistent cache."""

    def test_purge_expired(self, repository):
        now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        repository.upsert_cache_entry("old::us", [{"name": "a"}], "US", created_at=now - timedelta(hours=30))
        repository.upsert_cache_entry("new::us", [{"name": "b"}], "US", created_at=now - timedelta(hours=1))

        purged = purge_expired_cache(repository, ttl_seconds=24 * 3600, now=now)

        assert purged == 1
        assert repository.get_cache_entry("old::us") is None
        assert repository.get_cache_entry("new::us") is not None

    def test_purge_defaults_to_current_time_and_logs(self, repository, caplog):
        caplog.set_level("INFO", logger="interest_enricher.persistence.cleanup")
        repository.upsert_cache_entry(
            "old::us", [{"name": "a"}], "US", created_at=datetime.now(timezone.utc) - timedelta(days=3)
        )

        assert purge_expired_cache(repository, ttl_seconds=24 * 3600) == 1
        assert "Purged 1 expired cache entries" in caplog.text
        assert purge_expired_cache(repository, ttl_seconds=24 * 3600) == 0


class TestRunOptions:
    """AppSetting overrides read at run start."""

    def test_defaults(self, repository):
        options = load_run_options(repository, batch_size=100, pause_ms=5000)
        assert options.weights == DEFAULT_WEIGHTS
        assert options.batch_size == 100
        assert options.pause_seconds == 5.0
        assert options.relevance_threshold is None

    def test_overrides(self, repository):
        repository.set_setting("facebookBatchSize", "25")
        repository.set_setting("facebookPauseMs", "0")
        repository.set_setting("facebookRelevanceScoreThreshold", "40")
        repository.set_setting("scoreWeights", json.dumps({"textual": 1}))

        options = load_run_options(repository)

        assert options.batch_size == 25
        assert options.pause_seconds == 0.0
        assert options.relevance_threshold == 40.0
        assert options.weights.textual == 1

    def test_invalid_values_ignored(self, repository):
        repository.set_setting("facebookBatchSize", "lots")
        repository.set_setting("facebookPauseMs", "-5")
        repository.set_setting("facebookRelevanceScoreThreshold", "150")

        options = load_run_options(repository, batch_size=10, pause_ms=1000)

        assert options.batch_size == 10
        assert options.pause_seconds == 1.0
        assert options.relevance_threshold is None
