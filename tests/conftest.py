"""Pytest fixtures for Interest Enricher tests."""
import asyncio
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from interest_enricher.cache.suggestion_cache import MemoryCacheTier, PersistentCacheTier, SuggestionCache
from interest_enricher.persistence.models import Base
from interest_enricher.persistence.repository import SqlRepository
from interest_enricher.pipeline.orchestrator import EnrichmentOrchestrator
from interest_enricher.search.base import BaseSearchClient, InterestCandidate


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def repository(session_factory):
    return SqlRepository(session_factory)


@pytest.fixture
def make_job(repository):
    """Create a job with the given labels."""

    def _make(labels, kind="project", name="Test job", country="US", category_paths=None):
        return repository.create_job(kind, name, labels, country=country, category_paths=category_paths)

    return _make


# =============================================================================
# SEARCH FIXTURES
# =============================================================================


def make_candidate(name, candidate_id=None, lower=1000, upper=2000, **kwargs):
    """Build an InterestCandidate with sensible defaults."""
    return InterestCandidate(
        name=name,
        candidate_id=candidate_id or f"id-{name.lower().replace(' ', '-')}",
        audience_lower_bound=lower,
        audience_upper_bound=upper,
        type=kwargs.pop("type", "interest"),
        **kwargs,
    )


class FakeSearchClient(BaseSearchClient):
    """Search client with scripted responses.

    ``scripts`` maps a term to a list of responses (candidate lists or
    exceptions) consumed one per call; the last one repeats. Unscripted
    terms return a single candidate named after the term.
    """

    name = "fake"

    def __init__(self, scripts=None, delay=0.0, on_call=None, call_log=None):
        super().__init__(call_log=call_log)
        self.scripts = {term: list(responses) for term, responses in (scripts or {}).items()}
        self.delay = delay
        self.on_call = on_call
        self.calls: list[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _fetch(self, term, country):
        self.calls.append(term)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.on_call is not None:
                await self.on_call(term, len(self.calls))
            if self.delay:
                await asyncio.sleep(self.delay)

            script = self.scripts.get(term)
            if script:
                response = script.pop(0) if len(script) > 1 else script[0]
            else:
                response = [make_candidate(term)]

            if isinstance(response, Exception):
                raise response
            return list(response), 200
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_client():
    return FakeSearchClient()


@pytest.fixture
def cache(repository):
    return SuggestionCache(MemoryCacheTier(), PersistentCacheTier(repository))


@pytest.fixture
def make_orchestrator(repository, cache, fake_client):
    """Orchestrator with no backoff, jitter or throttle pauses."""

    def _make(client=None, **kwargs):
        options = {
            "max_concurrency": 5,
            "max_retries": 3,
            "pause_ms": 0,
            "retry_base_delay": 0.0,
            "retry_jitter": 0.0,
        }
        options.update(kwargs)
        return EnrichmentOrchestrator(repository, client or fake_client, cache, **options)

    return _make
