"""Main entry point for the Interest Enricher service.

Recovers jobs interrupted by a previous process, then keeps the event loop
alive for enrichment runs while APScheduler purges expired cache rows.
"""
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import settings
from interest_enricher.cache.suggestion_cache import SuggestionCache
from interest_enricher.logging_config import setup_logging
from interest_enricher.persistence.cleanup import purge_expired_cache
from interest_enricher.persistence.database import SessionLocal, init_db
from interest_enricher.persistence.repository import Repository, SqlRepository
from interest_enricher.pipeline.orchestrator import EnrichmentOrchestrator
from interest_enricher.search.facebook_client import FacebookInterestSearchClient

logger = logging.getLogger(__name__)


def build_orchestrator(repository: Repository) -> EnrichmentOrchestrator:
    """Wire the search client, cache and orchestrator from settings."""
    client = FacebookInterestSearchClient(
        access_token=settings.facebook_access_token,
        api_version=settings.facebook_api_version,
        limit=settings.facebook_search_limit,
        timeout=settings.request_timeout_seconds,
        locale=settings.facebook_locale,
    )
    cache = SuggestionCache.from_settings(repository, settings)
    return EnrichmentOrchestrator.from_settings(repository, client, cache, settings)


def run_cache_cleanup(repository: Repository) -> int:
    """Scheduled job: purge expired persistent cache rows."""
    try:
        return purge_expired_cache(repository, settings.db_cache_ttl)
    except Exception as e:
        logger.error("Cache cleanup failed: %s", e, exc_info=True)
        return 0


async def async_main():
    """Async main entry point."""
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        search_call_log_file=settings.search_call_log_file,
    )
    logger.info("Interest Enricher starting...")
    logger.info("Database: %s", settings.database_url)

    if not settings.facebook_access_token:
        logger.warning("FACEBOOK_ACCESS_TOKEN is not set; searches will fail with TOKEN_INVALID")

    # Initialize database
    init_db()
    logger.info("Database initialized")

    repository = SqlRepository(SessionLocal)
    orchestrator = build_orchestrator(repository)

    recovered = await orchestrator.recover_interrupted_jobs(settings.recovery_policy)
    if recovered:
        logger.info("Recovered %d interrupted jobs (policy: %s)", len(recovered), settings.recovery_policy)

    # Create scheduler
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_cache_cleanup,
        IntervalTrigger(minutes=settings.cache_cleanup_interval_minutes),
        args=[repository],
        id="cache_cleanup",
        name="Cache Cleanup",
        max_instances=1,
    )
    scheduler.start()
    logger.info("Scheduler started:")
    logger.info("  - Cache cleanup every %d minutes", settings.cache_cleanup_interval_minutes)

    try:
        run_cache_cleanup(repository)
        logger.info("Interest Enricher running. Press Ctrl+C to stop.")

        # Keep running forever
        while True:
            await asyncio.sleep(60)

    except asyncio.CancelledError:
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await orchestrator.search_client.close()


def main():
    """Main entry point."""
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown complete.")


if __name__ == "__main__":
    main()
