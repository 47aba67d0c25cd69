#!/usr/bin/env python3
"""Run one enrichment job to completion.

Usage:
    python scripts/run_enrichment.py <job_id> [--max-concurrency N]

Environment variables:
    DATABASE_URL: Database connection string
    FACEBOOK_ACCESS_TOKEN: Marketing API token (required for searches)
"""
import argparse
import asyncio
import logging
import sys

from scripts.bootstrap import get_repository, init_db, settings
from interest_enricher.logging_config import setup_logging
from interest_enricher.main import build_orchestrator
from interest_enricher.pipeline.progress import ProgressReporter

logger = logging.getLogger(__name__)


async def main(job_id: str, max_concurrency: int | None = None) -> int:
    """Run a job and log its final progress."""
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        search_call_log_file=settings.search_call_log_file,
    )

    logger.info("Interest Enricher - Job Run")
    logger.info("=" * 40)
    logger.info("Database: %s...", settings.database_url[:50])
    logger.info("Job: %s", job_id)

    init_db()
    repository = get_repository()
    orchestrator = build_orchestrator(repository)
    if max_concurrency:
        orchestrator.max_concurrency = max_concurrency

    try:
        status = await orchestrator.run_enrichment(job_id)
    finally:
        await orchestrator.search_client.close()

    progress = ProgressReporter(repository).get_progress(job_id)
    logger.info(
        "Job %s finished with status %s: %d/%d items (%.2f%%), %d failed",
        job_id,
        status,
        progress.current,
        progress.total,
        progress.percentage,
        progress.metrics.failed,
    )
    logger.info("Search calls: %s", orchestrator.search_client.call_log.summary())
    return 0 if status == "done" else 2


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run an enrichment job")
    parser.add_argument("job_id", help="ID of the job to run")
    parser.add_argument("--max-concurrency", type=int, default=None, help="Parallel searches")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(main(args.job_id, args.max_concurrency)))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        sys.exit(1)
    except Exception as e:
        logger.error("Error: %s", e)
        sys.exit(1)
