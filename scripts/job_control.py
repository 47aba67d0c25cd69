#!/usr/bin/env python3
"""Pause, resume or cancel a job, or print its progress.

Usage:
    python scripts/job_control.py <job_id> pause|resume|cancel|progress

``resume`` continues the run in this process until the job stops again.
"""
import argparse
import asyncio
import json
import logging
import sys

from scripts.bootstrap import get_repository, init_db, settings
from interest_enricher.exceptions import EnricherError
from interest_enricher.logging_config import setup_logging
from interest_enricher.main import build_orchestrator
from interest_enricher.pipeline.progress import ProgressReporter

logger = logging.getLogger(__name__)

ACTIONS = ("pause", "resume", "cancel", "progress")


async def main(job_id: str, action: str) -> int:
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        search_call_log_file=settings.search_call_log_file,
    )
    init_db()
    repository = get_repository()

    if action == "progress":
        report = ProgressReporter(repository).get_progress(job_id)
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    orchestrator = build_orchestrator(repository)
    try:
        result = await orchestrator.set_job_control(job_id, action)
        print(json.dumps(result.to_dict(), indent=2))

        handle = orchestrator.get_handle(job_id)
        if handle is not None:
            logger.info("Running job %s until it stops...", job_id)
            status = await handle.wait()
            logger.info("Job %s stopped with status %s", job_id, status)
    finally:
        await orchestrator.search_client.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Control an enrichment job")
    parser.add_argument("job_id", help="ID of the job")
    parser.add_argument("action", choices=ACTIONS)
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(main(args.job_id, args.action)))
    except EnricherError as e:
        logger.error("%s", e)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        sys.exit(1)
