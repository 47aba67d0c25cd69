#!/usr/bin/env python3
"""Create an enrichment job from a text file of terms (one per line).

Usage:
    python scripts/create_job.py terms.txt --name "Spring campaign" --kind project --country FR
"""
import argparse
import logging
import sys
from pathlib import Path

from scripts.bootstrap import get_repository, init_db, settings
from interest_enricher.logging_config import setup_logging
from interest_enricher.pipeline.state import JobKind

logger = logging.getLogger(__name__)


def read_terms(path: Path) -> list[str]:
    """Non-empty, stripped lines of a text file."""
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def main() -> int:
    parser = argparse.ArgumentParser(description="Create an enrichment job")
    parser.add_argument("terms_file", type=Path, help="Text file with one term per line")
    parser.add_argument("--name", required=True, help="Job name")
    parser.add_argument("--kind", choices=[k.value for k in JobKind], default=JobKind.PROJECT.value)
    parser.add_argument("--country", default="US", help="Two-letter country code")
    args = parser.parse_args()

    setup_logging(level=settings.log_level)
    init_db()

    terms = read_terms(args.terms_file)
    if not terms:
        logger.error("No terms found in %s", args.terms_file)
        return 1

    job = get_repository().create_job(args.kind, args.name, terms, country=args.country.upper())
    logger.info("Created %s job %s with %d terms", job.kind, job.id, len(terms))
    print(job.id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
