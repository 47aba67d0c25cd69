"""Maintenance sweep for the persistent suggestion cache."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from interest_enricher.persistence.models import utcnow
from interest_enricher.persistence.repository import Repository

logger = logging.getLogger(__name__)


def purge_expired_cache(
    repository: Repository,
    ttl_seconds: float,
    now: Optional[datetime] = None,
) -> int:
    """Delete persistent cache rows older than the TTL.

    Reads already treat such rows as misses; this only reclaims space.
    Scheduled periodically by the service entry point.

    Args:
        repository: Storage to clean
        ttl_seconds: Persistent cache time-to-live
        now: Reference time (defaults to current UTC time)

    Returns:
        Number of cache rows deleted
    """
    cutoff = (now or utcnow()) - timedelta(seconds=ttl_seconds)
    purged = repository.delete_cache_entries(older_than=cutoff)
    if purged > 0:
        logger.info("Purged %s expired cache entries (older than %s)", purged, cutoff.isoformat())
    else:
        logger.debug("No expired cache entries to purge")
    return purged
