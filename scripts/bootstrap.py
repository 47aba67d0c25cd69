"""Bootstrap module for scripts - handles path setup and common wiring.

Usage:
    from scripts.bootstrap import settings, init_db, get_repository
"""
import sys
from pathlib import Path

# Add project root to path
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

# Now we can import from project modules
from config.settings import settings
from interest_enricher.persistence.database import SessionLocal, init_db
from interest_enricher.persistence.repository import SqlRepository


def get_repository() -> SqlRepository:
    """Repository bound to the configured database."""
    return SqlRepository(SessionLocal)


# Re-export for convenience
__all__ = ["settings", "init_db", "get_repository"]
