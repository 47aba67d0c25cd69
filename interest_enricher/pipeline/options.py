"""Per-run options read from stored application settings."""
import logging
from dataclasses import dataclass
from typing import Optional

from interest_enricher.persistence.repository import Repository
from interest_enricher.scoring.weights import DEFAULT_WEIGHTS, ScoreWeights, parse_score_weights

logger = logging.getLogger(__name__)

SCORE_WEIGHTS_KEY = "scoreWeights"
BATCH_SIZE_KEY = "facebookBatchSize"
PAUSE_MS_KEY = "facebookPauseMs"
RELEVANCE_THRESHOLD_KEY = "facebookRelevanceScoreThreshold"


@dataclass
class RunOptions:
    """Settings snapshot taken when a job run starts."""

    weights: ScoreWeights = DEFAULT_WEIGHTS
    batch_size: int = 100
    pause_seconds: float = 5.0
    relevance_threshold: Optional[float] = None


def _int_setting(raw: Optional[str], key: str, minimum: int = 1) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s setting: %r", key, raw)
        return None
    if value < minimum:
        logger.warning("Ignoring out-of-range %s setting: %r", key, raw)
        return None
    return value


def _threshold(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s setting: %r", RELEVANCE_THRESHOLD_KEY, raw)
        return None
    if not 0 <= value <= 100:
        logger.warning("Ignoring out-of-range %s setting: %r", RELEVANCE_THRESHOLD_KEY, raw)
        return None
    return value


def load_run_options(repository: Repository, batch_size: int = 100, pause_ms: int = 5000) -> RunOptions:
    """Read weights, throttling and relevance threshold.

    Stored settings override the given defaults; invalid values are
    logged and ignored.
    """
    stored_batch = _int_setting(repository.get_setting(BATCH_SIZE_KEY), BATCH_SIZE_KEY)
    stored_pause = _int_setting(repository.get_setting(PAUSE_MS_KEY), PAUSE_MS_KEY, minimum=0)

    return RunOptions(
        weights=parse_score_weights(repository.get_setting(SCORE_WEIGHTS_KEY)),
        batch_size=stored_batch if stored_batch is not None else batch_size,
        pause_seconds=(stored_pause if stored_pause is not None else pause_ms) / 1000.0,
        relevance_threshold=_threshold(repository.get_setting(RELEVANCE_THRESHOLD_KEY)),
    )
