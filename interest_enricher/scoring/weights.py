"""Score weight configuration."""
import json
import logging
from dataclasses import dataclass, fields
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Accept both the stored camelCase keys and attribute names
_KEY_ALIASES = {"interestType": "interest_type"}


@dataclass(frozen=True)
class ScoreWeights:
    """Relative weight of each similarity factor.

    Values lie in [0, 1] and need not sum to 1; they are normalized when a
    score is computed.
    """

    textual: float = 0.4
    contextual: float = 0.2
    audience: float = 0.2
    brand: float = 0.1
    interest_type: float = 0.1

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Weight '{f.name}' must be a number, got {value!r}")
            if not 0 <= value <= 1:
                raise ValueError(f"Weight '{f.name}' must be within [0, 1], got {value}")

    def as_dict(self) -> dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}

    def normalized(self) -> dict[str, float]:
        """Non-zero weights rescaled to sum to 1."""
        used = {name: value for name, value in self.as_dict().items() if value > 0}
        total = sum(used.values())
        if total == 0:
            return {}
        return {name: value / total for name, value in used.items()}

    @classmethod
    def from_mapping(cls, data: Mapping) -> "ScoreWeights":
        """Build weights from a dict; missing factors keep their default."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _KEY_ALIASES.get(key, key)
            if name in known:
                values[name] = value
        return cls(**values)


DEFAULT_WEIGHTS = ScoreWeights()


def parse_score_weights(raw: Optional[str]) -> ScoreWeights:
    """Parse the stored ``scoreWeights`` setting.

    Falls back to ``DEFAULT_WEIGHTS`` when the value is absent or cannot
    be parsed.
    """
    if not raw:
        return DEFAULT_WEIGHTS
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("scoreWeights must be a JSON object")
        return ScoreWeights.from_mapping(data)
    except (ValueError, TypeError) as e:
        logger.warning("Invalid scoreWeights setting (%s), using defaults", e)
        return DEFAULT_WEIGHTS
