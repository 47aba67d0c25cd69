"""Similarity scoring and ranking of search candidates."""
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from interest_enricher.scoring.weights import DEFAULT_WEIGHTS, ScoreWeights
from interest_enricher.search.base import InterestCandidate


def text_similarity(a: str, b: str) -> float:
    """Jaccard similarity over lowercased whitespace tokens."""
    if not a or not b:
        return 0.0
    a = a.lower()
    b = b.lower()
    if a == b:
        return 1.0
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def context_score(candidate_path: Optional[Sequence[str]], context_path: Optional[Sequence[str]]) -> float:
    """1 for an identical category path, 0 for a different one, 0.5 if unknown."""
    if not context_path or not candidate_path:
        return 0.5
    return 1.0 if list(candidate_path) == list(context_path) else 0.0


def audience_score(audience: Optional[int]) -> float:
    """Log-scaled audience size, saturating around one million people."""
    if not audience or audience < 0:
        return 0.0
    return min(1.0, math.log10(audience + 1) / 6)


def brand_score(label: str, brand: Optional[str]) -> float:
    """1 if the label carries the known brand, 0 if not, 0.5 if no brand is known."""
    if not brand:
        return 0.5
    return 1.0 if brand.lower() in (label or "").lower() else 0.0


def interest_type_score(candidate_type: Optional[str]) -> float:
    return 1.0 if candidate_type == "interest" else 0.5


@dataclass
class ScoreBreakdown:
    """Per-factor scores and the combined 0-100 score."""

    factors: dict[str, float]
    weights: dict[str, float]
    score: float


@dataclass
class ScoredCandidate:
    """A candidate with its similarity score."""

    candidate: InterestCandidate
    score: float  # 0-100
    is_best_match: bool = False
    factors: dict[str, float] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.candidate.name

    @property
    def similarity(self) -> float:
        """Score as a 0-1 fraction (storage form)."""
        return round(self.score / 100, 3)


def _round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


class SimilarityScorer:
    """Score and rank candidates against a query term."""

    def __init__(self, weights: ScoreWeights = DEFAULT_WEIGHTS):
        """
        Initialize the scorer.

        Args:
            weights: Factor weights (zero-weight factors are ignored)
        """
        self.weights = weights
        self._normalized = weights.normalized()

    def breakdown(
        self,
        query: str,
        candidate: InterestCandidate,
        context_path: Optional[Sequence[str]] = None,
    ) -> ScoreBreakdown:
        factors = {
            "textual": text_similarity(query, candidate.name),
            "contextual": context_score(candidate.path, context_path),
            "audience": audience_score(candidate.audience),
            "brand": brand_score(candidate.name, candidate.brand),
            "interest_type": interest_type_score(candidate.type),
        }
        total = sum(factors[name] * weight for name, weight in self._normalized.items())
        score = min(100.0, max(0.0, _round_half_up(total * 100)))
        return ScoreBreakdown(factors=factors, weights=dict(self._normalized), score=score)

    def score(
        self,
        query: str,
        candidate: InterestCandidate,
        context_path: Optional[Sequence[str]] = None,
    ) -> float:
        """
        Score one candidate.

        Returns:
            Score between 0 and 100, rounded to one decimal
        """
        return self.breakdown(query, candidate, context_path).score

    def rank(
        self,
        query: str,
        candidates: Sequence[InterestCandidate],
        context_path: Optional[Sequence[str]] = None,
        min_score: Optional[float] = None,
    ) -> list[ScoredCandidate]:
        """
        Score candidates and sort them best first.

        Ties keep the order returned by the API. The first entry is flagged
        as best match.

        Args:
            query: Search term
            candidates: Candidates to score
            context_path: Target category path of the item, if any
            min_score: Drop candidates scoring below this (0-100)

        Returns:
            List of ScoredCandidate, sorted by score descending
        """
        scored: list[ScoredCandidate] = []
        for candidate in candidates:
            result = self.breakdown(query, candidate, context_path)
            if min_score is not None and result.score < min_score:
                continue
            scored.append(
                ScoredCandidate(candidate=candidate, score=result.score, factors=result.factors)
            )

        # sort() is stable, so equal scores keep API order
        scored.sort(key=lambda s: s.score, reverse=True)
        if scored:
            scored[0].is_best_match = True
        return scored


def calculate_similarity_score(
    query: str,
    candidate: InterestCandidate,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
    context_path: Optional[Sequence[str]] = None,
) -> float:
    """Convenience wrapper around ``SimilarityScorer.score``."""
    return SimilarityScorer(weights).score(query, candidate, context_path)
