"""Candidate similarity scoring."""
from .similarity import ScoredCandidate, SimilarityScorer, calculate_similarity_score
from .weights import DEFAULT_WEIGHTS, ScoreWeights, parse_score_weights

__all__ = [
    "SimilarityScorer",
    "ScoredCandidate",
    "calculate_similarity_score",
    "ScoreWeights",
    "DEFAULT_WEIGHTS",
    "parse_score_weights",
]
