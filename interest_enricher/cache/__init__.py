"""Suggestion cache."""
from .suggestion_cache import (
    CacheTier,
    MemoryCacheTier,
    PersistentCacheTier,
    SuggestionCache,
    make_cache_key,
    normalize_term,
)

__all__ = [
    "CacheTier",
    "MemoryCacheTier",
    "PersistentCacheTier",
    "SuggestionCache",
    "make_cache_key",
    "normalize_term",
]
