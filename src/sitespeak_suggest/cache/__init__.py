"""Multi-tier suggestion cache and its eviction strategies."""

from .strategies import CacheEntry, EvictionStrategyRegistry
from .suggestion_cache import SuggestionCache

__all__ = ["CacheEntry", "EvictionStrategyRegistry", "SuggestionCache"]
