"""
sitespeak_suggest.cache.strategies

Cache entry type and the pluggable eviction strategies.

A strategy is a callable ``(entries, now) -> key | None`` that names the
entry to evict from a tier, or ``None`` when it declines to evict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Mapping, Optional, Set, TypeVar

from ..models import SuggestionContext

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    timestamp: float                    # epoch secs when written
    ttl: float                          # secs
    hit_count: int = 0
    context: Optional[SuggestionContext] = None
    key: str = ""
    owner: Optional[str] = None         # user id the value was written for

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.ttl

    def age_ms(self, now: float) -> float:
        return max(0.0, now - self.timestamp) * 1000.0


EvictionStrategy = Callable[[Mapping[str, CacheEntry[Any]], float], Optional[str]]


# --------------------------------------------------------------------------- #
# Registry
# --------------------------------------------------------------------------- #

class EvictionStrategyRegistry:
    """Registry of available eviction strategies (pluggable at runtime)."""

    _registry: Dict[str, EvictionStrategy] = {}

    @classmethod
    def register(cls, name: str, fn: EvictionStrategy) -> None:
        if name in cls._registry:
            raise ValueError(f"Eviction strategy '{name}' already registered.")
        LOGGER.debug("Registering eviction strategy %s", name)
        cls._registry[name] = fn

    @classmethod
    def unregister(cls, name: str) -> None:
        cls._registry.pop(name, None)

    @classmethod
    def get(cls, name: str) -> EvictionStrategy:
        try:
            return cls._registry[name]
        except KeyError as exc:
            raise ValueError(f"Unknown eviction strategy '{name}'") from exc

    @classmethod
    def available(cls) -> Set[str]:
        return set(cls._registry)


# ---- Built-in strategies

def _lru(entries: Mapping[str, CacheEntry[Any]], now: float) -> Optional[str]:
    """Oldest write goes first."""
    if not entries:
        return None
    return min(entries, key=lambda k: entries[k].timestamp)


def _lfu(entries: Mapping[str, CacheEntry[Any]], now: float) -> Optional[str]:
    """Fewest hits goes first."""
    if not entries:
        return None
    return min(entries, key=lambda k: entries[k].hit_count)


def _ttl_first(entries: Mapping[str, CacheEntry[Any]], now: float) -> Optional[str]:
    """First expired entry in insertion order; no-op when none has expired."""
    for key, entry in entries.items():
        if not entry.is_valid(now):
            return key
    return None


def _adaptive(entries: Mapping[str, CacheEntry[Any]], now: float) -> Optional[str]:
    """Expired entries win outright, otherwise the highest ``age_ms / (hits + 1)``."""
    victim: Optional[str] = None
    worst = -1.0
    for key, entry in entries.items():
        if not entry.is_valid(now):
            return key
        score = entry.age_ms(now) / (entry.hit_count + 1)
        if score > worst:
            worst = score
            victim = key
    return victim


EvictionStrategyRegistry.register("lru", _lru)
EvictionStrategyRegistry.register("lfu", _lfu)
EvictionStrategyRegistry.register("ttl", _ttl_first)
EvictionStrategyRegistry.register("adaptive", _adaptive)
