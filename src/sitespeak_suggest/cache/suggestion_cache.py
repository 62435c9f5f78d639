"""
sitespeak_suggest.cache.suggestion_cache

Three-tier suggestion cache:

* memory tier  - global, keyed by the exact cache key
* context tier - partitioned by :attr:`SuggestionContext.partition_key`
* user tier    - partitioned by user id

``get`` walks the tiers in that order and promotes hits upwards. Expiry is
lazy: a stale entry reads as a miss and stays put until the next sweep or
eviction. Capacity and eviction apply to the memory tier; the partitioned
tiers are bounded by TTL sweeps. Neither ``get`` nor ``set`` raises;
internal failures are logged and degrade to a miss or a no-op.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Union

from ..config import CacheConfig, EvictionStrategyName
from ..exceptions import ConfigError
from ..models import SuggestionContext
from .strategies import CacheEntry, EvictionStrategyRegistry

logger = logging.getLogger(__name__)

ContextFilter = Union[Callable[[SuggestionContext], bool], Dict[str, Any]]

_PRIORITIES = ("high", "medium", "low")


class SuggestionCache:
    """Multi-tier cache with switchable eviction and self-tuning capacity.

    Each tier has its own lock; counters have a separate one. No lock is
    held across tiers, so readers of one tier never wait on writers of
    another.
    """

    def __init__(self, config: Optional[CacheConfig] = None, *,
                 clock: Callable[[], float] = time.time):
        self.config = config or CacheConfig()
        self._clock = clock
        self._strategy = self._validate_strategy(self.config.strategy)
        self._max_entries = self.config.max_entries

        self._memory: "OrderedDict[str, CacheEntry[Any]]" = OrderedDict()
        self._context: Dict[str, "OrderedDict[str, CacheEntry[Any]]"] = {}
        self._user: Dict[str, "OrderedDict[str, CacheEntry[Any]]"] = {}
        self._memory_lock = threading.RLock()
        self._context_lock = threading.RLock()
        self._user_lock = threading.RLock()

        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._total_requests = 0

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def max_entries(self) -> int:
        return self._max_entries

    # ------------------------------------------------------------------ #
    # Read / write
    # ------------------------------------------------------------------ #

    def get(self, key: str, context: SuggestionContext,
            user_id: Optional[str] = None) -> Optional[CacheEntry[Any]]:
        """Return the live entry for ``key`` or ``None`` on a miss."""
        if not self.config.enabled:
            return None
        try:
            entry = self._lookup(key, context, user_id)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            entry = None

        with self._stats_lock:
            self._total_requests += 1
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        logger.debug("Cache %s for %s", "hit" if entry is not None else "miss", key)
        return entry

    def peek(self, key: str, context: SuggestionContext,
             user_id: Optional[str] = None) -> Optional[CacheEntry[Any]]:
        """Like :meth:`get` but leaves counters, hit counts and tiers untouched."""
        if not self.config.enabled:
            return None
        try:
            return self._lookup(key, context, user_id, touch=False)
        except Exception as exc:
            logger.warning("Cache peek failed for %s: %s", key, exc)
            return None

    def set(
        self,
        key: str,
        value: Any,
        context: SuggestionContext,
        user_id: Optional[str] = None,
        *,
        priority: str = "medium",
        ttl: Optional[float] = None,
    ) -> None:
        """Store ``value`` under ``key``; ``ttl`` is in seconds.

        The context tier (and the user tier, given ``user_id``) always
        receive the entry; only ``priority="high"`` writes go straight to
        the memory tier.
        """
        if not self.config.enabled:
            return
        try:
            if priority not in _PRIORITIES:
                raise ValueError(f"unknown priority {priority!r}")
            now = self._clock()
            entry: CacheEntry[Any] = CacheEntry(
                value=value,
                timestamp=now,
                ttl=self.config.ttl_seconds if ttl is None else ttl,
                context=context,
                key=key,
                owner=user_id or None,
            )
            if priority == "high":
                self._store_memory(key, entry, now)
            with self._context_lock:
                partition = self._context.setdefault(context.partition_key, OrderedDict())
                self._store(partition, key, replace(entry))
            if user_id:
                with self._user_lock:
                    partition = self._user.setdefault(user_id, OrderedDict())
                    self._store(partition, key, replace(entry))
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    def keys(self) -> List[str]:
        """Memory-tier keys, least recently written first."""
        with self._memory_lock:
            return list(self._memory)

    def delete(self, key: str) -> int:
        """Remove ``key`` from every tier; returns the number of entries dropped."""
        return self.delete_matching(lambda candidate: candidate == key)

    def delete_matching(self, predicate: Callable[[str], bool]) -> int:
        """Remove every entry whose key satisfies ``predicate``."""

        def doomed(entry: CacheEntry[Any]) -> bool:
            return predicate(entry.key)

        return self._drop_everywhere(doomed)

    def invalidate(self, criteria: ContextFilter) -> int:
        """Drop every entry whose context satisfies ``criteria``.

        ``criteria`` is a predicate over :class:`SuggestionContext` or a dict
        of field values that must all match.
        """
        if isinstance(criteria, dict):
            fields = dict(criteria)
            predicate: Callable[[SuggestionContext], bool] = lambda ctx: ctx.matches(fields)
        else:
            predicate = criteria

        def doomed(entry: CacheEntry[Any]) -> bool:
            return entry.context is not None and predicate(entry.context)

        removed = self._drop_everywhere(doomed)
        logger.info("Invalidated %d cache entries", removed)
        return removed

    def latest_for_context(
        self,
        context: SuggestionContext,
        predicate: Optional[Callable[[CacheEntry[Any]], bool]] = None,
        user_id: Optional[str] = None,
    ) -> Optional[CacheEntry[Any]]:
        """Most recently written live entry in the context partition.

        Only anonymous entries and those written for ``user_id`` are
        candidates. ``predicate`` narrows them further, e.g. to a particular
        value type.
        """
        now = self._clock()
        owner = user_id or None
        try:
            with self._context_lock:
                partition = self._context.get(context.partition_key)
                if not partition:
                    return None
                live = [
                    e for e in partition.values()
                    if e.is_valid(now)
                    and e.owner in (None, owner)
                    and (predicate is None or predicate(e))
                ]
        except Exception as exc:
            logger.warning("Context lookup failed for %s: %s", context.partition_key, exc)
            return None
        if not live:
            return None
        return max(live, key=lambda e: e.timestamp)

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def set_strategy(self, name: Union[str, EvictionStrategyName]) -> None:
        previous = self._strategy
        self._strategy = self._validate_strategy(name)
        if previous != self._strategy:
            logger.info("Cache eviction strategy %s -> %s", previous, self._strategy)

    def sweep_expired(self) -> int:
        now = self._clock()

        def expired(entry: CacheEntry[Any]) -> bool:
            return not entry.is_valid(now)

        removed = self._drop_everywhere(expired)
        if removed:
            logger.debug("Swept %d expired cache entries", removed)
        return removed

    def reconcile(self) -> Dict[str, Any]:
        """Re-select the eviction strategy, sweep, and resize the memory tier.

        Safe to call at any cadence; with no observed requests only the
        sweep runs.
        """
        stats = self.stats()
        previous_strategy = self._strategy
        previous_size = self._max_entries
        swept = self.sweep_expired()

        if stats["total_requests"] == 0:
            return {
                "skipped": True,
                "swept": swept,
                "strategy": self._strategy,
                "max_entries": self._max_entries,
            }

        hit_rate = stats["hit_rate"]
        efficiency = stats["efficiency"]
        cfg = self.config

        if hit_rate < cfg.lfu_below_hit_rate:
            self.set_strategy(EvictionStrategyName.LFU)
        elif efficiency < cfg.lru_below_efficiency:
            self.set_strategy(EvictionStrategyName.LRU)
        else:
            self.set_strategy(EvictionStrategyName.ADAPTIVE)

        if hit_rate > cfg.grow_above_hit_rate and stats["utilization"] < cfg.grow_below_utilization:
            grown = min(cfg.max_entries_ceiling, int(self._max_entries * (1 + cfg.resize_factor)))
            self._max_entries = max(self._max_entries, grown)
        elif hit_rate < cfg.shrink_below_hit_rate:
            shrunk = max(cfg.min_entries, int(self._max_entries * (1 - cfg.resize_factor)))
            self._max_entries = min(self._max_entries, shrunk)
            with self._memory_lock:
                self._enforce_capacity(self._memory, self._clock())

        if self._max_entries != previous_size:
            logger.info("Cache capacity %d -> %d (hit rate %.2f)",
                        previous_size, self._max_entries, hit_rate)

        return {
            "skipped": False,
            "swept": swept,
            "hit_rate": hit_rate,
            "efficiency": efficiency,
            "previous_strategy": previous_strategy,
            "strategy": self._strategy,
            "previous_max_entries": previous_size,
            "max_entries": self._max_entries,
        }

    tick = reconcile

    def clear(self) -> None:
        with self._memory_lock:
            self._memory.clear()
        with self._context_lock:
            self._context.clear()
        with self._user_lock:
            self._user.clear()
        with self._stats_lock:
            self._hits = self._misses = self._evictions = self._total_requests = 0

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            hits, misses = self._hits, self._misses
            evictions, total = self._evictions, self._total_requests
        with self._memory_lock:
            memory_size = len(self._memory)
        with self._context_lock:
            context_partitions = len(self._context)
            context_entries = sum(len(p) for p in self._context.values())
        with self._user_lock:
            user_partitions = len(self._user)
            user_entries = sum(len(p) for p in self._user.values())

        hit_rate = hits / total if total else 0.0
        efficiency = (hits - evictions) / total if total else 0.0
        return {
            "hits": hits,
            "misses": misses,
            "evictions": evictions,
            "total_requests": total,
            "hit_rate": hit_rate,
            "efficiency": efficiency,
            "health_score": max(0.0, min(1.0, 0.6 * hit_rate + 0.4 * efficiency)),
            "strategy": self._strategy,
            "max_entries": self._max_entries,
            "memory_size": memory_size,
            "utilization": memory_size / self._max_entries if self._max_entries else 0.0,
            "context_partitions": context_partitions,
            "context_entries": context_entries,
            "user_partitions": user_partitions,
            "user_entries": user_entries,
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_strategy(name: Union[str, EvictionStrategyName]) -> str:
        value = name.value if isinstance(name, EvictionStrategyName) else str(name)
        try:
            EvictionStrategyRegistry.get(value)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        return value

    def _lookup(self, key: str, context: SuggestionContext,
                user_id: Optional[str], touch: bool = True) -> Optional[CacheEntry[Any]]:
        now = self._clock()

        with self._memory_lock:
            entry = self._memory.get(key)
            if entry is not None and entry.is_valid(now):
                if touch:
                    entry.hit_count += 1
                return entry

        with self._context_lock:
            partition = self._context.get(context.partition_key)
            entry = partition.get(key) if partition else None
            if entry is not None and entry.is_valid(now):
                if touch:
                    entry.hit_count += 1
                found = entry
            else:
                found = None
        if found is not None:
            if touch:
                self._promote_to_memory(key, found, now)
            return found

        if not user_id:
            return None
        with self._user_lock:
            partition = self._user.get(user_id)
            entry = partition.get(key) if partition else None
            if entry is None or not entry.is_valid(now):
                return None
            if not touch:
                return entry
            entry.hit_count += 1
            found = entry
        with self._context_lock:
            partition = self._context.setdefault(context.partition_key, OrderedDict())
            self._store(partition, key, replace(found))
        self._promote_to_memory(key, found, now)
        return found

    def _promote_to_memory(self, key: str, entry: CacheEntry[Any], now: float) -> None:
        # Copies keep the original timestamp and ttl so promotion never extends life.
        self._store_memory(key, replace(entry), now)

    @staticmethod
    def _store(tier: "OrderedDict[str, CacheEntry[Any]]", key: str, entry: CacheEntry[Any]) -> None:
        if key in tier:
            tier.move_to_end(key)
        tier[key] = entry

    def _store_memory(self, key: str, entry: CacheEntry[Any], now: float) -> None:
        with self._memory_lock:
            self._store(self._memory, key, entry)
            self._enforce_capacity(self._memory, now, protect=key)

    def _enforce_capacity(self, tier: "OrderedDict[str, CacheEntry[Any]]", now: float,
                          protect: Optional[str] = None) -> None:
        evict = EvictionStrategyRegistry.get(self._strategy)
        while len(tier) > self._max_entries:
            candidates = {k: e for k, e in tier.items() if k != protect}
            victim = evict(candidates, now)
            if victim is None or victim not in tier:
                break
            del tier[victim]
            with self._stats_lock:
                self._evictions += 1
            logger.debug("Evicted %s (%s)", victim, self._strategy)

    def _drop_everywhere(self, predicate: Callable[[CacheEntry[Any]], bool]) -> int:
        removed = 0
        with self._memory_lock:
            removed += self._drop_where(self._memory, predicate)
        with self._context_lock:
            for partition in self._context.values():
                removed += self._drop_where(partition, predicate)
            self._prune_empty(self._context)
        with self._user_lock:
            for partition in self._user.values():
                removed += self._drop_where(partition, predicate)
            self._prune_empty(self._user)
        return removed

    @staticmethod
    def _drop_where(tier: MutableMapping[str, CacheEntry[Any]],
                    predicate: Callable[[CacheEntry[Any]], bool]) -> int:
        doomed = [key for key, entry in tier.items() if predicate(entry)]
        for key in doomed:
            del tier[key]
        return len(doomed)

    @staticmethod
    def _prune_empty(partitions: Dict[str, Mapping[str, CacheEntry[Any]]]) -> None:
        for name in [n for n, p in partitions.items() if not p]:
            del partitions[name]
