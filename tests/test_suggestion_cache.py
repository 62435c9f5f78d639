"""
Tests for the three-tier suggestion cache: TTL, promotion, eviction
strategies and self-tuning.
"""

from unittest.mock import patch

import pytest

from sitespeak_suggest.cache import CacheEntry, EvictionStrategyRegistry, SuggestionCache
from sitespeak_suggest.config import CacheConfig
from sitespeak_suggest.exceptions import ConfigError
from sitespeak_suggest.models import SuggestionContext


def make_cache(clock, **overrides):
    return SuggestionCache(CacheConfig(**overrides), clock=clock)


class TestReadWrite:

    def test_ttl_boundary(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context, ttl=10)

        clock.advance(9.999)
        assert cache.get("k", context).value == "v"

        clock.advance(0.002)
        assert cache.get("k", context) is None

    def test_repeated_triple_increases_hit_rate(self, clock, context):
        cache = make_cache(clock)

        rates = []
        for _ in range(2):
            if cache.get("k", context, "u1") is None:
                cache.set("k", ["s"], context, "u1")
            rates.append(cache.stats()["hit_rate"])

        assert rates[1] > rates[0]

    def test_hit_count_increments(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context, priority="high")

        cache.get("k", context)
        entry = cache.get("k", context)

        assert entry.hit_count == 2

    def test_context_hit_promotes_to_memory(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context)
        assert cache.stats()["memory_size"] == 0

        assert cache.get("k", context).value == "v"
        assert cache.stats()["memory_size"] == 1

    def test_user_hit_promotes_to_both_tiers(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context, "u1")
        other_page = SuggestionContext(page_type="blog")

        assert cache.get("k", other_page, "u1").value == "v"

        stats = cache.stats()
        assert stats["context_partitions"] == 2
        assert stats["memory_size"] == 1

    def test_other_context_without_user_misses(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context)

        assert cache.get("k", SuggestionContext(page_type="blog")) is None

    def test_promotion_keeps_original_expiry(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context, ttl=10)

        clock.advance(5)
        assert cache.get("k", context) is not None
        clock.advance(6)
        assert cache.get("k", context) is None

    def test_peek_leaves_stats_and_tiers_alone(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context, "u1")

        entry = cache.peek("k", SuggestionContext(page_type="blog"), "u1")

        assert entry.value == "v"
        assert entry.hit_count == 0
        stats = cache.stats()
        assert stats["total_requests"] == 0
        assert stats["memory_size"] == 0
        assert stats["context_partitions"] == 1
        assert cache.peek("missing", context) is None

    def test_disabled_cache_is_inert(self, clock, context):
        cache = make_cache(clock, enabled=False)
        cache.set("k", "v", context)
        assert cache.get("k", context) is None
        assert cache.stats()["total_requests"] == 0

    def test_read_failure_is_a_miss(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context)

        with patch.object(cache, "_lookup", side_effect=RuntimeError("boom")):
            assert cache.get("k", context) is None
        assert cache.stats()["misses"] == 1

    def test_write_failure_is_a_noop(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", None)
        cache.set("k", "v", context, priority="urgent")
        assert cache.stats()["context_entries"] == 0


class TestInvalidation:

    def test_invalidate_by_fields(self, clock, context):
        cache = make_cache(clock)
        blog = SuggestionContext(page_type="blog")
        cache.set("a", 1, context, priority="high")
        cache.set("b", 2, blog, priority="high")

        removed = cache.invalidate({"page_type": "product"})

        assert removed == 2  # memory + context copies
        assert cache.get("a", context) is None
        assert cache.get("b", blog).value == 2

    def test_invalidate_by_predicate(self, clock, context):
        cache = make_cache(clock)
        cache.set("a", 1, context, "u1")

        cache.invalidate(lambda ctx: "cart" in ctx.capabilities)

        assert cache.get("a", context, "u1") is None

    def test_delete_matching_keys(self, clock, context):
        cache = make_cache(clock)
        cache.set("completion:*:10:go", 1, context)
        cache.set("suggestions:*:x", 2, context)

        cache.delete_matching(lambda key: key.startswith("completion:"))

        assert cache.get("completion:*:10:go", context) is None
        assert cache.get("suggestions:*:x", context).value == 2

    def test_latest_for_context(self, clock, context):
        cache = make_cache(clock)
        cache.set("old", "first", context)
        clock.advance(1)
        cache.set("new", "second", context)

        assert cache.latest_for_context(context).value == "second"
        assert cache.latest_for_context(context, lambda e: e.value == "first").key == "old"
        assert cache.latest_for_context(SuggestionContext(page_type="blog")) is None

    def test_latest_for_context_respects_owner(self, clock, context):
        cache = make_cache(clock)
        cache.set("shared", "anonymous", context)
        clock.advance(1)
        cache.set("alice-only", "private", context, "alice")

        assert cache.latest_for_context(context, user_id="alice").value == "private"
        assert cache.latest_for_context(context, user_id="bob").value == "anonymous"
        assert cache.latest_for_context(context).value == "anonymous"

    def test_sweep_expired(self, clock, context):
        cache = make_cache(clock)
        cache.set("short", 1, context, "u1", priority="high", ttl=1)
        cache.set("long", 2, context, priority="high", ttl=100)
        clock.advance(2)

        assert cache.sweep_expired() == 3
        assert cache.stats()["memory_size"] == 1


class TestEviction:

    def test_adaptive_evicts_expired_entry_first(self, clock, context):
        cache = make_cache(clock, max_entries=2, strategy="adaptive")
        cache.set("expired", 1, context, priority="high", ttl=1)
        cache.set("fresh", 2, context, priority="high", ttl=100)
        clock.advance(5)
        cache.get("fresh", context)

        cache.set("newest", 3, context, priority="high", ttl=100)

        assert cache.stats()["evictions"] == 1
        assert set(cache.keys()) == {"fresh", "newest"}

    def test_adaptive_prefers_old_unused_entries(self, clock, context):
        cache = make_cache(clock, max_entries=2, strategy="adaptive")
        cache.set("cold", 1, context, priority="high")
        cache.set("hot", 2, context, priority="high")
        for _ in range(5):
            cache.get("hot", context)
        clock.advance(10)

        cache.set("incoming", 3, context, priority="high")

        assert set(cache.keys()) == {"hot", "incoming"}

    def test_lru_evicts_oldest_write(self, clock, context):
        cache = make_cache(clock, max_entries=2, strategy="lru")
        for key in ("a", "b", "c"):
            cache.set(key, key, context, priority="high")
            clock.advance(1)

        assert set(cache.keys()) == {"b", "c"}

    def test_lfu_evicts_least_hit(self, clock, context):
        cache = make_cache(clock, max_entries=2, strategy="lfu")
        cache.set("a", 1, context, priority="high")
        cache.set("b", 2, context, priority="high")
        cache.get("a", context)
        cache.get("a", context)

        cache.set("c", 3, context, priority="high")

        assert set(cache.keys()) == {"a", "c"}

    def test_partitioned_tiers_are_not_capped(self, clock, context):
        cache = make_cache(clock, max_entries=2, strategy="lru")
        for key in ("a", "b", "c"):
            cache.set(key, key, context, "u1")

        stats = cache.stats()
        assert stats["context_entries"] == 3
        assert stats["user_entries"] == 3
        assert stats["evictions"] == 0

    def test_ttl_strategy_is_noop_without_expired_entries(self, clock, context):
        cache = make_cache(clock, max_entries=2, strategy="ttl")
        for key in ("a", "b", "c"):
            cache.set(key, key, context, priority="high")

        assert cache.stats()["memory_size"] == 3
        assert cache.stats()["evictions"] == 0


class TestStrategyRegistry:

    def test_builtins_registered(self):
        assert {"lru", "lfu", "ttl", "adaptive"} <= EvictionStrategyRegistry.available()

    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError):
            EvictionStrategyRegistry.register("lru", lambda entries, now: None)

    def test_unknown_strategy_rejected(self, clock):
        cache = make_cache(clock)
        with pytest.raises(ConfigError):
            cache.set_strategy("random")

    def test_custom_strategy(self, clock, context):
        def newest_first(entries, now):
            return max(entries, key=lambda k: entries[k].timestamp) if entries else None

        EvictionStrategyRegistry.register("newest", newest_first)
        try:
            cache = make_cache(clock, max_entries=2)
            cache.set_strategy("newest")
            cache.set("a", 1, context, priority="high")
            clock.advance(1)
            cache.set("b", 2, context, priority="high")
            clock.advance(1)
            cache.set("c", 3, context, priority="high")

            assert cache.strategy == "newest"
            assert set(cache.keys()) == {"a", "c"}
        finally:
            EvictionStrategyRegistry.unregister("newest")

    def test_cache_entry_validity(self):
        entry = CacheEntry(value=1, timestamp=100.0, ttl=5.0)
        assert entry.is_valid(104.9)
        assert not entry.is_valid(105.0)
        assert entry.age_ms(101.0) == pytest.approx(1000.0)


class TestReconcile:

    def test_skips_tuning_without_traffic(self, clock):
        cache = make_cache(clock, strategy="lru")
        summary = cache.reconcile()
        assert summary["skipped"] is True
        assert cache.strategy == "lru"

    def test_low_hit_rate_switches_to_lfu_and_shrinks(self, clock, context):
        cache = make_cache(clock, max_entries=10000)
        for i in range(10):
            cache.get(f"missing-{i}", context)

        summary = cache.tick()

        assert cache.strategy == "lfu"
        assert cache.max_entries == 8000
        assert summary["previous_max_entries"] == 10000

    def test_shrink_respects_floor(self, clock, context):
        cache = make_cache(clock, max_entries=1100, min_entries=1000)
        cache.get("missing", context)

        cache.reconcile()

        assert cache.max_entries == 1000

    def test_high_hit_rate_reverts_to_adaptive_and_grows(self, clock, context):
        cache = make_cache(clock, strategy="lru", max_entries=19000)
        cache.set("k", "v", context, priority="high")
        for _ in range(10):
            cache.get("k", context)

        cache.reconcile()

        assert cache.strategy == "adaptive"
        assert cache.max_entries == 20000

    def test_low_efficiency_switches_to_lru(self, clock, context):
        cache = make_cache(clock, max_entries=1, min_entries=1)
        for i in range(8):
            cache.set(f"k{i}", i, context, priority="high")
        for _ in range(10):
            cache.get("k7", context)

        stats = cache.stats()
        assert stats["hit_rate"] == 1.0
        assert stats["efficiency"] < 0.5

        cache.reconcile()

        assert cache.strategy == "lru"
        assert cache.max_entries == 1

    def test_health_score_bounds(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context)
        cache.get("k", context)
        assert 0.0 <= cache.stats()["health_score"] <= 1.0

    def test_clear_resets_everything(self, clock, context):
        cache = make_cache(clock)
        cache.set("k", "v", context, "u1", priority="high")
        cache.get("k", context)

        cache.clear()

        stats = cache.stats()
        assert stats["hits"] == 0
        assert stats["memory_size"] == stats["context_entries"] == stats["user_entries"] == 0
