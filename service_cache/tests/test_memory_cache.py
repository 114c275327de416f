"""
Unit tests for the in-process memory cache.
"""

import asyncio
import pytest
from prometheus_client import CollectorRegistry

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.caching.memory_cache import MemoryCache, compile_pattern, estimate_size
from shared.metrics import MetricsCollector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _tracked_size(cache: MemoryCache) -> int:
    return sum(entry.size for entry in cache._entries.values())


class TestMemoryCache:
    """Test cases for MemoryCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return MemoryCache(default_ttl=60, max_entries=100, max_memory_mb=1, clock=clock)

    def test_set_then_get_returns_value(self, cache):
        cache.set("fpl:bootstrap-static", {"teams": [1, 2, 3]}, ttl=1)

        assert cache.get("fpl:bootstrap-static") == {"teams": [1, 2, 3]}
        assert cache.lookup("fpl:bootstrap-static") == ({"teams": [1, 2, 3]}, True)

    def test_missing_key(self, cache):
        assert cache.get("missing") is None
        assert cache.get("missing", default="fallback") == "fallback"
        assert cache.lookup("missing") == (None, False)

    def test_cached_none_is_a_hit(self, cache):
        cache.set("fpl:empty", None)

        assert cache.lookup("fpl:empty") == (None, True)

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("fpl:live", {"minute": 45}, ttl=1)
        clock.advance(1.01)

        assert cache.get("fpl:live") is None
        assert len(cache) == 0
        assert cache.stats()["size_bytes"] == 0

    def test_entry_absent_exactly_at_expiry(self, cache, clock):
        cache.set("fpl:live", 1, ttl=5)
        clock.advance(5)

        assert cache.has("fpl:live") is False

    def test_default_ttl_applies(self, cache, clock):
        cache.set("fpl:teams", [1])
        clock.advance(59)
        assert cache.has("fpl:teams") is True

        clock.advance(1)
        assert cache.has("fpl:teams") is False

    def test_overwrite_replaces_value_and_size(self, cache):
        cache.set("fpl:player:1", "x" * 10)
        cache.set("fpl:player:1", "x" * 500)

        assert len(cache) == 1
        assert cache.get("fpl:player:1") == "x" * 500
        assert cache.stats()["size_bytes"] == estimate_size("x" * 500)

    def test_lru_eviction_drops_untouched_key(self, clock):
        cache = MemoryCache(max_entries=3, clock=clock)
        keys = ["fpl:player:1", "fpl:player:2", "fpl:player:3", "fpl:player:4"]

        cache.set(keys[0], 0)
        for value, key in enumerate(keys[1:], start=1):
            clock.advance(1)
            for touched in keys[1:value]:
                assert cache.get(touched) is not None
            cache.set(key, value)

        assert cache.has(keys[0]) is False
        for value, key in enumerate(keys[1:], start=1):
            assert cache.get(key) == value
        assert cache.stats()["evictions"] == 1

    def test_has_does_not_refresh_lru_position(self, clock):
        cache = MemoryCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.has("a") is True
        cache.set("c", 3)

        assert cache.has("a") is False
        assert cache.has("b") is True
        assert cache.has("c") is True

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        cache = MemoryCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_budget_eviction_keeps_size_under_limit(self, clock):
        cache = MemoryCache(max_entries=1000, max_memory_mb=0.001, clock=clock)
        budget = cache.max_size_bytes

        for index in range(25):
            cache.set(f"fpl:player:{index}", "p" * 100)
            stats = cache.stats()
            assert stats["size_bytes"] <= budget
            assert stats["size_bytes"] == _tracked_size(cache)

        assert cache.has("fpl:player:24") is True
        assert cache.has("fpl:player:0") is False

    def test_budget_eviction_prefers_least_recently_used(self, clock):
        item_size = estimate_size("p" * 100)
        cache = MemoryCache(max_memory_mb=(item_size * 3 + 10) / (1024 * 1024), clock=clock)
        cache.set("a", "p" * 100)
        cache.set("b", "p" * 100)
        cache.set("c", "p" * 100)
        cache.get("a")

        cache.set("d", "p" * 100)

        assert cache.has("b") is False
        assert cache.has("a") is True
        assert cache.has("c") is True
        assert cache.has("d") is True

    def test_value_larger_than_budget_is_not_stored(self, clock):
        cache = MemoryCache(max_memory_mb=0.0005, clock=clock)
        cache.set("small", "s")

        cache.set("huge", "h" * 10_000)

        assert cache.has("huge") is False
        assert cache.has("small") is True
        assert cache.stats()["size_bytes"] <= cache.max_size_bytes

    def test_delete(self, cache):
        cache.set("fpl:teams", [1, 2])

        assert cache.delete("fpl:teams") is True
        assert cache.delete("fpl:teams") is False
        assert cache.stats()["size_bytes"] == 0

    def test_clear(self, cache):
        for index in range(5):
            cache.set(f"k{index}", index)

        cache.clear()

        assert len(cache) == 0
        assert cache.stats()["size_bytes"] == 0

    def test_delete_pattern_removes_exact_matches(self, cache):
        cache.set("fpl:players:1", {"id": 1})
        cache.set("fpl:players:2", {"id": 2})
        cache.set("fpl:fixtures:1", {"id": 1})

        removed = cache.delete_pattern("fpl:players:*")

        assert removed == 2
        assert cache.has("fpl:players:1") is False
        assert cache.has("fpl:players:2") is False
        assert cache.get("fpl:fixtures:1") == {"id": 1}
        assert cache.stats()["size_bytes"] == _tracked_size(cache)

    def test_delete_pattern_strips_namespace(self, clock):
        cache = MemoryCache(namespace="fpl", clock=clock)
        cache.set("players:1", 1)
        cache.set("players:2", 2)
        cache.set("fixtures:1", 3)

        assert cache.delete_pattern("players:*") == 2
        assert cache.keys() == ["fixtures:1"]

    def test_delete_pattern_is_anchored(self, cache):
        cache.set("fpl:players:stats", 1)
        cache.set("fpl:players:enriched:1", 2)

        assert cache.delete_pattern("players:*") == 0
        assert cache.delete_pattern("fpl:players:enriched*") == 1
        assert cache.has("fpl:players:stats") is True

    def test_pattern_treats_other_characters_literally(self):
        regex = compile_pattern("fpl:gw.[1]*")

        assert regex.fullmatch("fpl:gw.[1]:live")
        assert not regex.fullmatch("fpl:gwx1:live")

    def test_cleanup_expired_reclaims_space(self, cache, clock):
        cache.set("short", "a" * 50, ttl=1)
        cache.set("long", "b" * 50, ttl=100)
        clock.advance(2)

        assert cache.cleanup_expired() == 1
        assert cache.keys() == ["long"]
        assert cache.stats()["size_bytes"] == estimate_size("b" * 50)
        assert cache.stats()["expirations"] == 1

    def test_stats_snapshot(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")

        stats = cache.stats()

        assert stats["entries"] == 1
        assert stats["max_entries"] == 100
        assert stats["max_size_bytes"] == 1024 * 1024
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    def test_estimate_size_is_monotonic(self):
        assert estimate_size("a") < estimate_size("a" * 10) < estimate_size("a" * 1000)
        assert estimate_size({"players": list(range(10))}) < estimate_size({"players": list(range(100))})

    def test_metrics_track_evictions_and_usage(self, clock):
        registry = CollectorRegistry()
        metrics = MetricsCollector("test", registry)
        cache = MemoryCache(max_entries=1, clock=clock, metrics=metrics)

        cache.set("a", 1)
        cache.set("b", 2)

        assert registry.get_sample_value("local_cache_evictions_total", {"reason": "max_entries"}) == 1.0
        assert registry.get_sample_value("local_cache_entries") == 1.0

    def test_oversize_overwrite_refreshes_usage_gauges(self, clock):
        registry = CollectorRegistry()
        metrics = MetricsCollector("test", registry)
        cache = MemoryCache(max_memory_mb=0.001, clock=clock, metrics=metrics)
        cache.set("fpl:teams", "small")
        assert registry.get_sample_value("local_cache_entries") == 1.0

        cache.set("fpl:teams", "h" * 10_000)

        assert cache.has("fpl:teams") is False
        assert registry.get_sample_value("local_cache_entries") == 0.0
        assert registry.get_sample_value("local_cache_size_bytes") == 0.0

    @pytest.mark.asyncio
    async def test_background_sweep_purges_expired_entries(self, clock):
        cache = MemoryCache(sweep_interval=0.01, clock=clock)
        cache.set("stale", 1, ttl=1)
        clock.advance(5)

        await cache.start()
        try:
            for _ in range(100):
                if len(cache) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cache.stop()

        assert len(cache) == 0
        assert cache._sweep_task is None

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, cache):
        await cache.stop()
