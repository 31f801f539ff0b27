"""Tests for TTLCache — TTL expiry, LRU eviction, tag invalidation."""

from __future__ import annotations

import asyncio

import pytest

from callguard.execution.cache import MISS, TTLCache


@pytest.fixture
def cache(clock):
    return TTLCache(max_entries=3, default_ttl_seconds=10.0, clock=clock)


class TestGetSet:
    def test_miss_sentinel(self, cache):
        assert cache.get("absent") is MISS
        assert not MISS
        assert repr(MISS) == "MISS"

    def test_none_is_a_valid_value(self, cache):
        cache.set("k", None)
        assert cache.get("k") is None

    def test_ttl_expiry_scenario(self, clock):
        """TTL 1s: hit at 0.5s, miss at 1.5s."""
        cache = TTLCache(clock=clock)
        cache.set("news:top", ["a", "b"], ttl_seconds=1.0)

        clock.advance(0.5)
        assert cache.get("news:top") == ["a", "b"]

        clock.advance(1.0)
        assert cache.get("news:top") is MISS
        assert "news:top" not in cache
        assert len(cache) == 0

    def test_default_ttl_used(self, cache, clock):
        cache.set("k", 1)
        assert cache.entry("k").ttl_seconds == 10.0
        clock.advance(10.0)
        assert cache.get("k") is MISS

    def test_no_expiry_when_default_is_none(self, clock):
        cache = TTLCache(default_ttl_seconds=None, clock=clock)
        cache.set("k", 1)
        clock.advance(10**6)
        assert cache.get("k") == 1

    def test_hit_updates_access_bookkeeping(self, cache, clock):
        cache.set("k", "v")
        clock.advance(2)
        cache.get("k")
        cache.get("k")
        entry = cache.entry("k")
        assert entry.access_count == 2
        assert entry.last_access_at == clock.monotonic()

    def test_overwrite_resets_ttl(self, cache, clock):
        cache.set("k", 1, ttl_seconds=1.0)
        clock.advance(0.9)
        cache.set("k", 2, ttl_seconds=1.0)
        clock.advance(0.9)
        assert cache.get("k") == 2

    def test_invalid_max_entries(self):
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)


class TestEviction:
    def test_lru_eviction(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")  # b becomes least recently used
        cache.set("d", 4)

        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("d") == 4
        assert cache.stats()["evictions"] == 1


class TestInvalidation:
    def test_invalidate_by_glob(self, cache):
        cache.set("n1", 1, tags=("news", "news:us"))
        cache.set("n2", 2, tags=("news:uk",))
        cache.set("ai", 3, tags=("ai",))

        assert cache.invalidate("news:*") == 2
        assert "n1" not in cache
        assert "n2" not in cache
        assert cache.get("ai") == 3

    def test_invalidate_no_match(self, cache):
        cache.set("k", 1, tags=("x",))
        assert cache.invalidate("y*") == 0
        assert len(cache) == 1

    def test_untagged_entries_never_match(self, cache):
        cache.set("k", 1)
        assert cache.invalidate("*") == 0


class TestSweep:
    def test_sweep_removes_only_expired(self, cache, clock):
        cache.set("short", 1, ttl_seconds=1.0)
        cache.set("long", 2, ttl_seconds=100.0)
        clock.advance(5)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.stats()["expirations"] == 1

    @pytest.mark.asyncio
    async def test_background_sweeper(self, cache, clock):
        cache.set("short", 1, ttl_seconds=1.0)
        clock.advance(5)
        cache.start_sweeper(0.01)
        assert cache.sweeper_running
        for _ in range(50):
            if len(cache) == 0:
                break
            await asyncio.sleep(0.01)
        assert len(cache) == 0
        await cache.stop_sweeper()
        assert not cache.sweeper_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, cache):
        await cache.stop_sweeper()


class TestStats:
    def test_counters(self, cache):
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["size"] == 1

    def test_delete_and_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert len(cache) == 0
