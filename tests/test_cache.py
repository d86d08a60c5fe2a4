"""
Tests for CacheService

These tests verify:
- get/set/delete round trips and default TTL
- cache-aside (get_or_set) and memoize
- glob invalidation inside the cache namespace
- graceful degradation when the backing store fails
- values JSON cannot encode are refused, not stringified

Every test using the cache fixture runs on both backends.

Run with: python -m pytest tests/test_cache.py -v
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from core.cache import CacheService, hash_arguments
from core.store import KeyValueStore


class TestCacheBasic:

    async def test_set_then_get(self, cache: CacheService):
        assert await cache.set("user:1", {"name": "Anna", "hours": 7.5}, ttl=30) is True
        assert await cache.get("user:1") == {"name": "Anna", "hours": 7.5}

    async def test_get_missing_is_miss(self, cache: CacheService):
        assert await cache.get("nope") is None

    async def test_delete_then_get(self, cache: CacheService):
        await cache.set("k", "v")
        assert await cache.delete("k") is True
        assert await cache.get("k") is None

    async def test_delete_missing_is_not_error(self, cache: CacheService):
        assert await cache.delete("never-set") is False

    async def test_overwrite(self, cache: CacheService):
        await cache.set("k", 1)
        await cache.set("k", 2)
        assert await cache.get("k") == 2

    async def test_falsy_values_are_hits(self, cache: CacheService):
        await cache.set("zero", 0)
        await cache.set("empty", [])
        assert await cache.get("zero") == 0
        assert await cache.get("empty") == []

    async def test_keys_are_prefixed(self, cache: CacheService, store: KeyValueStore):
        await cache.set("k", "v")
        assert await store.keys("*") == ["cache:k"]

    async def test_default_ttl_applied(self, cache: CacheService, store: KeyValueStore, clock):
        await cache.set("k", "v")
        assert await store.ttl("cache:k") == pytest.approx(60, abs=1)

    async def test_entry_expires(self, cache: CacheService, clock):
        await cache.set("k", "v", ttl=5)
        clock.advance(5.1)
        assert await cache.get("k") is None

    async def test_non_positive_ttl_not_stored(self, cache: CacheService):
        assert await cache.set("k", "v", ttl=0) is False
        assert await cache.get("k") is None

    async def test_exists(self, cache: CacheService):
        await cache.set("k", "v")
        assert await cache.exists("k") is True
        assert await cache.exists("other") is False


class TestGetOrSet:

    async def test_computes_once_per_miss(self, cache: CacheService):
        calls = []

        async def load():
            calls.append(1)
            return {"id": 7}

        assert await cache.get_or_set("user:7", load) == {"id": 7}
        assert await cache.get_or_set("user:7", load) == {"id": 7}
        assert len(calls) == 1

    async def test_sync_compute(self, cache: CacheService):
        assert await cache.get_or_set("k", lambda: "computed") == "computed"
        assert await cache.get("k") == "computed"

    async def test_none_result_not_cached(self, cache: CacheService):
        calls = []

        def load():
            calls.append(1)
            return None

        assert await cache.get_or_set("k", load) is None
        assert await cache.get_or_set("k", load) is None
        assert len(calls) == 2
        assert await cache.exists("k") is False

    async def test_failed_compute_not_cached(self, cache: CacheService):
        async def boom():
            raise RuntimeError("database down")

        with pytest.raises(RuntimeError):
            await cache.get_or_set("k", boom)
        assert await cache.exists("k") is False

        assert await cache.get_or_set("k", lambda: "recovered") == "recovered"

    async def test_respects_ttl(self, cache: CacheService, clock):
        await cache.get_or_set("k", lambda: "v", ttl=2)
        clock.advance(3)
        assert await cache.get_or_set("k", lambda: "fresh", ttl=2) == "fresh"


class TestMemoize:

    async def test_same_args_hit_cache(self, cache: CacheService):
        calls = []

        async def total_hours(user_id, month=None):
            calls.append((user_id, month))
            return 160

        cached = cache.memoize("hours", total_hours, ttl=30)
        assert await cached(1, month="2026-09") == 160
        assert await cached(1, month="2026-09") == 160
        assert calls == [(1, "2026-09")]

    async def test_different_args_miss(self, cache: CacheService):
        calls = []

        def square(x):
            calls.append(x)
            return x * x

        cached = cache.memoize("square", square)
        assert await cached(3) == 9
        assert await cached(4) == 16
        assert calls == [3, 4]

    async def test_key_uses_prefix(self, cache: CacheService, store: KeyValueStore):
        cached = cache.memoize("report", lambda org: {"org": org})
        await cached("acme")
        keys = await store.keys("cache:report:*")
        assert keys == [f"cache:report:{hash_arguments(('acme',), {})}"]

    async def test_wrapper_keeps_name(self, cache: CacheService):
        def monthly_report():
            return 1

        assert cache.memoize("r", monthly_report).__name__ == "monthly_report"

    def test_kwarg_order_irrelevant(self):
        assert hash_arguments((), {"a": 1, "b": 2}) == hash_arguments((), {"b": 2, "a": 1})
        assert hash_arguments((1,), {}) != hash_arguments((2,), {})


class TestInvalidation:

    async def test_pattern_leaves_unrelated_keys(self, populated_cache: CacheService):
        deleted = await populated_cache.invalidate_pattern("user:*")
        assert deleted == 3
        assert await populated_cache.get("user:1") is None
        assert await populated_cache.get("user:2:worklogs") is None
        assert await populated_cache.get("org:1") == {"name": "Acme"}

    async def test_pattern_without_matches(self, populated_cache: CacheService):
        assert await populated_cache.invalidate_pattern("team:*") == 0

    async def test_clear_only_touches_namespace(self, populated_cache: CacheService,
                                                store: KeyValueStore):
        await store.set("session:abc", "{}")
        assert await populated_cache.clear() == 4
        assert await store.get("session:abc") == "{}"


class TestSerialization:
    """Only JSON-encodable values are cached, so hits match misses."""

    async def test_unencodable_value_is_refused(self, cache: CacheService):
        assert await cache.set("k", {"at": datetime(2026, 9, 1, 9, 30)}) is False
        assert await cache.exists("k") is False
        assert (await cache.get_stats())["errors"] == 1

    async def test_get_or_set_returns_same_type_every_time(self, cache: CacheService):
        calls = []

        def load():
            calls.append(1)
            return Decimal("7.50")

        assert await cache.get_or_set("hours", load) == Decimal("7.50")
        assert await cache.get_or_set("hours", load) == Decimal("7.50")
        assert len(calls) == 2

    async def test_memoize_with_date_argument(self, cache: CacheService):
        calls = []

        def hours_on(day):
            calls.append(day)
            return 8

        cached = cache.memoize("hours", hours_on)
        assert await cached(date(2026, 9, 1)) == 8
        assert await cached(date(2026, 9, 1)) == 8
        assert calls == [date(2026, 9, 1)]


class TestStats:

    async def test_hits_and_misses(self, cache: CacheService):
        await cache.set("k", "v")
        await cache.get("k")
        await cache.get("missing")
        stats = await cache.get_stats()
        assert stats["backend"] == cache.store.backend
        assert stats["keys"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert cache.is_redis_available() is (cache.store.backend == "redis")


class TestDegradedStore:
    """Backend failures never reach the caller."""

    async def test_get_is_miss(self, broken_cache: CacheService):
        assert await broken_cache.get("k") is None

    async def test_set_and_delete_are_noops(self, broken_cache: CacheService):
        assert await broken_cache.set("k", "v") is False
        assert await broken_cache.delete("k") is False
        assert await broken_cache.exists("k") is False

    async def test_invalidate_returns_zero(self, broken_cache: CacheService):
        assert await broken_cache.invalidate_pattern("user:*") == 0
        assert await broken_cache.clear() == 0

    async def test_get_or_set_still_computes(self, broken_cache: CacheService):
        assert await broken_cache.get_or_set("k", lambda: 42) == 42

    async def test_startup_and_stats_survive(self, broken_cache: CacheService):
        await broken_cache.startup()
        stats = await broken_cache.get_stats()
        assert stats["keys"] is None
        assert stats["errors"] >= 1
