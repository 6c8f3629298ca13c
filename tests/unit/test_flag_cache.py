from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tenantflags.errors import StoreUnavailableError
from tenantflags.evaluation.cache import CachedFlagReader, CacheEntry, FlagCache
from tenantflags.schemas import FeatureFlag


class TestCacheEntry:
    def test_default_fields(self):
        entry = CacheEntry(key=("flag", "k1"), value=None)
        assert entry.key == ("flag", "k1")
        assert entry.value is None
        assert entry.hits == 0
        assert entry.created_at > 0


class TestLookupAndPut:
    def test_put_then_lookup_returns_entry(self):
        cache = FlagCache()
        cache.put(("flag", "ai_scheduling"), "row")
        entry = cache.lookup(("flag", "ai_scheduling"))
        assert entry is not None
        assert entry.value == "row"
        assert entry.hits == 1

    def test_lookup_nonexistent_returns_none(self):
        assert FlagCache().lookup(("flag", "unknown")) is None

    def test_none_is_cacheable(self):
        cache = FlagCache()
        cache.put(("flag", "missing"), None)
        entry = cache.lookup(("flag", "missing"))
        assert entry is not None
        assert entry.value is None

    def test_put_overwrites_existing_key(self):
        cache = FlagCache()
        cache.put("k", 1)
        cache.put("k", 2)
        assert cache.lookup("k").value == 2
        assert cache.size == 1


class TestTTLExpiration:
    def test_entry_expires_after_ttl(self):
        cache = FlagCache(ttl_seconds=5)
        cache.put("k", "v")
        created = cache._store["k"].created_at

        with patch("tenantflags.evaluation.cache.time") as mock_time:
            mock_time.monotonic.return_value = created + 4.0
            assert cache.lookup("k").value == "v"

            mock_time.monotonic.return_value = created + 5.0
            assert cache.lookup("k") is None
            assert cache.size == 0

    def test_zero_ttl_never_serves(self):
        cache = FlagCache(ttl_seconds=0)
        cache.put("k", "v")
        assert cache.lookup("k") is None


class TestLRUEviction:
    def test_evicts_oldest_when_max_size_exceeded(self):
        cache = FlagCache(max_size=2)
        cache.put("k1", 1)
        cache.put("k2", 2)
        cache.put("k3", 3)
        assert cache.lookup("k1") is None
        assert cache.lookup("k2").value == 2
        assert cache.lookup("k3").value == 3
        assert cache.size == 2

    def test_recently_accessed_not_evicted(self):
        cache = FlagCache(max_size=2)
        cache.put("k1", 1)
        cache.put("k2", 2)
        cache.lookup("k1")
        cache.put("k3", 3)
        assert cache.lookup("k1").value == 1
        assert cache.lookup("k2") is None


class TestInvalidate:
    def test_invalidate_single_entry(self):
        cache = FlagCache()
        cache.put("k1", 1)
        cache.put("k2", 2)
        cache.invalidate("k1")
        assert cache.lookup("k1") is None
        assert cache.lookup("k2").value == 2

    def test_invalidate_all_entries(self):
        cache = FlagCache()
        cache.put("k1", 1)
        cache.put("k2", 2)
        cache.invalidate()
        assert cache.size == 0

    def test_invalidate_nonexistent_is_noop(self):
        cache = FlagCache()
        cache.put("k1", 1)
        cache.invalidate("nonexistent")
        assert cache.size == 1


class TestHitRateAndStats:
    def test_hit_rate_zero_when_empty(self):
        assert FlagCache().hit_rate == 0.0

    def test_stats_returns_all_keys(self):
        cache = FlagCache(max_size=100, ttl_seconds=5)
        cache.put("k1", 1)
        cache.lookup("k1")
        cache.lookup("k2")

        s = cache.stats()
        assert s["size"] == 1
        assert s["max_size"] == 100
        assert s["ttl_seconds"] == 5
        assert s["total_hits"] == 1
        assert s["total_misses"] == 1
        assert s["hit_rate"] == 0.5


class TestGetOrLoad:
    @pytest.mark.asyncio
    async def test_loader_called_once_within_ttl(self):
        cache = FlagCache()
        loader = AsyncMock(return_value="row")
        assert await cache.get_or_load("k", loader) == "row"
        assert await cache.get_or_load("k", loader) == "row"
        loader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_loader_errors_are_not_cached(self):
        cache = FlagCache()
        loader = AsyncMock(side_effect=StoreUnavailableError("down"))
        with pytest.raises(StoreUnavailableError):
            await cache.get_or_load("k", loader)
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_value_loaded_across_invalidation_not_cached(self):
        cache = FlagCache()

        async def loader():
            cache.invalidate()
            return "stale"

        assert await cache.get_or_load("k", loader) == "stale"
        assert cache.lookup("k") is None

        fresh = AsyncMock(return_value="fresh")
        assert await cache.get_or_load("k", fresh) == "fresh"
        assert await cache.get_or_load("k", fresh) == "fresh"
        fresh.assert_awaited_once()


class TestCachedFlagReader:
    @pytest.mark.asyncio
    async def test_reads_through_once(self):
        flag = FeatureFlag(key="cached_flag", name="Cached")
        reader = MagicMock()
        reader.get_flag_by_key = AsyncMock(return_value=flag)
        reader.get_override = AsyncMock(return_value=None)
        cached = CachedFlagReader(reader, FlagCache())

        for _ in range(3):
            assert await cached.get_flag_by_key("cached_flag") == flag
            assert await cached.get_override(flag.id, "tenant-a") is None

        reader.get_flag_by_key.assert_awaited_once_with("cached_flag")
        reader.get_override.assert_awaited_once_with(flag.id, "tenant-a")

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self, store):
        cache = FlagCache()
        cached = CachedFlagReader(store, cache)
        assert await cached.get_flag_by_key("late_flag") is None

        flag = await store.insert_flag(FeatureFlag(key="late_flag", name="Late"))
        assert await cached.get_flag_by_key("late_flag") is None

        cache.invalidate()
        assert await cached.get_flag_by_key("late_flag") == flag

    @pytest.mark.asyncio
    async def test_list_keys_separate_per_tenant(self, store):
        cache = FlagCache()
        cached = CachedFlagReader(store, cache)
        await cached.list_tenant_overrides("tenant-a")
        await cached.list_tenant_overrides("tenant-b")
        await cached.list_flags(include_archived=False)
        assert cache.size == 3
