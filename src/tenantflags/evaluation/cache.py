"""Short-TTL read-through cache for the evaluation path."""
from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

import structlog

from tenantflags.observability.metrics import CACHE_LOOKUPS
from tenantflags.schemas import FeatureFlag, FeatureFlagOverride, FlagStatus
from tenantflags.store.base import FlagReader

logger = structlog.get_logger(__name__)

_DEFAULT_MAX_SIZE = 10_000
_DEFAULT_TTL_SECONDS = 5.0


@dataclass
class CacheEntry:
    key: Hashable
    value: Any
    created_at: float = field(default_factory=time.monotonic)
    hits: int = 0


class FlagCache:
    """Bounded LRU cache with TTL.

    ``None`` is a cacheable value, so a flag that does not exist is not
    re-read from the store on every request. Safe for single-process asyncio
    usage; owned by the application resources, not by this module.
    """

    def __init__(
        self,
        max_size: int = _DEFAULT_MAX_SIZE,
        ttl_seconds: float = _DEFAULT_TTL_SECONDS,
    ) -> None:
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._store: OrderedDict[Hashable, CacheEntry] = OrderedDict()
        self._total_hits = 0
        self._total_misses = 0
        self._generation = 0

    def lookup(self, key: Hashable) -> CacheEntry | None:
        entry = self._store.get(key)
        if entry is None:
            self._total_misses += 1
            return None

        if (time.monotonic() - entry.created_at) >= self._ttl:
            del self._store[key]
            self._total_misses += 1
            return None

        self._store.move_to_end(key)
        entry.hits += 1
        self._total_hits += 1
        return entry

    def put(self, key: Hashable, value: Any) -> None:
        if key in self._store:
            self._store.move_to_end(key)
            self._store[key] = CacheEntry(key=key, value=value)
            return

        if len(self._store) >= self._max_size:
            self._store.popitem(last=False)

        self._store[key] = CacheEntry(key=key, value=value)

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        entry = self.lookup(key)
        if entry is not None:
            CACHE_LOOKUPS.labels(result="hit").inc()
            return entry.value
        CACHE_LOOKUPS.labels(result="miss").inc()
        generation = self._generation
        value = await loader()
        # Values loaded across an invalidation are returned but not cached
        if generation == self._generation:
            self.put(key, value)
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        self._generation += 1
        if key is None:
            self._store.clear()
            logger.debug("flag_cache_cleared")
            return
        self._store.pop(key, None)

    @property
    def size(self) -> int:
        return len(self._store)

    @property
    def hit_rate(self) -> float:
        total = self._total_hits + self._total_misses
        return self._total_hits / total if total > 0 else 0.0

    def stats(self) -> dict:
        return {
            "size": self.size,
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "total_hits": self._total_hits,
            "total_misses": self._total_misses,
            "hit_rate": round(self.hit_rate, 3),
        }


class CachedFlagReader:
    """:class:`FlagReader` that serves store reads through a :class:`FlagCache`.

    Store errors propagate and are never cached.
    """

    def __init__(self, reader: FlagReader, cache: FlagCache) -> None:
        self._reader = reader
        self._cache = cache

    async def get_flag_by_key(self, key: str) -> FeatureFlag | None:
        return await self._cache.get_or_load(
            ("flag", key), lambda: self._reader.get_flag_by_key(key)
        )

    async def get_override(self, flag_id: str, tenant_id: str) -> FeatureFlagOverride | None:
        return await self._cache.get_or_load(
            ("override", flag_id, tenant_id),
            lambda: self._reader.get_override(flag_id, tenant_id),
        )

    async def list_flags(
        self, *, include_archived: bool = True, status: FlagStatus | None = None
    ) -> list[FeatureFlag]:
        return await self._cache.get_or_load(
            ("flags", include_archived, status),
            lambda: self._reader.list_flags(include_archived=include_archived, status=status),
        )

    async def list_tenant_overrides(self, tenant_id: str) -> list[FeatureFlagOverride]:
        return await self._cache.get_or_load(
            ("tenant_overrides", tenant_id),
            lambda: self._reader.list_tenant_overrides(tenant_id),
        )
