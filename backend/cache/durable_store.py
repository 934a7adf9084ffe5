"""
Durable Store
Interface of the durable cache tier and its in-memory implementation used
in development and tests. The Redis implementation lives in
cache/redis_cache.py.
"""

from abc import ABC, abstractmethod
from typing import Optional

from cache.entry import CachedPlan
from cache.fast_tier import ShardedPlanMap
from schemas.generation import CacheSource


class DurableStore(ABC):
    """
    Keyed plan storage with TTL expiry and conditional writes.

    ``put`` must never replace a stored entry whose created_at is newer
    than the incoming one. Implementations raise
    CacheBackendUnavailableError on I/O failure.
    """

    name = "durable"

    @abstractmethod
    async def get(self, fingerprint: str) -> Optional[CachedPlan]:
        raise NotImplementedError

    @abstractmethod
    async def put(self, entry: CachedPlan, ttl_seconds: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, fingerprint: str) -> bool:
        raise NotImplementedError

    async def sweep(self, now: Optional[float] = None) -> int:
        """Drop expired entries; stores with native expiry have nothing to do."""
        return 0

    async def ping(self) -> bool:
        return True

    async def close(self):
        return None


class MemoryDurableStore(DurableStore):
    """Process-local durable tier; same sharding discipline as the fast tier."""

    def __init__(self, max_entries: int = 100000, shard_count: int = 16):
        self._map = ShardedPlanMap(CacheSource.DURABLE, max_entries=max_entries, shard_count=shard_count)

    async def get(self, fingerprint: str) -> Optional[CachedPlan]:
        return await self._map.get(fingerprint)

    async def put(self, entry: CachedPlan, ttl_seconds: int) -> bool:
        return await self._map.put(entry, ttl_seconds)

    async def delete(self, fingerprint: str) -> bool:
        return await self._map.delete(fingerprint)

    async def sweep(self, now: Optional[float] = None) -> int:
        return await self._map.sweep(now)

    def __len__(self) -> int:
        return len(self._map)


__all__ = ["DurableStore", "MemoryDurableStore"]
