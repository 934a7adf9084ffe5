"""
Fast Cache Tier
In-process plan cache. Entries live in per-shard ordered dicts, each shard
guarded by its own asyncio lock so unrelated fingerprints never contend.
"""

import time
from collections import OrderedDict
from typing import Dict, List, Optional

from cache.entry import CachedPlan
from schemas.generation import CacheSource
from utils.sharding import ShardedLocks


class ShardedPlanMap:
    """
    Sharded fingerprint -> CachedPlan map with TTL and conditional writes.

    Used directly by the fast tier and by the in-memory durable store.
    """

    def __init__(self, source: CacheSource, max_entries: int = 10000, shard_count: int = 16):
        self.source = source
        self.locks = ShardedLocks(shard_count)
        self._shards: List["OrderedDict[str, CachedPlan]"] = [OrderedDict() for _ in range(shard_count)]
        self.per_shard_capacity = max(1, max_entries // shard_count)
        self.evictions = 0

    def _shard(self, fingerprint: str) -> "OrderedDict[str, CachedPlan]":
        return self._shards[self.locks.index(fingerprint)]

    async def get(self, fingerprint: str, now: Optional[float] = None) -> Optional[CachedPlan]:
        """Return a hit (hit_count and last_accessed bumped) or None."""
        now = now if now is not None else time.time()
        async with self.locks.lock_for(fingerprint):
            shard = self._shard(fingerprint)
            entry = shard.get(fingerprint)
            if entry is None:
                return None
            if entry.is_expired(now):
                del shard[fingerprint]
                return None
            entry.hit_count += 1
            entry.last_accessed = now
            return entry.with_source(self.source)

    async def put(self, entry: CachedPlan, ttl_seconds: float, now: Optional[float] = None) -> bool:
        """
        Store an entry unless a live entry with a newer created_at exists.

        The stored expiry is the earlier of the entry's own expiry and
        now + ttl_seconds.

        Returns:
            True if written, False if rejected as stale
        """
        now = now if now is not None else time.time()
        async with self.locks.lock_for(entry.fingerprint):
            shard = self._shard(entry.fingerprint)
            existing = shard.get(entry.fingerprint)
            if existing is not None and not existing.is_expired(now) and existing.newer_than(entry):
                return False

            shard[entry.fingerprint] = entry.with_source(
                self.source,
                expires_at=min(entry.expires_at, now + ttl_seconds),
                hit_count=existing.hit_count if existing is not None else entry.hit_count
            )
            shard.move_to_end(entry.fingerprint)

            while len(shard) > self.per_shard_capacity:
                shard.popitem(last=False)
                self.evictions += 1
            return True

    async def delete(self, fingerprint: str) -> bool:
        async with self.locks.lock_for(fingerprint):
            return self._shard(fingerprint).pop(fingerprint, None) is not None

    async def sweep(self, now: Optional[float] = None) -> int:
        """Drop expired entries shard by shard."""
        now = now if now is not None else time.time()
        removed = 0
        for index, shard in enumerate(self._shards):
            async with self.locks.lock_at(index):
                for fingerprint in [fp for fp, entry in shard.items() if entry.is_expired(now)]:
                    del shard[fingerprint]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)


class FastCacheTier:
    """Edge-local tier with one global TTL."""

    name = "fast"

    def __init__(self, ttl_seconds: int = 900, max_entries: int = 10000, shard_count: int = 16):
        self.ttl_seconds = ttl_seconds
        self._map = ShardedPlanMap(CacheSource.FAST, max_entries=max_entries, shard_count=shard_count)

    async def get(self, fingerprint: str) -> Optional[CachedPlan]:
        return await self._map.get(fingerprint)

    async def put(self, entry: CachedPlan, ttl_seconds: Optional[float] = None) -> bool:
        ttl = self.ttl_seconds if ttl_seconds is None else min(ttl_seconds, self.ttl_seconds)
        return await self._map.put(entry, ttl)

    async def delete(self, fingerprint: str) -> bool:
        return await self._map.delete(fingerprint)

    async def sweep(self, now: Optional[float] = None) -> int:
        return await self._map.sweep(now)

    def get_stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._map),
            "evictions": self._map.evictions,
            "ttl_seconds": self.ttl_seconds
        }

    def __len__(self) -> int:
        return len(self._map)


__all__ = ["FastCacheTier", "ShardedPlanMap"]
