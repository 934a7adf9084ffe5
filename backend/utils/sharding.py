"""
Lock sharding helpers shared by the cache tiers, the in-flight table and
the rate limiter buckets.
"""

import asyncio
import zlib
from typing import List


def shard_for(key: str, shard_count: int) -> int:
    """Stable shard index for a key."""
    return zlib.crc32(key.encode("utf-8")) % shard_count


class ShardedLocks:
    """Fixed array of asyncio locks addressed by key hash."""

    def __init__(self, shard_count: int = 16):
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self.shard_count = shard_count
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(shard_count)]

    def index(self, key: str) -> int:
        return shard_for(key, self.shard_count)

    def lock_for(self, key: str) -> asyncio.Lock:
        return self._locks[self.index(key)]

    def lock_at(self, index: int) -> asyncio.Lock:
        return self._locks[index]

    def __len__(self) -> int:
        return self.shard_count


__all__ = ["shard_for", "ShardedLocks"]
