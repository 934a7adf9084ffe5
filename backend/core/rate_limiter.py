"""
Rate Limiting System - Production Ready
Per-identity sliding-window rate limiting with an in-process backend and a
Redis backend, applied before any cache lookup.
"""

import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from config import StoreBackend
from core.logging import get_logger
from core.exceptions import CacheBackendUnavailableError, RateLimitedError
from cache.redis_cache import RedisConnectionPool
from utils.sharding import ShardedLocks

# Initialize logger
logger = get_logger(__name__)

ANONYMOUS_IDENTITY = "anonymous"


@dataclass
class RateLimitDecision:
    """Outcome of one check_and_consume call."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: float = 0.0
    reset_at: float = 0.0

    def raise_if_denied(self, window_seconds: int, request_id: Optional[str] = None):
        if not self.allowed:
            error = RateLimitedError(
                limit=self.limit,
                window_seconds=window_seconds,
                retry_after=self.retry_after,
                request_id=request_id
            )
            error.headers.update(self.headers())
            raise error

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at))
        }


# ============================================================================
# RATE LIMIT STRATEGIES
# ============================================================================

class RateLimitStrategy:
    """Base class for rate limiting strategies."""

    async def check_and_consume(self, key: str, limit: int, window: int,
                                now: Optional[float] = None) -> RateLimitDecision:
        """
        Admit and record one request if the key is under its limit.

        Denied requests are not recorded.
        """
        raise NotImplementedError

    async def reset(self, key: str):
        raise NotImplementedError


class MemorySlidingWindowStrategy(RateLimitStrategy):
    """
    Sliding window over per-key timestamp deques.

    Keys are spread over shards, each with its own lock and bucket dict.
    Keys whose timestamps have all left the window are swept at most once
    per window, so the bucket dicts track recent identities only.
    """

    def __init__(self, shard_count: int = 16):
        self.locks = ShardedLocks(shard_count)
        self._buckets: List[Dict[str, Deque[float]]] = [{} for _ in range(shard_count)]
        self._last_sweep = 0.0

    async def check_and_consume(self, key: str, limit: int, window: int,
                                now: Optional[float] = None) -> RateLimitDecision:
        now = now if now is not None else time.time()
        window_start = now - window

        if now - self._last_sweep >= window:
            await self.sweep(window, now=now)

        async with self.locks.lock_for(key):
            buckets = self._buckets[self.locks.index(key)]
            timestamps = buckets.get(key)
            if timestamps is None:
                timestamps = buckets[key] = deque()

            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()

            if len(timestamps) >= limit:
                oldest = timestamps[0]
                retry_after = min(float(window), max(0.0, oldest + window - now))
                return RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after=retry_after,
                    reset_at=oldest + window
                )

            timestamps.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=limit,
                remaining=limit - len(timestamps),
                reset_at=timestamps[0] + window
            )

    async def reset(self, key: str):
        async with self.locks.lock_for(key):
            self._buckets[self.locks.index(key)].pop(key, None)

    async def sweep(self, window: int, now: Optional[float] = None) -> int:
        """Drop keys with no timestamp inside the window; returns how many."""
        now = now if now is not None else time.time()
        window_start = now - window
        self._last_sweep = now

        removed = 0
        for index, buckets in enumerate(self._buckets):
            async with self.locks.lock_at(index):
                expired = [key for key, timestamps in buckets.items()
                           if not timestamps or timestamps[-1] <= window_start]
                for key in expired:
                    del buckets[key]
                removed += len(expired)

        if removed:
            logger.debug("rate_limit_buckets_swept", removed=removed, tracked=self.tracked_keys())
        return removed

    def tracked_keys(self) -> int:
        return sum(len(buckets) for buckets in self._buckets)


# Trim, count, conditionally add; returns {allowed, count, oldest_score}
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now, ARGV[4])
    count = count + 1
    allowed = 1
end
redis.call('EXPIRE', key, window)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
return {allowed, count, oldest[2] or tostring(now)}
"""


class RedisSlidingWindowStrategy(RateLimitStrategy):
    """
    Sliding window using a sorted set per key, updated atomically in Lua.

    Uses the shared RedisConnectionPool; backend failures surface as
    CacheBackendUnavailableError and are handled by RateLimiter.
    """

    def __init__(self, pool, key_prefix: str = "rl:plans:"):
        self.pool = pool
        self.key_prefix = key_prefix

    async def check_and_consume(self, key: str, limit: int, window: int,
                                now: Optional[float] = None) -> RateLimitDecision:
        now = now if now is not None else time.time()
        redis_key = f"{self.key_prefix}{key}"
        member = f"{now}:{uuid.uuid4().hex[:8]}"

        async def _check(client):
            return await client.eval(SLIDING_WINDOW_SCRIPT, 1, redis_key, repr(now), window, limit, member)

        allowed, count, oldest = await self.pool.execute("RATE_LIMIT", _check, tier="rate_limit")
        oldest = float(oldest)

        if int(allowed):
            return RateLimitDecision(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - int(count)),
                reset_at=oldest + window
            )

        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            retry_after=min(float(window), max(0.0, oldest + window - now)),
            reset_at=oldest + window
        )

    async def reset(self, key: str):
        redis_key = f"{self.key_prefix}{key}"
        await self.pool.execute("RATE_LIMIT_RESET", lambda client: client.delete(redis_key), tier="rate_limit")


# ============================================================================
# RATE LIMITER
# ============================================================================

class RateLimiter:
    """
    Per-identity rate limiter.

    Features:
    - Sliding window (memory or Redis)
    - Anonymous callers share one bucket
    - Fails open when the Redis backend is unreachable
    - Can be disabled by configuration
    """

    def __init__(self, strategy: RateLimitStrategy, limit: int = 50, window_seconds: int = 3600,
                 enabled: bool = True):
        self.strategy = strategy
        self.limit = limit
        self.window_seconds = window_seconds
        self.enabled = enabled

        # Statistics
        self.stats = {
            "total_checks": 0,
            "total_allowed": 0,
            "total_blocked": 0,
            "backend_errors": 0
        }

    @classmethod
    def from_settings(cls, settings, redis_pool=None) -> "RateLimiter":
        config = settings.rate_limit
        if config.backend == StoreBackend.REDIS:
            strategy = RedisSlidingWindowStrategy(
                redis_pool or RedisConnectionPool.from_config(settings.cache.redis),
                key_prefix=config.key_prefix
            )
        else:
            strategy = MemorySlidingWindowStrategy(shard_count=settings.cache.shard_count)

        return cls(strategy, limit=config.requests, window_seconds=config.window_seconds, enabled=config.enabled)

    async def check_and_consume(self, identity: Optional[str], now: Optional[float] = None) -> RateLimitDecision:
        """Admit or deny one request for an identity."""
        now = now if now is not None else time.time()
        key = identity or ANONYMOUS_IDENTITY

        if not self.enabled:
            return RateLimitDecision(allowed=True, limit=self.limit, remaining=self.limit, reset_at=now)

        self.stats["total_checks"] += 1

        try:
            decision = await self.strategy.check_and_consume(key, self.limit, self.window_seconds, now=now)
        except CacheBackendUnavailableError as e:
            # Fail open - allow request when Redis is down
            self.stats["backend_errors"] += 1
            logger.error("rate_limiter_backend_unavailable", error=e.detail)
            return RateLimitDecision(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - 1,
                reset_at=now + self.window_seconds
            )

        if decision.allowed:
            self.stats["total_allowed"] += 1
        else:
            self.stats["total_blocked"] += 1
            logger.warning(
                "rate_limit_exceeded",
                identity=key[:20] + "..." if len(key) > 20 else key,
                limit=self.limit,
                window_seconds=self.window_seconds,
                retry_after=round(decision.retry_after, 3)
            )

        return decision

    async def reset(self, identity: Optional[str]):
        await self.strategy.reset(identity or ANONYMOUS_IDENTITY)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "enabled": self.enabled,
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "backend": type(self.strategy).__name__
        }


__all__ = [
    "RateLimiter",
    "RateLimitDecision",
    "RateLimitStrategy",
    "MemorySlidingWindowStrategy",
    "RedisSlidingWindowStrategy",
    "ANONYMOUS_IDENTITY",
]
