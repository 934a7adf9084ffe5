"""
Tests for the Redis durable tier and the Redis sliding-window strategy.

Tests needing a live server are skipped when TEST_REDIS_URL (default
redis://localhost:6379/15) is unreachable.
"""

import os
import time
import uuid

import pytest

from cache.entry import CachedPlan
from cache.redis_cache import RedisConnectionPool, RedisDurableStore
from core.exceptions import CacheBackendUnavailableError
from core.rate_limiter import RateLimiter, RedisSlidingWindowStrategy
from schemas.generation import CacheSource

from conftest import run

REDIS_URL = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")
UNREACHABLE_URL = "redis://127.0.0.1:1/0"


def _redis_available() -> bool:
    async def ping():
        pool = RedisConnectionPool(REDIS_URL, socket_connect_timeout=1, timeout=1)
        try:
            return await pool.ping()
        finally:
            await pool.close()

    return run(ping())


requires_redis = pytest.mark.skipif(not _redis_available(), reason="Redis server not reachable")


def _entry(fingerprint, created_at=None, ttl=3600.0, payload=None):
    created_at = created_at if created_at is not None else time.time()
    return CachedPlan(
        fingerprint=fingerprint,
        payload=payload or {"plan": {"entries": []}},
        source=CacheSource.FRESH,
        created_at=created_at,
        expires_at=created_at + ttl
    )


def _prefix() -> str:
    return f"test:{uuid.uuid4().hex[:8]}:"


@requires_redis
class TestRedisDurableStore:
    def test_put_get_delete(self):
        async def scenario():
            store = RedisDurableStore(RedisConnectionPool(REDIS_URL), key_prefix=_prefix())
            try:
                written = await store.put(_entry("fp-1"), ttl_seconds=60)
                first = await store.get("fp-1")
                second = await store.get("fp-1")
                removed = await store.delete("fp-1")
                missing = await store.get("fp-1")
                return written, first, second, removed, missing
            finally:
                await store.close()

        written, first, second, removed, missing = run(scenario())
        assert written is True
        assert first.source == CacheSource.DURABLE
        assert first.payload == {"plan": {"entries": []}}
        assert first.hit_count == 1
        assert second.hit_count == 2
        assert removed is True
        assert missing is None

    def test_conditional_set_rejects_older_entry(self):
        async def scenario():
            store = RedisDurableStore(RedisConnectionPool(REDIS_URL), key_prefix=_prefix(), compression=False)
            try:
                now = time.time()
                await store.put(_entry("fp-1", created_at=now, payload={"version": "new"}), ttl_seconds=60)
                stale = await store.put(_entry("fp-1", created_at=now - 30, payload={"version": "old"}), ttl_seconds=60)
                return stale, await store.get("fp-1")
            finally:
                await store.close()

        stale, stored = run(scenario())
        assert stale is False
        assert stored.payload == {"version": "new"}

    def test_expired_payload_is_a_miss(self):
        async def scenario():
            store = RedisDurableStore(RedisConnectionPool(REDIS_URL), key_prefix=_prefix())
            try:
                await store.put(_entry("fp-1", created_at=time.time() - 120, ttl=60), ttl_seconds=60)
                return await store.get("fp-1")
            finally:
                await store.close()

        assert run(scenario()) is None


@requires_redis
class TestRedisSlidingWindow:
    def test_limit_and_retry_after(self):
        async def scenario():
            pool = RedisConnectionPool(REDIS_URL)
            limiter = RateLimiter(RedisSlidingWindowStrategy(pool, key_prefix=_prefix()), limit=2, window_seconds=60)
            try:
                now = time.time()
                decisions = [await limiter.check_and_consume("alice", now=now + n) for n in range(3)]
                other = await limiter.check_and_consume("bob", now=now)
                return decisions, other
            finally:
                await pool.close()

        decisions, other = run(scenario())
        assert [d.allowed for d in decisions] == [True, True, False]
        assert decisions[2].retry_after == pytest.approx(58, abs=0.01)
        assert other.allowed


class TestUnreachableRedis:
    def test_durable_store_raises_backend_unavailable(self):
        async def scenario():
            store = RedisDurableStore(RedisConnectionPool(UNREACHABLE_URL, socket_connect_timeout=1, timeout=1))
            try:
                await store.get("fp-1")
            finally:
                await store.close()

        with pytest.raises(CacheBackendUnavailableError):
            run(scenario())

    def test_rate_limiter_fails_open(self):
        async def scenario():
            pool = RedisConnectionPool(UNREACHABLE_URL, socket_connect_timeout=1, timeout=1)
            limiter = RateLimiter(RedisSlidingWindowStrategy(pool), limit=1)
            try:
                return limiter, await limiter.check_and_consume("alice")
            finally:
                await pool.close()

        limiter, decision = run(scenario())
        assert decision.allowed
        assert limiter.stats["backend_errors"] == 1
