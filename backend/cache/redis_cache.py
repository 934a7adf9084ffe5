"""
Redis Cache - Production Ready
Shared Redis connection pool plus the Redis-backed durable plan store.
Every Redis failure is reported as CacheBackendUnavailableError so callers
can degrade instead of failing the request.
"""

import json
import time
import zlib
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from core.logging import get_logger
from core.exceptions import CacheBackendUnavailableError
from cache.durable_store import DurableStore
from cache.entry import CachedPlan
from schemas.generation import CacheSource

# Initialize logger
logger = get_logger("cache")

# ============================================================================
# REDIS CONNECTION POOL
# ============================================================================

class RedisConnectionPool:
    """
    Lazily initialized Redis connection pool shared by the durable cache
    tier and the rate limiter.

    Features:
    - Connection pooling
    - Lazy connect on first use
    - Uniform error wrapping
    - Pool statistics
    """

    def __init__(
        self,
        url: str,
        max_connections: int = 50,
        timeout: int = 5,
        socket_connect_timeout: int = 5,
        health_check_interval: int = 30,
        retry_on_timeout: bool = True
    ):
        self.url = url
        self.max_connections = max_connections
        self.timeout = timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.health_check_interval = health_check_interval
        self.retry_on_timeout = retry_on_timeout

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._lock = asyncio.Lock()

        # Statistics
        self.stats = {
            "operations": 0,
            "failed_operations": 0,
            "connections_created": 0
        }

    @classmethod
    def from_config(cls, redis_config) -> "RedisConnectionPool":
        return cls(
            url=str(redis_config.url),
            max_connections=redis_config.max_connections,
            timeout=redis_config.socket_timeout,
            socket_connect_timeout=redis_config.socket_connect_timeout,
            health_check_interval=redis_config.health_check_interval,
            retry_on_timeout=redis_config.retry_on_timeout
        )

    async def get_client(self) -> Redis:
        """Get the Redis client, creating the pool on first use."""
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is None:
                self._pool = ConnectionPool.from_url(
                    self.url,
                    max_connections=self.max_connections,
                    socket_timeout=self.timeout,
                    socket_connect_timeout=self.socket_connect_timeout,
                    health_check_interval=self.health_check_interval,
                    retry_on_timeout=self.retry_on_timeout
                )
                self._client = Redis(connection_pool=self._pool)
                self.stats["connections_created"] += 1

                logger.info(
                    "redis_pool_initialized",
                    url=self.url.split("@")[-1],
                    max_connections=self.max_connections
                )
        return self._client

    async def execute(self, operation: str, func: Callable[[Redis], Awaitable[Any]], tier: str = "durable") -> Any:
        """
        Run one Redis operation.

        Raises:
            CacheBackendUnavailableError: On any Redis or socket failure
        """
        self.stats["operations"] += 1
        try:
            client = await self.get_client()
            return await func(client)
        except (RedisError, OSError) as e:
            self.stats["failed_operations"] += 1
            logger.warning(
                "redis_operation_failed",
                operation=operation,
                error=str(e)
            )
            raise CacheBackendUnavailableError(tier=tier, reason=f"{operation}: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self.execute("PING", lambda client: client.ping()))
        except CacheBackendUnavailableError:
            return False

    async def close(self):
        """Close connection pool."""
        if self._client is not None:
            await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        self._client = None
        self._pool = None
        logger.info("redis_pool_closed")

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)


# ============================================================================
# LUA SCRIPTS
# ============================================================================

# Write only if no stored entry has a newer created_at
CONDITIONAL_SET_SCRIPT = """
local existing = redis.call('HGET', KEYS[1], 'created_at')
if existing and tonumber(existing) > tonumber(ARGV[2]) then
    return 0
end
redis.call('HSET', KEYS[1], 'data', ARGV[1], 'created_at', ARGV[2])
redis.call('EXPIRE', KEYS[1], ARGV[3])
return 1
"""

# Read and count a hit without creating the key on a miss
GET_AND_COUNT_SCRIPT = """
local data = redis.call('HGET', KEYS[1], 'data')
if not data then
    return nil
end
local hits = redis.call('HINCRBY', KEYS[1], 'hits', 1)
return {data, hits}
"""


# ============================================================================
# REDIS DURABLE STORE
# ============================================================================

class RedisDurableStore(DurableStore):
    """
    Durable tier on Redis.

    Each plan is a hash: ``data`` (JSON, optionally zlib-compressed),
    ``created_at`` and ``hits``. Expiry is native Redis TTL.
    """

    def __init__(self, pool: RedisConnectionPool, key_prefix: str = "plans:cache:", compression: bool = True):
        self.pool = pool
        self.key_prefix = key_prefix
        self.compression = compression

    def _make_key(self, fingerprint: str) -> str:
        return f"{self.key_prefix}{fingerprint}"

    def _encode(self, entry: CachedPlan) -> bytes:
        data = json.dumps(entry.to_dict(), default=str).encode("utf-8")
        return zlib.compress(data) if self.compression else data

    def _decode(self, blob: bytes) -> CachedPlan:
        try:
            data = zlib.decompress(blob)
        except zlib.error:
            data = blob
        return CachedPlan.from_dict(json.loads(data.decode("utf-8")))

    async def get(self, fingerprint: str) -> Optional[CachedPlan]:
        key = self._make_key(fingerprint)

        async def _get(client: Redis):
            return await client.eval(GET_AND_COUNT_SCRIPT, 1, key)

        result = await self.pool.execute("GET", _get)
        if not result:
            return None

        blob, hits = result[0], result[1]
        try:
            entry = self._decode(blob)
        except (ValueError, KeyError, UnicodeDecodeError) as e:
            raise CacheBackendUnavailableError(tier=self.name, reason=f"corrupt entry: {e}")

        now = time.time()
        if entry.is_expired(now):
            return None

        entry.hit_count = int(hits)
        entry.last_accessed = now
        return entry.with_source(CacheSource.DURABLE)

    async def put(self, entry: CachedPlan, ttl_seconds: int) -> bool:
        key = self._make_key(entry.fingerprint)
        blob = self._encode(entry)
        ttl = max(1, int(ttl_seconds))

        async def _put(client: Redis):
            return await client.eval(CONDITIONAL_SET_SCRIPT, 1, key, blob, repr(entry.created_at), ttl)

        return bool(await self.pool.execute("SET", _put))

    async def delete(self, fingerprint: str) -> bool:
        key = self._make_key(fingerprint)
        return bool(await self.pool.execute("DELETE", lambda client: client.delete(key)))

    async def ping(self) -> bool:
        return await self.pool.ping()

    async def close(self):
        await self.pool.close()


__all__ = ["RedisConnectionPool", "RedisDurableStore", "CONDITIONAL_SET_SCRIPT", "GET_AND_COUNT_SCRIPT"]
