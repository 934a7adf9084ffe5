"""
Cache Manager - Production Ready
Tiered cache orchestration for generated plans: fast in-process tier first,
durable tier second, write-back to both with independent expirations.
Backend failures are absorbed and logged; they never fail a request.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from core.logging import get_logger, get_cache_logger
from core.exceptions import CacheBackendUnavailableError
from cache.durable_store import DurableStore, MemoryDurableStore
from cache.entry import CachedPlan
from cache.fast_tier import FastCacheTier
from cache.redis_cache import RedisConnectionPool, RedisDurableStore
from config import StoreBackend
from schemas.generation import CacheSource

# Initialize logger
logger = get_logger("cache")
cache_logger = get_cache_logger()

# ============================================================================
# CACHE STATISTICS
# ============================================================================

class CacheStats:
    """Cache statistics collector."""

    def __init__(self):
        self.fast_hits = 0
        self.durable_hits = 0
        self.misses = 0
        self.writes = 0
        self.stale_writes_rejected = 0
        self.backfills = 0
        self.invalidations = 0
        self.swept = 0
        self.errors = 0
        self.total_latency_ms = 0.0
        self.lookups = 0

    def record_hit(self, source: CacheSource, latency_ms: float):
        if source == CacheSource.FAST:
            self.fast_hits += 1
        else:
            self.durable_hits += 1
        self.lookups += 1
        self.total_latency_ms += latency_ms

    def record_miss(self, latency_ms: float):
        self.misses += 1
        self.lookups += 1
        self.total_latency_ms += latency_ms

    def record_error(self):
        self.errors += 1

    @property
    def hit_rate(self) -> float:
        if self.lookups == 0:
            return 0.0
        return (self.fast_hits + self.durable_hits) / self.lookups

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fast_hits": self.fast_hits,
            "durable_hits": self.durable_hits,
            "misses": self.misses,
            "writes": self.writes,
            "stale_writes_rejected": self.stale_writes_rejected,
            "backfills": self.backfills,
            "invalidations": self.invalidations,
            "swept": self.swept,
            "errors": self.errors,
            "hit_rate": round(self.hit_rate, 4),
            "avg_latency_ms": round(self.total_latency_ms / self.lookups, 3) if self.lookups else 0.0
        }


# ============================================================================
# TIERED CACHE ORCHESTRATOR
# ============================================================================

class TieredCacheOrchestrator:
    """
    Two-tier plan cache.

    Lookup: fast tier -> durable tier -> miss. A durable hit is backfilled
    into the fast tier for at most the fast TTL and never beyond the
    durable entry's own remaining lifetime.

    Write-back: one CachedPlan written to both tiers; the durable TTL
    depends on the intent category.
    """

    def __init__(
        self,
        fast_tier: FastCacheTier,
        durable_store: DurableStore,
        durable_ttl_for: Callable[[str], int],
        enabled: bool = True,
        sweep_interval_seconds: float = 60
    ):
        self.fast_tier = fast_tier
        self.durable_store = durable_store
        self.durable_ttl_for = durable_ttl_for
        self.enabled = enabled
        self.sweep_interval_seconds = sweep_interval_seconds
        self.stats = CacheStats()
        self._sweep_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings, redis_pool: Optional[RedisConnectionPool] = None) -> "TieredCacheOrchestrator":
        cache_config = settings.cache
        fast_tier = FastCacheTier(
            ttl_seconds=cache_config.fast_ttl_seconds,
            max_entries=cache_config.fast_max_entries,
            shard_count=cache_config.shard_count
        )

        if cache_config.durable_backend == StoreBackend.REDIS:
            durable_store = RedisDurableStore(
                redis_pool or RedisConnectionPool.from_config(cache_config.redis),
                key_prefix=cache_config.durable_key_prefix,
                compression=cache_config.compression
            )
        else:
            durable_store = MemoryDurableStore(shard_count=cache_config.shard_count)

        return cls(
            fast_tier,
            durable_store,
            settings.durable_ttl_for,
            enabled=cache_config.enabled,
            sweep_interval_seconds=cache_config.sweep_interval_seconds
        )

    # ========================================================================
    # LOOKUP
    # ========================================================================

    async def lookup(self, fingerprint: str) -> Optional[CachedPlan]:
        """
        Find a cached plan.

        Returns:
            CachedPlan tagged with the tier it came from, or None on a miss
        """
        if not self.enabled:
            return None

        start_time = time.time()

        entry = await self._guarded("get", self.fast_tier.name, fingerprint, self.fast_tier.get(fingerprint))
        if entry is not None:
            return self._hit(fingerprint, entry, start_time)

        entry = await self._guarded("get", self.durable_store.name, fingerprint, self.durable_store.get(fingerprint))
        if entry is not None:
            ttl = min(self.fast_tier.ttl_seconds, entry.remaining_ttl())
            if ttl > 0:
                written = await self._guarded(
                    "backfill", self.fast_tier.name, fingerprint, self.fast_tier.put(entry, ttl_seconds=ttl)
                )
                if written:
                    self.stats.backfills += 1
            return self._hit(fingerprint, entry, start_time)

        latency_ms = (time.time() - start_time) * 1000
        self.stats.record_miss(latency_ms)
        cache_logger.log_cache_operation("lookup", fingerprint, hit=False, latency_ms=latency_ms)
        return None

    def _hit(self, fingerprint: str, entry: CachedPlan, start_time: float) -> CachedPlan:
        latency_ms = (time.time() - start_time) * 1000
        self.stats.record_hit(entry.source, latency_ms)
        cache_logger.log_cache_operation(
            "lookup", fingerprint, tier=entry.source.value, hit=True, latency_ms=latency_ms
        )
        return entry

    # ========================================================================
    # WRITE-BACK
    # ========================================================================

    async def write_back(self, fingerprint: str, payload: Dict[str, Any], category: str,
                         created_at: Optional[float] = None) -> CachedPlan:
        """
        Store a freshly generated plan in both tiers.

        Returns the CachedPlan (source=fresh) even when a tier write failed
        or was rejected as stale.
        """
        created_at = created_at if created_at is not None else time.time()
        durable_ttl = self.durable_ttl_for(category)
        entry = CachedPlan(
            fingerprint=fingerprint,
            payload=payload,
            source=CacheSource.FRESH,
            created_at=created_at,
            expires_at=created_at + durable_ttl,
            category=category
        )

        if not self.enabled:
            return entry

        for tier, write in (
            (self.fast_tier.name, lambda: self.fast_tier.put(entry)),
            (self.durable_store.name, lambda: self.durable_store.put(entry, durable_ttl)),
        ):
            written = await self._guarded("set", tier, fingerprint, write())
            if written:
                self.stats.writes += 1
            elif written is False:
                self.stats.stale_writes_rejected += 1
                logger.info("cache_stale_write_rejected", fingerprint=fingerprint, tier=tier)

        return entry

    # ========================================================================
    # INVALIDATION
    # ========================================================================

    async def invalidate(self, fingerprint: str) -> bool:
        """Remove a plan from both tiers; True if any tier held it."""
        removed_fast = await self._guarded("delete", self.fast_tier.name, fingerprint, self.fast_tier.delete(fingerprint))
        removed_durable = await self._guarded(
            "delete", self.durable_store.name, fingerprint, self.durable_store.delete(fingerprint)
        )
        self.stats.invalidations += 1

        logger.info(
            "cache_invalidated",
            fingerprint=fingerprint,
            fast=bool(removed_fast),
            durable=bool(removed_durable)
        )
        return bool(removed_fast or removed_durable)

    # ========================================================================
    # EXPIRY SWEEP
    # ========================================================================

    async def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        """Drop expired entries from both tiers; returns removals per tier."""
        removed = {
            self.fast_tier.name: await self.fast_tier.sweep(now),
            self.durable_store.name: await self.durable_store.sweep(now),
        }
        self.stats.swept += sum(removed.values())
        if any(removed.values()):
            logger.debug("cache_swept", **removed)
        return removed

    def start(self):
        """Schedule the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info("cache_sweep_started", interval_seconds=self.sweep_interval_seconds)

    async def _sweep_loop(self):
        """Background task sweeping expired entries every interval."""
        while True:
            try:
                await asyncio.sleep(self.sweep_interval_seconds)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("cache_sweep_failed", error=str(e), exc_info=True)

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _guarded(self, operation: str, tier: str, fingerprint: str, awaitable):
        """Await a tier operation, turning backend failures into None."""
        try:
            return await awaitable
        except CacheBackendUnavailableError as e:
            self.stats.record_error()
            cache_logger.log_cache_operation(operation, fingerprint, tier=tier, error=e.detail)
            return None

    async def health_check(self) -> Dict[str, Any]:
        durable_ok = await self.durable_store.ping()
        return {
            "enabled": self.enabled,
            "fast_entries": len(self.fast_tier),
            "durable_backend": type(self.durable_store).__name__,
            "durable_reachable": durable_ok
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats.to_dict(),
            "fast_tier": self.fast_tier.get_stats()
        }

    async def close(self):
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.durable_store.close()


__all__ = ["TieredCacheOrchestrator", "CacheStats"]
