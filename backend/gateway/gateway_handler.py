"""
Gateway Handler - Production Ready
Core plan generation pipeline: rate limiting, fingerprinting, tiered cache
lookup, single-flight deduplication, catalog filtering, constrained
generation, validation and repair, and cache write-back.
"""

import time
import uuid
import asyncio
from typing import Any, Dict, Optional

from core.logging import LogContext, get_logger, log_performance
from core.exceptions import GatewayException, ItemNotFoundError, ProviderTimeoutError
from core.rate_limiter import RateLimiter
from config import settings as default_settings
from catalog.filter import ItemFilter
from catalog.index import CatalogIndex
from catalog.models import CatalogItem
from catalog.safety import SafetyRules
from cache.cache_manager import TieredCacheOrchestrator
from cache.entry import CachedPlan
from gateway.fingerprint import compute_fingerprint
from gateway.single_flight import SingleFlightCoordinator
from gateway.validator import ResponseValidator
from monitoring.metrics import MetricsCollector
from providers.adapter import CompletionProviderAdapter
from providers.base import CompletionProvider
from schemas.generation import (
    CacheSource,
    FilterStats,
    GeneratedPlan,
    GenerationRequest,
    GenerationResponse,
    ResponseMetadata,
    ValidationReport
)

# Initialize logger
logger = get_logger("gateway")


class GatewayHandler:
    """
    Main gateway handler for plan generation.

    Pipeline:
    1. Rate limit (before any cache access)
    2. Fingerprint
    3. Fast tier -> durable tier
    4. Single-flight: leader generates, everyone else waits on its result
    5. Leader: re-check cache, filter, generate, validate, write back
    6. Response with cache and validation metadata
    """

    def __init__(
        self,
        catalog: CatalogIndex,
        provider: CompletionProvider,
        settings=None,
        cache: Optional[TieredCacheOrchestrator] = None,
        rate_limiter: Optional[RateLimiter] = None,
        single_flight: Optional[SingleFlightCoordinator] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        safety_rules: Optional[SafetyRules] = None
    ):
        self.settings = settings or default_settings
        generation_config = self.settings.generation

        self.catalog = catalog
        self.provider = provider
        self.item_filter = ItemFilter(
            catalog,
            safety_rules=safety_rules or SafetyRules.from_settings(self.settings),
            max_candidates=generation_config.max_candidates
        )
        self.adapter = CompletionProviderAdapter(provider, self.settings.provider, generation_config)
        self.validator = ResponseValidator(catalog)
        self.cache = cache or TieredCacheOrchestrator.from_settings(self.settings)
        self.rate_limiter = rate_limiter or RateLimiter.from_settings(self.settings)
        self.single_flight = single_flight or SingleFlightCoordinator(self.settings.cache.shard_count)
        self.metrics_collector = metrics_collector or MetricsCollector()

        logger.info(
            "gateway_handler_initialized",
            catalog_items=len(catalog),
            provider=provider.name,
            cache_enabled=self.cache.enabled,
            rate_limit_enabled=self.rate_limiter.enabled,
            schema_version=generation_config.schema_version
        )

    # ========================================================================
    # MAIN REQUEST PROCESSING PIPELINE
    # ========================================================================

    async def generate(
        self,
        request: GenerationRequest,
        request_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> GenerationResponse:
        """
        Generate (or serve from cache) a plan for one request.

        Raises:
            RateLimitedError: Identity over its window quota
            ProviderTimeoutError: Provider or request deadline exceeded
            GatewayException: Any other structured failure from the pipeline
        """
        request_id = request_id or str(uuid.uuid4())
        timeout = timeout or self.settings.generation.request_timeout_seconds
        pipeline_start = time.time()

        with LogContext(request_id=request_id):
            try:
                # ================================================================
                # STEP 1: Rate limit
                # ================================================================
                decision = await self.rate_limiter.check_and_consume(request.identity)
                if not decision.allowed:
                    await self.metrics_collector.record_rate_limit_exceeded()
                decision.raise_if_denied(self.rate_limiter.window_seconds, request_id=request_id)

                # ================================================================
                # STEP 2: Fingerprint
                # ================================================================
                fingerprint = self.fingerprint(request)

                logger.info(
                    "plan_requested",
                    intent=request.intent.value,
                    fingerprint=fingerprint,
                    identity_present=request.identity is not None
                )

                # ================================================================
                # STEP 3: Tiered cache lookup
                # ================================================================
                cached = await self.cache.lookup(fingerprint)
                if cached is not None:
                    response = await self._respond(cached, pipeline_start, deduplicated=False)
                    response.rate_limit_headers = decision.headers()
                    return response

                # ================================================================
                # STEP 4: Single flight
                # ================================================================
                handle = await self.single_flight.acquire_or_join(fingerprint)
                if handle.is_leader:
                    self.single_flight.run_leader(handle, lambda: self._lead(fingerprint, request))

                try:
                    entry = await self.single_flight.wait(handle, timeout=timeout)
                except asyncio.TimeoutError:
                    raise ProviderTimeoutError(timeout_seconds=timeout, request_id=request_id)

                response = await self._respond(entry, pipeline_start, deduplicated=not handle.is_leader)
                response.rate_limit_headers = decision.headers()
                return response

            except GatewayException as e:
                e.request_id = request_id
                await self.metrics_collector.record_generation(outcome=e.error_kind)
                logger.warning(
                    "plan_request_failed",
                    error_kind=e.error_kind,
                    retryable=e.retryable,
                    duration_ms=round((time.time() - pipeline_start) * 1000, 2)
                )
                raise

    def fingerprint(self, request: GenerationRequest) -> str:
        return compute_fingerprint(
            request,
            self.settings.generation.schema_version,
            scoped_categories=self.settings.cache.identity_scoped_categories,
            scope_on_exclusions=self.settings.cache.identity_scope_on_exclusions
        )

    # ========================================================================
    # LEADER WORK
    # ========================================================================

    async def _lead(self, fingerprint: str, request: GenerationRequest) -> CachedPlan:
        """
        Work done once per flight.

        Runs as its own task, so it finishes (and populates the cache) even
        if every waiting caller has gone away.
        """
        # Another flight may have finished between our miss and our lead
        cached = await self.cache.lookup(fingerprint)
        if cached is not None:
            return cached

        self.metrics_collector.generation_started()
        generation_start = time.time()
        try:
            payload = await self._generate_fresh(request)
        finally:
            self.metrics_collector.generation_finished()

        payload["generation_time_ms"] = round((time.time() - generation_start) * 1000, 2)
        log_performance(logger, "plan_generation", payload["generation_time_ms"], fingerprint=fingerprint)

        return await self.cache.write_back(fingerprint, payload, request.intent.category.value)

    async def _generate_fresh(self, request: GenerationRequest) -> Dict[str, Any]:
        # STEP 5a: Filter
        filter_result = self.item_filter.filter(request)

        # STEP 5b: Constrained generation
        try:
            raw = await self.adapter.generate(request, filter_result.candidates)
        except GatewayException as e:
            await self.metrics_collector.record_provider_call(result=e.error_kind)
            raise
        await self.metrics_collector.record_provider_call(
            result="success", tokens=raw.tokens_used, cost_usd=raw.cost_usd
        )

        # STEP 5c: Validate and repair
        plan, report = self.validator.validate(
            raw, filter_result.candidates, request, safety=filter_result.safety
        )
        await self.metrics_collector.record_replacements(report.replacements_made)

        logger.info(
            "plan_generated",
            intent=request.intent.value,
            entries=len(plan.entries),
            candidates=filter_result.stats.final,
            invalid_found=report.invalid_found,
            replacements_made=report.replacements_made,
            attempts=raw.attempts,
            strict_pass=raw.strict,
            tokens_used=raw.tokens_used,
            cost_usd=raw.cost_usd
        )

        return {
            "plan": plan.model_dump(mode="json"),
            "filter_stats": filter_result.stats.model_dump(),
            "validation": report.model_dump(),
            "model": raw.model,
            "tokens_used": raw.tokens_used,
            "cost_usd": raw.cost_usd
        }

    # ========================================================================
    # RESPONSE
    # ========================================================================

    async def _respond(self, entry: CachedPlan, pipeline_start: float, deduplicated: bool) -> GenerationResponse:
        payload = entry.payload
        elapsed_ms = round((time.time() - pipeline_start) * 1000, 2)
        fresh = entry.source == CacheSource.FRESH
        charged = fresh and not deduplicated

        plan = GeneratedPlan.model_validate(payload["plan"])
        # Cached payloads are re-checked against the live catalog
        self.validator.assert_media(plan.entries)

        metadata = ResponseMetadata(
            cached=not fresh,
            cache_source=entry.source,
            generation_time_ms=elapsed_ms,
            fingerprint=entry.fingerprint,
            deduplicated=deduplicated,
            filter_stats=FilterStats(**payload["filter_stats"]) if payload.get("filter_stats") else None,
            validation=ValidationReport(**payload["validation"]) if payload.get("validation") else None,
            model=payload.get("model"),
            tokens_used=payload.get("tokens_used", 0) if charged else 0,
            cost_usd=payload.get("cost_usd", 0.0) if charged else 0.0
        )

        await self.metrics_collector.record_generation(
            outcome="success",
            source=entry.source.value,
            duration=elapsed_ms / 1000,
            deduplicated=deduplicated
        )

        logger.info(
            "plan_served",
            fingerprint=entry.fingerprint,
            cache_source=entry.source.value,
            deduplicated=deduplicated,
            entries=len(plan.entries),
            duration_ms=elapsed_ms
        )

        return GenerationResponse(plan=plan, metadata=metadata)

    # ========================================================================
    # AUXILIARY OPERATIONS
    # ========================================================================

    async def invalidate(self, fingerprint: str) -> bool:
        return await self.cache.invalidate(fingerprint)

    def lookup_item(self, item_id: str) -> CatalogItem:
        item = self.catalog.lookup(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    async def health_check(self) -> Dict[str, Any]:
        cache_health = await self.cache.health_check()
        healthy = len(self.catalog) > 0 and (cache_health["durable_reachable"] or not cache_health["enabled"])
        return {
            "status": "healthy" if healthy else "degraded",
            "catalog": self.catalog.get_stats(),
            "cache": cache_health,
            "in_flight": self.single_flight.in_flight()
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.get_stats(),
            "single_flight": self.single_flight.get_stats(),
            "rate_limiter": self.rate_limiter.get_stats(),
            "provider": self.adapter.get_stats(),
            "validator": self.validator.get_stats()
        }

    def start(self):
        """Start background maintenance; needs a running event loop."""
        self.cache.start()

    async def close(self):
        await self.provider.close()
        await self.cache.close()
        logger.info("gateway_handler_closed")


__all__ = ["GatewayHandler"]
