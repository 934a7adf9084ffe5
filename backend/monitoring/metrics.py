"""
Metrics Collector - Production Ready
Prometheus metrics for the plan gateway: HTTP traffic, generation outcomes
and latency, cache sources, provider calls, repairs and rate limiting.
Each collector owns its registry so tests can build isolated instances.
"""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST
)

GENERATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)


class MetricsCollector:
    """Prometheus metrics for the gateway."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "plan_gateway"):
        self.registry = registry or CollectorRegistry()

        # HTTP
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests",
            ["method", "endpoint", "status_code"],
            namespace=namespace,
            registry=self.registry
        )
        self.http_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request latency",
            ["method", "endpoint"],
            namespace=namespace,
            registry=self.registry
        )

        # Generation
        self.generations = Counter(
            "generation_requests_total",
            "Generation requests by outcome",
            ["outcome"],
            namespace=namespace,
            registry=self.registry
        )
        self.generation_latency = Histogram(
            "generation_duration_seconds",
            "End-to-end generation latency by cache source",
            ["source"],
            buckets=GENERATION_BUCKETS,
            namespace=namespace,
            registry=self.registry
        )
        self.cache_lookups = Counter(
            "cache_lookups_total",
            "Plans served by cache source",
            ["source"],
            namespace=namespace,
            registry=self.registry
        )
        self.provider_calls = Counter(
            "provider_calls_total",
            "Completion provider generations by result",
            ["result"],
            namespace=namespace,
            registry=self.registry
        )
        self.provider_tokens = Counter(
            "provider_tokens_total",
            "Tokens consumed by the completion provider",
            namespace=namespace,
            registry=self.registry
        )
        self.provider_cost = Counter(
            "provider_cost_usd_total",
            "Estimated provider spend in USD",
            namespace=namespace,
            registry=self.registry
        )
        self.replacements = Counter(
            "validator_replacements_total",
            "Plan entries replaced by the validator",
            namespace=namespace,
            registry=self.registry
        )
        self.rate_limited = Counter(
            "rate_limited_total",
            "Requests rejected by the rate limiter",
            namespace=namespace,
            registry=self.registry
        )
        self.in_flight = Gauge(
            "generations_in_flight",
            "Generations currently running",
            namespace=namespace,
            registry=self.registry
        )
        self.deduplicated = Counter(
            "deduplicated_requests_total",
            "Requests served by joining another caller's generation",
            namespace=namespace,
            registry=self.registry
        )

    # ========================================================================
    # RECORDING
    # ========================================================================

    async def record_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.http_requests.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        self.http_duration.labels(method=method, endpoint=endpoint).observe(duration)

    async def record_generation(self, outcome: str, source: Optional[str] = None,
                                duration: Optional[float] = None, deduplicated: bool = False):
        self.generations.labels(outcome=outcome).inc()
        if source is not None:
            self.cache_lookups.labels(source=source).inc()
            if duration is not None:
                self.generation_latency.labels(source=source).observe(duration)
        if deduplicated:
            self.deduplicated.inc()

    async def record_provider_call(self, result: str, tokens: int = 0, cost_usd: float = 0.0):
        self.provider_calls.labels(result=result).inc()
        if tokens:
            self.provider_tokens.inc(tokens)
        if cost_usd:
            self.provider_cost.inc(cost_usd)

    async def record_replacements(self, count: int):
        if count:
            self.replacements.inc(count)

    async def record_rate_limit_exceeded(self):
        self.rate_limited.inc()

    def generation_started(self):
        self.in_flight.inc()

    def generation_finished(self):
        self.in_flight.dec()

    # ========================================================================
    # EXPOSITION
    # ========================================================================

    def render(self) -> bytes:
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


__all__ = ["MetricsCollector"]
