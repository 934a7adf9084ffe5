"""
PLAN GENERATION GATEWAY - MAIN APPLICATION ENTRY POINT
FastAPI application with middleware, error handling and lifecycle management
for catalog-constrained workout and meal plan generation.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import structlog

from config import settings, StoreBackend
from api.v1.router import router as api_router
from core.exceptions import GatewayException, InvalidRequestError
from core.logging import setup_logging, get_logger, get_request_logger, log_exception
from core.rate_limiter import RateLimiter
from catalog.index import CatalogIndex
from cache.cache_manager import TieredCacheOrchestrator
from cache.redis_cache import RedisConnectionPool
from gateway.gateway_handler import GatewayHandler
from monitoring.metrics import MetricsCollector
from providers.openai_compatible import OpenAICompatibleProvider

# Setup structured logging
setup_logging()
logger = get_logger(__name__)
request_logger = get_request_logger()


# ============================================================================
# COMPONENT WIRING
# ============================================================================

def build_gateway_handler() -> GatewayHandler:
    """
    Build the process-wide handler from settings.

    The durable cache tier and the rate limiter share one Redis pool when
    either is configured for Redis.
    """
    redis_pool: Optional[RedisConnectionPool] = None
    if StoreBackend.REDIS in (settings.cache.durable_backend, settings.rate_limit.backend):
        redis_pool = RedisConnectionPool.from_config(settings.cache.redis)

    catalog = CatalogIndex.from_settings(settings.catalog)
    return GatewayHandler(
        catalog=catalog,
        provider=OpenAICompatibleProvider.from_settings(settings),
        settings=settings,
        cache=TieredCacheOrchestrator.from_settings(settings, redis_pool=redis_pool),
        rate_limiter=RateLimiter.from_settings(settings, redis_pool=redis_pool),
        metrics_collector=MetricsCollector()
    )


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager - Handles startup and shutdown events

    A catalog that fails to load aborts startup.
    """
    startup_time = time.time()
    logger.info(
        "gateway_starting",
        environment=settings.environment.value,
        version=settings.version,
        host=settings.server.host,
        port=settings.server.port
    )

    owns_handler = getattr(app.state, "gateway_handler", None) is None
    if owns_handler:
        try:
            handler = build_gateway_handler()
        except Exception as e:
            logger.error("startup_failed", error=str(e), exc_info=True)
            raise
        app.state.gateway_handler = handler
        app.state.metrics_collector = handler.metrics_collector
        handler.start()

    health = await app.state.gateway_handler.health_check()
    logger.info(
        "gateway_started",
        catalog_items=health["catalog"]["items"],
        durable_backend=health["cache"]["durable_backend"],
        durable_reachable=health["cache"]["durable_reachable"],
        startup_ms=round((time.time() - startup_time) * 1000, 2)
    )

    yield  # Application runs here

    if owns_handler:
        await app.state.gateway_handler.close()
        app.state.gateway_handler = None
    logger.info("gateway_stopped")


# ============================================================================
# FASTAPI APPLICATION INITIALIZATION
# ============================================================================

app = FastAPI(
    title=settings.project_name,
    version=settings.version,
    description="""
    # Plan Generation Gateway

    Generates workout and meal plans from a fixed item catalog with an LLM,
    guaranteeing every returned item exists and carries a media reference.

    ## Features

    - **Catalog filtering**: equipment, experience, exclusions and injury safety rules
    - **Constrained generation**: the model may only pick offered candidates
    - **Validation and repair**: invented items are replaced or dropped
    - **Tiered caching**: in-process fast tier, Redis durable tier
    - **Single flight**: concurrent identical requests share one generation
    - **Rate limiting**: sliding window per identity

    ## Identity

    The `X-User-Id` header is trusted as set by the upstream auth proxy.
    """,
    openapi_url="/openapi.json" if not settings.environment.is_production() else None,
    lifespan=lifespan,
)

# ============================================================================
# MIDDLEWARE STACK
# ============================================================================

# ----------------------------------------------------------------------------
# CORS Middleware
# ----------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "X-Request-ID",
        settings.server.identity_header,
    ],
    expose_headers=[
        "X-Request-ID",
        "X-Process-Time-MS",
        "Retry-After",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
    ],
    max_age=600,
)


# ----------------------------------------------------------------------------
# Request ID / Process Time Middleware
# ----------------------------------------------------------------------------
@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Assign a request ID, time the request and record HTTP metrics."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()

    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        request_logger.log_request_start(request_id, request.method, request.url.path)
        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-MS"] = str(round(process_time * 1000, 2))

        request_logger.log_request_end(
            request_id, request.method, request.url.path,
            status_code=response.status_code,
            duration_ms=process_time * 1000
        )

        metrics_collector: Optional[MetricsCollector] = getattr(request.app.state, "metrics_collector", None)
        if metrics_collector is not None:
            route = request.scope.get("route")
            await metrics_collector.record_request(
                method=request.method,
                endpoint=route.path if route is not None else request.url.path,
                status_code=response.status_code,
                duration=process_time
            )
        return response
    finally:
        structlog.contextvars.unbind_contextvars("request_id")


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(GatewayException)
async def gateway_exception_handler(request: Request, exc: GatewayException):
    """Render gateway failures as the structured error envelope."""
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        exc.request_id = request_id

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "gateway_exception",
        error_kind=exc.error_kind,
        detail=exc.detail,
        status_code=exc.status_code,
        path=request.url.path
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "loc": " -> ".join(str(loc) for loc in error["loc"]),
            "msg": error["msg"],
            "type": error["type"],
        })

    invalid = InvalidRequestError(
        detail="; ".join(f"{e['loc']}: {e['msg']}" for e in errors),
        errors=errors,
        request_id=getattr(request.state, "request_id", None)
    )

    logger.warning("validation_error", errors=errors, path=request.url.path)

    return JSONResponse(status_code=invalid.status_code, content=invalid.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle all other unhandled exceptions"""
    request_id = getattr(request.state, "request_id", None)

    log_exception(logger, exc, "unhandled_exception", path=request.url.path)

    internal = GatewayException(
        detail="An unexpected error occurred." if settings.environment.is_production() else str(exc),
        request_id=request_id
    )
    return JSONResponse(status_code=internal.status_code, content=internal.to_dict())


# ============================================================================
# API ROUTES
# ============================================================================

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/metrics", tags=["Monitoring"], include_in_schema=False)
async def metrics(request: Request):
    """Prometheus metrics endpoint"""
    metrics_collector: MetricsCollector = request.app.state.metrics_collector
    return Response(content=metrics_collector.render(), media_type=metrics_collector.content_type)


@app.get("/", tags=["System"])
async def root():
    return {
        "name": settings.project_name,
        "version": settings.version,
        "description": settings.description,
        "environment": settings.environment.value,
        "endpoints": {
            "generate": f"{settings.api_v1_prefix}/plans/generate",
            "health": f"{settings.api_v1_prefix}/health",
        },
        "metrics": "/metrics",
    }


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.debug,
        workers=settings.server.workers if not settings.debug else 1,
        log_level="info",
        access_log=False,  # request_context_middleware logs requests
        timeout_keep_alive=30,
    )
