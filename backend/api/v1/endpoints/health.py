"""
Health Check Endpoints - Production Ready
Gateway health for load balancers and monitoring: catalog size, cache
backend reachability and component statistics.
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from api.dependencies import get_gateway_handler
from core.logging import get_logger
from config import settings
from gateway.gateway_handler import GatewayHandler

# Initialize router
router = APIRouter(prefix="/health", tags=["Health"])

# Initialize logger
logger = get_logger("monitoring")

# Health status types
STATUS_HEALTHY = "healthy"

_started_at = time.time()


@router.get(
    "",
    summary="Health Check",
    description="""
    Gateway health.

    `degraded` means the durable cache tier is unreachable; requests are
    still served through fresh generation.
    """
)
async def health_check(handler: GatewayHandler = Depends(get_gateway_handler)) -> JSONResponse:
    report: Dict[str, Any] = await handler.health_check()
    report.update({
        "service": settings.project_name,
        "version": settings.version,
        "environment": settings.environment.value,
        "uptime_seconds": round(time.time() - _started_at, 1)
    })

    if report["status"] != STATUS_HEALTHY:
        logger.warning("health_check_degraded", cache=report["cache"])

    return JSONResponse(status_code=status.HTTP_200_OK, content=report)


@router.get("/live", summary="Liveness probe")
async def liveness() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/stats", summary="Component statistics")
async def stats(handler: GatewayHandler = Depends(get_gateway_handler)) -> Dict[str, Any]:
    return handler.get_stats()


__all__ = ["router"]
