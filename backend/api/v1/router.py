"""
API v1 Router - Version 1 API Endpoint Registration
"""

from fastapi import APIRouter

from api.v1.endpoints import health, plans

# ============================================================================
# V1 API ROUTER
# ============================================================================

router = APIRouter()

API_V1_METADATA = {
    "version": "1.0.0",
    "stability": "stable",
    "documentation": "/docs",
    "openapi": "/openapi.json"
}

router.include_router(plans.router)
router.include_router(health.router)


@router.get("/version", tags=["System"], summary="API version metadata")
async def version():
    return API_V1_METADATA


__all__ = ["router", "API_V1_METADATA"]
