"""
Plan Endpoints - Production Ready
Plan generation, cache invalidation and catalog lookup.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Response, status

from api.dependencies import get_gateway_handler, get_identity, get_request_id
from core.logging import get_logger
from gateway.gateway_handler import GatewayHandler
from schemas.generation import ErrorResponse, GenerationBody, GenerationResponse

# Initialize router
router = APIRouter(prefix="/plans", tags=["Plans"])

# Initialize logger
logger = get_logger("api")

ERROR_RESPONSES = {
    status.HTTP_422_UNPROCESSABLE_ENTITY: {
        "model": ErrorResponse,
        "description": "Invalid request or no catalog items match the constraints"
    },
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse, "description": "Provider failed or output unusable"},
    status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse, "description": "Provider timed out"},
}

# ============================================================================
# ENDPOINTS
# ============================================================================

@router.post(
    "/generate",
    response_model=GenerationResponse,
    summary="Generate a workout or meal plan",
    description="""
    Generate a plan from catalog items matching the given constraints.

    ### Caching
    - Identical requests are served from the fast tier, then the durable tier
    - Concurrent identical requests share a single generation
    - `metadata.cache_source` is `fast`, `durable` or `fresh`

    ### Identity
    The caller's identity is read from the `X-User-Id` header set by the
    auth proxy. Requests without it share the anonymous rate-limit bucket.

    ### Guarantees
    Every returned entry references a catalog item with a media reference.
    Entries the model invented are replaced or dropped, and reported in
    `metadata.validation`.

    ### Rate limiting
    Successful responses carry `X-RateLimit-Limit`, `X-RateLimit-Remaining`
    and `X-RateLimit-Reset`; a 429 adds `Retry-After`.
    """,
    responses=ERROR_RESPONSES
)
async def generate_plan(
    body: GenerationBody,
    response: Response,
    identity: Optional[str] = Depends(get_identity),
    request_id: Optional[str] = Depends(get_request_id),
    handler: GatewayHandler = Depends(get_gateway_handler)
) -> GenerationResponse:
    result = await handler.generate(body.to_request(identity), request_id=request_id)
    response.headers.update(result.rate_limit_headers)
    return result


@router.delete(
    "/cache/{fingerprint}",
    summary="Invalidate a cached plan",
    description="Remove a plan from both cache tiers. Safe to call for unknown fingerprints."
)
async def invalidate_plan(
    fingerprint: str = Path(..., min_length=16, max_length=128, pattern=r"^[0-9a-f]+$"),
    handler: GatewayHandler = Depends(get_gateway_handler)
) -> Dict[str, Any]:
    removed = await handler.invalidate(fingerprint)
    return {"success": True, "fingerprint": fingerprint, "removed": removed}


@router.get(
    "/catalog/{item_id}",
    summary="Look up a catalog item",
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse, "description": "Unknown item id"}}
)
async def get_catalog_item(
    item_id: str,
    handler: GatewayHandler = Depends(get_gateway_handler)
) -> Dict[str, Any]:
    item = handler.lookup_item(item_id)
    return {"success": True, "item": item.to_dict()}


__all__ = ["router"]
