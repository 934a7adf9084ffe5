"""
Shared FastAPI dependencies.
"""

from typing import Optional

from fastapi import Request

from config import settings
from gateway.gateway_handler import GatewayHandler


def get_gateway_handler(request: Request) -> GatewayHandler:
    """The process-wide GatewayHandler built during application startup."""
    return request.app.state.gateway_handler


def get_identity(request: Request) -> Optional[str]:
    """Verified identity set by the auth proxy, or None for anonymous calls."""
    identity = request.headers.get(settings.server.identity_header)
    if identity is None:
        return None
    identity = identity.strip()
    return identity or None


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


__all__ = ["get_gateway_handler", "get_identity", "get_request_id"]
