"""
Custom Exceptions - Production Ready
Centralized exception hierarchy for the Plan Generation Gateway with error kinds,
status mapping, retry hints, and structured error responses.
"""

from typing import Any, Dict, Optional
from fastapi import status
from datetime import datetime, timezone
import uuid


class GatewayException(Exception):
    """
    Base exception for all gateway errors.

    Provides consistent error structure with:
    - HTTP status code
    - Error kind (stable, machine readable)
    - Human-readable message
    - Detailed description
    - Retry hint (transient vs structural)
    - Request ID for tracing
    - Timestamp
    - Additional context

    All other exceptions inherit from this class.
    """

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_kind: str = "InternalError",
        message: str = "An internal error occurred",
        detail: Optional[str] = None,
        retryable: bool = False,
        request_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.status_code = status_code
        self.error_kind = error_kind
        self.message = message
        self.detail = detail or message
        self.retryable = retryable
        self.request_id = request_id or str(uuid.uuid4())
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.context = context or {}
        self.headers = headers or {}

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the failure envelope returned to callers."""
        error_dict = {
            "success": False,
            "error_kind": self.error_kind,
            "message": self.message,
            "detail": self.detail,
            "retryable": self.retryable,
            "request_id": self.request_id,
            "timestamp": self.timestamp
        }

        if self.context:
            error_dict["context"] = self.context

        return error_dict

    def __str__(self) -> str:
        return f"[{self.error_kind}] {self.message} (Request: {self.request_id})"


# ============================================================================
# RATE LIMITING EXCEPTIONS
# ============================================================================

class RateLimitedError(GatewayException):
    """Raised when an identity has used up its sliding-window quota."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        retry_after: float,
        message: str = "Rate limit exceeded",
        detail: Optional[str] = None,
        request_id: Optional[str] = None
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        retry_seconds = max(1, int(retry_after + 0.999))

        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_kind="RateLimited",
            message=message,
            detail=detail or f"Limit of {limit} requests per {window_seconds}s reached. "
                             f"Retry after {retry_seconds} seconds.",
            retryable=True,
            request_id=request_id,
            context={"limit": limit, "window_seconds": window_seconds, "retry_after": round(retry_after, 3)},
            headers={
                "Retry-After": str(retry_seconds),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0"
            }
        )


# ============================================================================
# CATALOG EXCEPTIONS
# ============================================================================

class CatalogLoadError(GatewayException):
    """Raised at startup when the catalog dataset violates its invariants."""

    def __init__(
        self,
        reason: str,
        record_id: Optional[str] = None,
        message: str = "Catalog failed to load"
    ):
        context = {"reason": reason}
        if record_id is not None:
            context["record_id"] = record_id

        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_kind="CatalogLoadFailed",
            message=message,
            detail=reason if record_id is None else f"{reason} (record '{record_id}')",
            context=context
        )


class InsufficientCatalogCoverageError(GatewayException):
    """Raised when filtering leaves no candidate items for a request."""

    def __init__(
        self,
        filter_stats: Optional[Dict[str, int]] = None,
        message: str = "No catalog items match the requested constraints",
        detail: Optional[str] = None,
        request_id: Optional[str] = None
    ):
        self.filter_stats = filter_stats or {}

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_kind="InsufficientCatalogCoverage",
            message=message,
            detail=detail or "Relax equipment, experience or exclusion constraints and retry",
            retryable=False,
            request_id=request_id,
            context={"filter_stats": self.filter_stats}
        )


class ItemNotFoundError(GatewayException):
    """Raised when a catalog lookup by id finds nothing."""

    def __init__(self, item_id: str, request_id: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_kind="ItemNotFound",
            message="Catalog item not found",
            detail=f"No catalog item with id '{item_id}'",
            request_id=request_id,
            context={"item_id": item_id}
        )


# ============================================================================
# PROVIDER EXCEPTIONS
# ============================================================================

class ProviderError(GatewayException):
    """Raised for non-timeout failures from the completion provider."""

    def __init__(
        self,
        reason: str,
        transient: bool = False,
        provider_status: Optional[int] = None,
        message: str = "Completion provider failed",
        request_id: Optional[str] = None
    ):
        self.transient = transient
        self.provider_status = provider_status
        context = {"transient": transient}
        if provider_status is not None:
            context["provider_status"] = provider_status

        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_kind="ProviderError",
            message=message,
            detail=reason,
            retryable=transient,
            request_id=request_id,
            context=context
        )


class ProviderTimeoutError(GatewayException):
    """Raised when a provider call or a waiting caller exceeds its deadline."""

    def __init__(
        self,
        timeout_seconds: float,
        message: str = "Completion provider timed out",
        request_id: Optional[str] = None
    ):
        self.timeout_seconds = timeout_seconds

        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_kind="ProviderTimeout",
            message=message,
            detail=f"No result within {timeout_seconds}s",
            retryable=True,
            request_id=request_id,
            context={"timeout_seconds": timeout_seconds}
        )


class SchemaViolationError(GatewayException):
    """Raised when provider output stays unparsable after retries and the strict pass."""

    def __init__(
        self,
        attempts: int,
        last_error: str,
        message: str = "Provider output did not match the plan schema",
        request_id: Optional[str] = None
    ):
        self.attempts = attempts

        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_kind="SchemaViolation",
            message=message,
            detail=last_error,
            retryable=True,
            request_id=request_id,
            context={"attempts": attempts}
        )


# ============================================================================
# VALIDATION EXCEPTIONS
# ============================================================================

class NoSafeReplacementError(GatewayException):
    """Raised when an invalid plan entry cannot be swapped for a safe candidate."""

    def __init__(
        self,
        item_id: str,
        message: str = "No safe replacement available",
        request_id: Optional[str] = None
    ):
        self.item_id = item_id

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_kind="NoSafeReplacement",
            message=message,
            detail=f"Candidates exhausted while replacing '{item_id}'",
            retryable=False,
            request_id=request_id,
            context={"item_id": item_id}
        )


class GenerationUnusableError(GatewayException):
    """Raised when a plan has no valid entries left after repair."""

    def __init__(
        self,
        invalid_found: int = 0,
        warnings: Optional[list] = None,
        message: str = "Generated plan has no usable entries",
        request_id: Optional[str] = None
    ):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_kind="GenerationUnusable",
            message=message,
            detail="Every entry was invalid and no safe replacement remained",
            retryable=True,
            request_id=request_id,
            context={"invalid_found": invalid_found, "warnings": warnings or []}
        )


class PlanIntegrityError(GatewayException):
    """Raised if a plan about to leave the gateway references an item without media."""

    def __init__(self, item_id: str, request_id: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_kind="PlanIntegrity",
            message="Plan failed the media reference check",
            detail=f"Entry '{item_id}' does not resolve to an item with media",
            request_id=request_id,
            context={"item_id": item_id}
        )


class InvalidRequestError(GatewayException):
    """Raised when an inbound request body fails validation."""

    def __init__(
        self,
        detail: str,
        errors: Optional[list] = None,
        request_id: Optional[str] = None
    ):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_kind="InvalidRequest",
            message="Invalid generation request",
            detail=detail,
            request_id=request_id,
            context={"errors": errors} if errors else None
        )


# ============================================================================
# CACHE EXCEPTIONS
# ============================================================================

class CacheBackendUnavailableError(GatewayException):
    """
    Raised by cache tiers on backend I/O failure.

    The orchestrator absorbs it and treats the lookup as a miss; it never
    reaches a caller.
    """

    def __init__(
        self,
        tier: str,
        reason: str,
        message: str = "Cache backend unavailable"
    ):
        self.tier = tier

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_kind="CacheBackendUnavailable",
            message=message,
            detail=f"{tier} tier: {reason}",
            retryable=True,
            context={"tier": tier}
        )


# ============================================================================
# ERROR KIND MAPPING
# ============================================================================

ERROR_KIND_MAPPING = {
    # Rate limiting (429)
    "RateLimited": RateLimitedError,

    # Catalog (404, 422, 500)
    "CatalogLoadFailed": CatalogLoadError,
    "InsufficientCatalogCoverage": InsufficientCatalogCoverageError,
    "ItemNotFound": ItemNotFoundError,

    # Provider (502, 504)
    "ProviderError": ProviderError,
    "ProviderTimeout": ProviderTimeoutError,
    "SchemaViolation": SchemaViolationError,

    # Validation (422, 500, 502)
    "NoSafeReplacement": NoSafeReplacementError,
    "GenerationUnusable": GenerationUnusableError,
    "PlanIntegrity": PlanIntegrityError,
    "InvalidRequest": InvalidRequestError,

    # Cache (503, absorbed)
    "CacheBackendUnavailable": CacheBackendUnavailableError,
}


def get_exception_by_error_kind(error_kind: str, **kwargs) -> GatewayException:
    """
    Factory method to create exception from error kind.

    Raises:
        KeyError: If error_kind is not mapped
    """
    if error_kind not in ERROR_KIND_MAPPING:
        raise KeyError(f"Unknown error kind: {error_kind}")

    exception_class = ERROR_KIND_MAPPING[error_kind]
    return exception_class(**kwargs)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    # Base
    "GatewayException",

    # Rate Limiting
    "RateLimitedError",

    # Catalog
    "CatalogLoadError",
    "InsufficientCatalogCoverageError",
    "ItemNotFoundError",

    # Provider
    "ProviderError",
    "ProviderTimeoutError",
    "SchemaViolationError",

    # Validation
    "NoSafeReplacementError",
    "GenerationUnusableError",
    "PlanIntegrityError",
    "InvalidRequestError",

    # Cache
    "CacheBackendUnavailableError",

    # Factory
    "get_exception_by_error_kind",
    "ERROR_KIND_MAPPING",
]
