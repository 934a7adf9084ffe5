"""
Request Fingerprinting
Deterministic digest of a normalized GenerationRequest, used as the cache and
single-flight key.
"""

import hashlib
import json
from typing import Any, Dict, Iterable, Optional

from schemas.generation import GenerationRequest


def identity_scoped(request: GenerationRequest, scoped_categories: Iterable[str] = (),
                    scope_on_exclusions: bool = True) -> bool:
    """
    Whether the request's identity is part of its fingerprint.

    Identity is folded in when the intent category is configured as
    per-user, or when exclusions personalize the output.
    """
    if request.identity is None:
        return False
    if request.intent.category.value in set(scoped_categories):
        return True
    return scope_on_exclusions and bool(request.constraints.exclusions)


def canonical_payload(request: GenerationRequest, schema_version: str,
                      include_identity: bool) -> Dict[str, Any]:
    """Normalized, order-independent view of the request."""
    constraints = request.constraints
    return {
        "schema_version": schema_version,
        "intent": request.intent.value,
        "constraints": {
            "equipment": sorted(constraints.equipment),
            "experience_level": constraints.experience_level.value,
            "exclusions": sorted(constraints.exclusions),
            "target_regions": sorted(constraints.target_regions),
            "exclude_items": sorted(constraints.exclude_items),
        },
        # 30 and 30.0 must hash alike
        "target_value": round(float(request.target_value), 3),
        "identity": request.identity if include_identity else None,
    }


def compute_fingerprint(request: GenerationRequest, schema_version: str,
                        scoped_categories: Iterable[str] = (),
                        scope_on_exclusions: bool = True,
                        include_identity: Optional[bool] = None) -> str:
    """SHA-256 hex digest of the canonical JSON form of the request."""
    if include_identity is None:
        include_identity = identity_scoped(request, scoped_categories, scope_on_exclusions)

    payload = canonical_payload(request, schema_version, include_identity)
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


__all__ = ["compute_fingerprint", "canonical_payload", "identity_scoped"]
