"""
Cache Entry
The CachedPlan record stored by both cache tiers.
"""

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from schemas.generation import CacheSource


@dataclass
class CachedPlan:
    """
    A generated plan plus its cache bookkeeping.

    ``payload`` is the serialized plan and generation metadata (model,
    tokens, cost, filter stats, validation report). ``created_at`` orders
    writes: no tier replaces an entry with an older one.
    """

    fingerprint: str
    payload: Dict[str, Any]
    source: CacheSource
    created_at: float
    expires_at: float
    hit_count: int = 0
    last_accessed: Optional[float] = None
    category: Optional[str] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def remaining_ttl(self, now: Optional[float] = None) -> float:
        return max(0.0, self.expires_at - (now if now is not None else time.time()))

    def newer_than(self, other: "CachedPlan") -> bool:
        return self.created_at > other.created_at

    def with_source(self, source: CacheSource, **changes) -> "CachedPlan":
        return replace(self, source=source, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "payload": self.payload,
            "source": self.source.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "hit_count": self.hit_count,
            "last_accessed": self.last_accessed,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedPlan":
        return cls(
            fingerprint=data["fingerprint"],
            payload=data["payload"],
            source=CacheSource(data.get("source", CacheSource.DURABLE.value)),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            hit_count=int(data.get("hit_count", 0)),
            last_accessed=data.get("last_accessed"),
            category=data.get("category"),
        )


__all__ = ["CachedPlan"]
