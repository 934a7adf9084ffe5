"""
Catalog Models
Immutable catalog records shared by the index, the filter and the validator.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional

from schemas.generation import ItemKind


def _tag_set(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(str(v).strip().lower() for v in values or () if str(v).strip())


def _calories(value: Any) -> Optional[float]:
    if value is None:
        return None
    calories = float(value)
    if not math.isfinite(calories) or calories < 0:
        raise ValueError(f"calories_per_100g must be a non-negative number, got {value!r}")
    return calories


@dataclass(frozen=True)
class CatalogItem:
    """
    A single exercise or food record.

    ``media_ref`` is guaranteed non-empty for every item held by a
    CatalogIndex; the index refuses to load records without one.
    ``calories_per_100g`` only applies to foods and may be unknown.
    """

    id: str
    name: str
    kind: ItemKind
    media_ref: str
    categories: FrozenSet[str] = field(default_factory=frozenset)
    equipment: FrozenSet[str] = field(default_factory=frozenset)
    regions: FrozenSet[str] = field(default_factory=frozenset)
    contraindications: FrozenSet[str] = field(default_factory=frozenset)
    calories_per_100g: Optional[float] = None

    @property
    def tags(self) -> FrozenSet[str]:
        return self.categories | self.equipment | self.regions | self.contraindications

    @property
    def difficulty(self) -> str:
        for level in ("beginner", "intermediate", "advanced"):
            if level in self.categories:
                return level
        return "beginner"

    @classmethod
    def from_record(cls, record: Dict[str, Any], default_kind: ItemKind = ItemKind.EXERCISE) -> "CatalogItem":
        """Build an item from a raw dataset record (JSON object)."""
        return cls(
            id=str(record["id"]).strip(),
            name=str(record.get("name", record["id"])).strip(),
            kind=ItemKind(record.get("kind", default_kind.value)),
            media_ref=str(record.get("media_ref") or "").strip(),
            categories=_tag_set(record.get("categories", ())),
            equipment=_tag_set(record.get("equipment", ())),
            regions=_tag_set(record.get("regions", ())),
            contraindications=_tag_set(record.get("contraindications", ())),
            calories_per_100g=_calories(record.get("calories_per_100g")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "media_ref": self.media_ref,
            "categories": sorted(self.categories),
            "equipment": sorted(self.equipment),
            "regions": sorted(self.regions),
            "contraindications": sorted(self.contraindications),
            "calories_per_100g": self.calories_per_100g,
        }


__all__ = ["CatalogItem"]
