"""
Catalog Index - Production Ready
Immutable in-memory index over exercise and food records with id lookup and
tag queries. Loaded once at startup; any record without a media reference
aborts the load.
"""

import json
import random
import re
from pathlib import Path
from typing import Dict, Any, Optional, List, Iterable, Iterator, Tuple, FrozenSet

from core.logging import get_logger
from core.exceptions import CatalogLoadError
from catalog.models import CatalogItem
from schemas.generation import ItemKind

# Initialize logger
logger = get_logger("catalog")

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_EXERCISES_PATH = DATA_DIR / "exercises.json"
DEFAULT_FOODS_PATH = DATA_DIR / "foods.json"

# Absolute URI (https://cdn/x.gif) or a relative asset path with an extension (media/x.gif)
MEDIA_REF_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*://[^\s/]+/?\S*|[\w.-]+(?:/[\w.-]+)*\.[A-Za-z0-9]+)$")

# ============================================================================
# QUERY RESULT
# ============================================================================

class CatalogQuery:
    """
    Lazy, restartable result of a tag query.

    Iterating twice walks the index twice and yields the same items in the
    same (insertion) order.
    """

    def __init__(self, index: "CatalogIndex", tags: FrozenSet[str]):
        self._index = index
        self.tags = tags

    def __iter__(self) -> Iterator[CatalogItem]:
        return self._index._iter_matching(self.tags)

    def __repr__(self) -> str:
        return f"CatalogQuery(tags={sorted(self.tags)})"


# ============================================================================
# CATALOG INDEX
# ============================================================================

class CatalogIndex:
    """
    Read-only catalog of items keyed by id.

    Features:
    - O(1) lookup by id
    - Inverted tag index for queries
    - Insertion order preserved (used as the stable tie-break downstream)
    - Fail-fast load: empty ids, duplicate ids and missing or malformed media
      refs are rejected
    """

    def __init__(self, items: Iterable[CatalogItem]):
        self._items: List[CatalogItem] = []
        self._by_id: Dict[str, CatalogItem] = {}
        self._position: Dict[str, int] = {}
        self._by_tag: Dict[str, List[int]] = {}

        for item in items:
            self._add(item)

        logger.info(
            "catalog_index_built",
            items=len(self._items),
            exercises=sum(1 for i in self._items if i.kind == ItemKind.EXERCISE),
            foods=sum(1 for i in self._items if i.kind == ItemKind.FOOD),
            tags=len(self._by_tag)
        )

    def _add(self, item: CatalogItem):
        if not item.id:
            raise CatalogLoadError("record has an empty id")
        if item.id in self._by_id:
            raise CatalogLoadError("duplicate id", record_id=item.id)
        if not item.media_ref:
            raise CatalogLoadError("record has no media_ref", record_id=item.id)
        if not MEDIA_REF_RE.match(item.media_ref):
            raise CatalogLoadError(f"media_ref is not a URI or asset path: {item.media_ref!r}", record_id=item.id)

        position = len(self._items)
        self._items.append(item)
        self._by_id[item.id] = item
        self._position[item.id] = position
        for tag in item.tags:
            self._by_tag.setdefault(tag, []).append(position)

    # ========================================================================
    # CONSTRUCTORS
    # ========================================================================

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]],
                     default_kind: ItemKind = ItemKind.EXERCISE) -> "CatalogIndex":
        """Build from raw records, converting each into a CatalogItem."""
        return cls(_records_to_items(records, default_kind))

    @classmethod
    def from_files(cls, *sources: Tuple[Path, ItemKind]) -> "CatalogIndex":
        """
        Build from one or more JSON files.

        Each file holds a list of records (or an object with an ``items``
        list).
        """
        items: List[CatalogItem] = []
        for path, kind in sources:
            items.extend(_records_to_items(_read_records(path), kind))
        return cls(items)

    @classmethod
    def from_settings(cls, catalog_config) -> "CatalogIndex":
        """Build from configured paths, falling back to the bundled dataset."""
        exercises = catalog_config.exercises_path or DEFAULT_EXERCISES_PATH
        foods = catalog_config.foods_path or DEFAULT_FOODS_PATH
        return cls.from_files((exercises, ItemKind.EXERCISE), (foods, ItemKind.FOOD))

    # ========================================================================
    # READ API
    # ========================================================================

    def lookup(self, item_id: str) -> Optional[CatalogItem]:
        """Resolve an id; None when the id is unknown."""
        return self._by_id.get(item_id)

    def query(self, tags: Iterable[str] = ()) -> CatalogQuery:
        """Items carrying every given tag, in insertion order."""
        return CatalogQuery(self, frozenset(t.lower() for t in tags))

    def items_of_kind(self, kind: ItemKind) -> List[CatalogItem]:
        return [item for item in self._items if item.kind == kind]

    def position(self, item_id: str) -> int:
        """Insertion position of an id, used for stable ordering."""
        return self._position[item_id]

    def _iter_matching(self, tags: FrozenSet[str]) -> Iterator[CatalogItem]:
        if not tags:
            yield from self._items
            return

        postings = [self._by_tag.get(tag) for tag in tags]
        if any(p is None for p in postings):
            return

        # Walk the shortest posting list, check the rest by tag membership
        shortest = min(postings, key=len)
        for position in shortest:
            item = self._items[position]
            if tags <= item.tags:
                yield item

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def __iter__(self) -> Iterator[CatalogItem]:
        return iter(self._items)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "items": len(self._items),
            "exercises": sum(1 for i in self._items if i.kind == ItemKind.EXERCISE),
            "foods": sum(1 for i in self._items if i.kind == ItemKind.FOOD),
            "tags": len(self._by_tag)
        }


# ============================================================================
# LOADING HELPERS
# ============================================================================

def _read_records(path: Path) -> List[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CatalogLoadError(f"cannot read {path}: {e}")

    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise CatalogLoadError(f"{path} does not contain a list of records")
    return data


def _records_to_items(records: Iterable[Dict[str, Any]], kind: ItemKind) -> Iterator[CatalogItem]:
    for record in records:
        try:
            yield CatalogItem.from_record(record, default_kind=kind)
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogLoadError(f"malformed record: {e}", record_id=str(record.get("id")) if isinstance(record, dict) else None)


# ============================================================================
# SYNTHETIC CATALOG
# ============================================================================

SYNTHETIC_EQUIPMENT = ["bodyweight", "dumbbell", "barbell", "kettlebell", "resistance_band", "cable", "machine"]
SYNTHETIC_REGIONS = ["chest", "back", "shoulders", "biceps", "triceps", "core", "glutes", "quads", "hamstrings", "calves"]
SYNTHETIC_LEVELS = ["beginner", "intermediate", "advanced"]
SYNTHETIC_STYLES = ["strength", "strength", "strength", "cardio", "mobility"]


def build_synthetic_catalog(size: int = 1500, seed: int = 7) -> CatalogIndex:
    """
    Deterministic exercise catalog for load checks and tests.

    Every item gets one equipment tag, one difficulty, one or two regions
    and a media ref.
    """
    rng = random.Random(seed)
    items = []
    for n in range(size):
        equipment = SYNTHETIC_EQUIPMENT[n % len(SYNTHETIC_EQUIPMENT)]
        level = SYNTHETIC_LEVELS[(n // len(SYNTHETIC_EQUIPMENT)) % len(SYNTHETIC_LEVELS)]
        style = SYNTHETIC_STYLES[rng.randrange(len(SYNTHETIC_STYLES))]
        regions = rng.sample(SYNTHETIC_REGIONS, k=rng.choice((1, 2)))
        items.append(CatalogItem(
            id=f"syn-{n:05d}",
            name=f"{equipment.replace('_', ' ').title()} {' '.join(regions).title()} Drill {n}",
            kind=ItemKind.EXERCISE,
            media_ref=f"https://media.example.com/exercises/syn-{n:05d}.gif",
            categories=frozenset({level, style}),
            equipment=frozenset({equipment}),
            regions=frozenset(regions),
        ))
    return CatalogIndex(items)


__all__ = [
    "CatalogIndex",
    "CatalogQuery",
    "build_synthetic_catalog",
    "DEFAULT_EXERCISES_PATH",
    "DEFAULT_FOODS_PATH",
]
