"""
Item Filter - Production Ready
Narrows the catalog to an ordered candidate list for one generation request
through successive passes (kind, intent scope, equipment, experience,
exclusions), records the size after every pass, then ranks and caps the
survivors. Output is deterministic for identical inputs.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from core.logging import get_logger
from core.exceptions import InsufficientCatalogCoverageError
from catalog.index import CatalogIndex
from catalog.models import CatalogItem
from catalog.safety import SafetyProfile, SafetyRules
from schemas.generation import ExperienceLevel, FilterStats, GenerationRequest, Intent, ItemKind

# Initialize logger
logger = get_logger("catalog")

# ============================================================================
# FILTER TABLES
# ============================================================================

# Tags an item must carry (any of) to belong to an intent; empty = no scope
INTENT_SCOPES: Dict[Intent, FrozenSet[str]] = {
    Intent.FULL_BODY: frozenset(),
    Intent.UPPER_BODY: frozenset({"chest", "back", "shoulders", "biceps", "triceps", "forearms"}),
    Intent.LOWER_BODY: frozenset({"quads", "glutes", "hamstrings", "calves", "hips"}),
    Intent.PUSH: frozenset({"chest", "shoulders", "triceps"}),
    Intent.PULL: frozenset({"back", "biceps"}),
    Intent.CORE: frozenset({"core"}),
    Intent.CARDIO: frozenset({"cardio"}),
    Intent.MOBILITY: frozenset({"mobility"}),
    Intent.BREAKFAST: frozenset({"breakfast"}),
    Intent.LUNCH: frozenset({"lunch"}),
    Intent.DINNER: frozenset({"dinner"}),
    Intent.SNACK: frozenset({"snack"}),
}

# Difficulty tags allowed for each experience level
EXPERIENCE_ALLOWED: Dict[ExperienceLevel, FrozenSet[str]] = {
    ExperienceLevel.BEGINNER: frozenset({"beginner"}),
    ExperienceLevel.INTERMEDIATE: frozenset({"beginner", "intermediate"}),
    ExperienceLevel.ADVANCED: frozenset({"beginner", "intermediate", "advanced"}),
}

EQUIPMENT_SCORES = {"bodyweight": 10, "dumbbell": 8, "barbell": 6}
COMPOUND_KEYWORDS = ("squat", "deadlift", "press", "pull", "row", "lunge")


@dataclass
class FilterResult:
    """Ordered candidates plus per-pass statistics."""

    candidates: List[CatalogItem]
    stats: FilterStats
    safety: SafetyProfile = field(default_factory=SafetyProfile)

    @property
    def candidate_ids(self) -> List[str]:
        return [item.id for item in self.candidates]

    @property
    def warnings(self) -> List[str]:
        return list(self.safety.warnings)


# ============================================================================
# ITEM FILTER
# ============================================================================

class ItemFilter:
    """
    Candidate selection over a CatalogIndex.

    Never widens constraints on its own: an empty result raises
    InsufficientCatalogCoverageError and the caller decides what to relax.
    """

    def __init__(
        self,
        catalog: CatalogIndex,
        safety_rules: Optional[SafetyRules] = None,
        max_candidates: int = 40
    ):
        self.catalog = catalog
        self.safety_rules = safety_rules or SafetyRules()
        self.max_candidates = max_candidates

    def filter(self, request: GenerationRequest, max_candidates: Optional[int] = None) -> FilterResult:
        constraints = request.constraints
        limit = max_candidates or self.max_candidates
        stats = FilterStats(total=len(self.catalog))

        # Pass 1: item kind
        kind = request.intent.item_kind
        items = [item for item in self.catalog if item.kind == kind]
        stats.after_kind = len(items)

        # Pass 2: intent scope
        scope = INTENT_SCOPES.get(request.intent, frozenset())
        if scope:
            items = [item for item in items if item.tags & scope]
        stats.after_intent = len(items)

        # Pass 3: required equipment must be a subset of what the user has
        items = [item for item in items if item.equipment <= constraints.equipment]
        stats.after_equipment = len(items)

        # Pass 4: experience-appropriate difficulty (exercises only)
        if kind == ItemKind.EXERCISE:
            allowed = EXPERIENCE_ALLOWED[constraints.experience_level]
            items = [item for item in items if item.difficulty in allowed]
        stats.after_experience = len(items)

        # Pass 5: exclusions, safety rules, explicit item opt-outs
        safety = self.safety_rules.resolve(constraints.exclusions)
        items = [
            item for item in items
            if item.id not in constraints.exclude_items and safety.violation(item) is None
        ]
        stats.after_exclusions = len(items)

        # Rank (stable, so equal scores keep catalog order) and cap
        items = sorted(items, key=lambda item: -self._score(item, request))
        candidates = items[:limit]
        stats.final = len(candidates)

        logger.debug(
            "catalog_filtered",
            intent=request.intent.value,
            total=stats.total,
            after_kind=stats.after_kind,
            after_intent=stats.after_intent,
            after_equipment=stats.after_equipment,
            after_experience=stats.after_experience,
            after_exclusions=stats.after_exclusions,
            final=stats.final
        )

        if not candidates:
            logger.warning(
                "insufficient_catalog_coverage",
                intent=request.intent.value,
                filter_stats=stats.model_dump()
            )
            raise InsufficientCatalogCoverageError(filter_stats=stats.model_dump())

        return FilterResult(candidates=candidates, stats=stats, safety=safety)

    @staticmethod
    def _score(item: CatalogItem, request: GenerationRequest) -> int:
        """Preference score; higher ranks first."""
        constraints = request.constraints
        score = 0

        for equipment, points in EQUIPMENT_SCORES.items():
            if equipment in item.equipment:
                score += points
                break

        if item.kind == ItemKind.EXERCISE:
            name = item.name.lower()
            if any(keyword in name for keyword in COMPOUND_KEYWORDS):
                score += 15
            if item.difficulty == constraints.experience_level.value:
                score += 5

        if constraints.target_regions:
            score += 10 * len((item.regions | item.categories) & constraints.target_regions)

        return score


__all__ = ["ItemFilter", "FilterResult", "INTENT_SCOPES", "EXPERIENCE_ALLOWED"]
