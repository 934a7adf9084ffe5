"""
Response Validator - Production Ready
Checks every id the model returned against the catalog, swaps invalid or
unsafe entries for the closest unused candidate, clamps generation params,
scales meal portions toward the calorie target and guarantees that every
entry leaving the gateway carries a media ref.
"""

import math
import re
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from core.logging import get_logger
from core.exceptions import GenerationUnusableError, NoSafeReplacementError, PlanIntegrityError
from catalog.index import CatalogIndex
from catalog.models import CatalogItem
from catalog.safety import SafetyProfile
from providers.output import RawEntry, RawModelOutput
from schemas.generation import GeneratedPlan, GenerationRequest, ItemKind, PlanEntry, ValidationReport

# Initialize logger
logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

EXERCISE_SECTIONS = ("warmup", "main", "cooldown")

# name: (minimum, maximum, default, type)
EXERCISE_PARAMS = {
    "sets": (1, 10, 3, int),
    "reps": (1, 50, 10, int),
    "rest_seconds": (0, 300, 60, int),
}
FOOD_PARAMS = {
    "portion_grams": (10, 1000, 150, float),
    "servings": (0.25, 10, 1.0, float),
}

# Meals within this fraction of target_value kcal keep their portions
CALORIE_TOLERANCE = 0.02


def _tokens(*texts: Optional[str]) -> FrozenSet[str]:
    found = set()
    for text in texts:
        if text:
            found.update(t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 1)
    return frozenset(found)


def _clamp(value: Any, minimum, maximum, default, cast):
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(number):
        return default
    return max(minimum, min(maximum, cast(number)))


class ResponseValidator:
    """
    Validator and repairer for raw model output.

    An entry is valid when its id resolves in the catalog, was offered as a
    candidate, and the item breaks none of the request's hard constraints.
    Invalid entries are replaced by the unused candidate with the highest
    tag overlap (ties go to candidate order) or dropped when none is left.
    """

    def __init__(self, catalog: CatalogIndex, strict_repair: bool = False):
        self.catalog = catalog
        self.strict_repair = strict_repair

        self.stats = {
            "plans_validated": 0,
            "entries_checked": 0,
            "invalid_found": 0,
            "replacements_made": 0,
            "entries_dropped": 0,
            "portions_adjusted": 0
        }

    def validate(
        self,
        raw: RawModelOutput,
        candidates: Sequence[CatalogItem],
        request: GenerationRequest,
        safety: Optional[SafetyProfile] = None
    ) -> Tuple[GeneratedPlan, ValidationReport]:
        """
        Turn raw output into a GeneratedPlan.

        Raises:
            NoSafeReplacementError: Candidates exhausted and strict_repair is on
            GenerationUnusableError: No entry survived
            PlanIntegrityError: An entry lacks a media ref (unreachable while
                the catalog load invariant holds)
        """
        safety = safety or SafetyProfile()
        candidate_ids = {item.id for item in candidates}
        report = ValidationReport(warnings=list(safety.warnings))

        # Resolve everything first so replacements never collide with a
        # valid id that appears later in the output
        resolved = []
        used: Set[str] = set()
        for raw_entry in raw.entries:
            item = self.catalog.lookup(raw_entry.item_id)
            reason = self._invalid_reason(raw_entry, item, candidate_ids, request, safety)
            resolved.append((raw_entry, item, reason))
            if reason is None:
                used.add(item.id)

        entries: List[PlanEntry] = []
        for raw_entry, item, reason in resolved:
            self.stats["entries_checked"] += 1

            if reason is None:
                entries.append(self._entry(item, raw_entry, request))
                continue

            report.invalid_found += 1
            replacement = self._best_replacement(raw_entry, item, candidates, used)

            if replacement is None:
                self.stats["entries_dropped"] += 1
                report.warnings.append(
                    f"NoSafeReplacement: dropped '{raw_entry.item_id}' ({reason}); no unused candidate left"
                )
                logger.warning(
                    "plan_entry_dropped",
                    item_id=raw_entry.item_id,
                    reason=reason
                )
                if self.strict_repair:
                    raise NoSafeReplacementError(raw_entry.item_id)
                continue

            used.add(replacement.id)
            report.replacements_made += 1
            report.warnings.append(
                f"Replaced '{raw_entry.item_id}' ({reason}) with '{replacement.id}' ({replacement.name})"
            )
            entries.append(self._entry(replacement, raw_entry, request, replaced_from=raw_entry.item_id))

        self.stats["plans_validated"] += 1
        self.stats["invalid_found"] += report.invalid_found
        self.stats["replacements_made"] += report.replacements_made

        if not entries:
            logger.error(
                "generation_unusable",
                invalid_found=report.invalid_found,
                raw_entries=len(raw.entries)
            )
            raise GenerationUnusableError(invalid_found=report.invalid_found, warnings=report.warnings)

        if request.intent.item_kind == ItemKind.FOOD:
            self._adjust_portions(entries, request.target_value, report)

        self.assert_media(entries)
        report.exercises_validated = True

        plan = GeneratedPlan(intent=request.intent, entries=entries, summary=raw.summary)

        logger.debug(
            "plan_validated",
            entries=len(entries),
            invalid_found=report.invalid_found,
            replacements_made=report.replacements_made
        )

        return plan, report

    def assert_media(self, entries: Sequence[PlanEntry]):
        """Every entry must resolve to a catalog item with media."""
        for entry in entries:
            item = self.catalog.lookup(entry.item_id)
            if item is None or not item.media_ref or entry.media_ref != item.media_ref:
                raise PlanIntegrityError(entry.item_id)

    # ========================================================================
    # CHECKS
    # ========================================================================

    @staticmethod
    def _invalid_reason(
        raw_entry: RawEntry,
        item: Optional[CatalogItem],
        candidate_ids: Set[str],
        request: GenerationRequest,
        safety: SafetyProfile
    ) -> Optional[str]:
        if item is None:
            return "not in catalog"
        if item.id not in candidate_ids:
            return "not among offered candidates"

        constraints = request.constraints
        if item.kind != request.intent.item_kind:
            return f"wrong item kind {item.kind.value}"
        if not item.equipment <= constraints.equipment:
            missing = ", ".join(sorted(item.equipment - constraints.equipment))
            return f"requires unavailable equipment {missing}"
        if item.id in constraints.exclude_items:
            return "excluded by user"

        return safety.violation(item)

    @staticmethod
    def _best_replacement(
        raw_entry: RawEntry,
        item: Optional[CatalogItem],
        candidates: Sequence[CatalogItem],
        used: Set[str]
    ) -> Optional[CatalogItem]:
        if item is not None:
            implied = item.tags | _tokens(item.name)
        else:
            implied = _tokens(raw_entry.item_id, raw_entry.name)

        best, best_score = None, -1
        for candidate in candidates:
            if candidate.id in used:
                continue
            score = len(implied & (candidate.tags | _tokens(candidate.name)))
            if score > best_score:
                best, best_score = candidate, score
        return best

    # ========================================================================
    # ENTRY BUILDING
    # ========================================================================

    @staticmethod
    def _entry(item: CatalogItem, raw_entry: RawEntry, request: GenerationRequest,
               replaced_from: Optional[str] = None) -> PlanEntry:
        params: Dict[str, Any] = {}

        if item.kind == ItemKind.EXERCISE:
            for name, (minimum, maximum, default, cast) in EXERCISE_PARAMS.items():
                params[name] = _clamp(raw_entry.params.get(name, default), minimum, maximum, default, cast)
            if "duration_seconds" in raw_entry.params:
                params["duration_seconds"] = _clamp(raw_entry.params["duration_seconds"], 0, 3600, 0, int)
            section = raw_entry.section if raw_entry.section in EXERCISE_SECTIONS else "main"
        else:
            for name, (minimum, maximum, default, cast) in FOOD_PARAMS.items():
                params[name] = _clamp(raw_entry.params.get(name, default), minimum, maximum, default, cast)
            section = request.intent.value

        return PlanEntry(
            item_id=item.id,
            name=item.name,
            media_ref=item.media_ref,
            section=section,
            params=params,
            replaced_from=replaced_from
        )

    # ========================================================================
    # PORTION ADJUSTMENT
    # ========================================================================

    def _adjust_portions(self, entries: List[PlanEntry], target_calories: float, report: ValidationReport):
        """
        Scale portion_grams so the meal lands on ``target_calories``.

        Skipped when any entry lacks calorie data. Deviations under
        CALORIE_TOLERANCE are left alone; portions stay within FOOD_PARAMS
        bounds, so a clamped meal may still miss the target and is flagged.
        """
        per_gram = []
        for entry in entries:
            item = self.catalog.lookup(entry.item_id)
            if item is None or item.calories_per_100g is None:
                return
            per_gram.append(item.calories_per_100g / 100 * entry.params["servings"])

        current = sum(rate * entry.params["portion_grams"] for rate, entry in zip(per_gram, entries))
        if current <= 0:
            return

        scale = target_calories / current
        if abs(1 - scale) >= CALORIE_TOLERANCE:
            minimum, maximum = FOOD_PARAMS["portion_grams"][:2]
            for entry in entries:
                entry.params["portion_grams"] = round(
                    max(minimum, min(maximum, entry.params["portion_grams"] * scale)), 1
                )
            report.portion_scale = round(scale, 3)
            self.stats["portions_adjusted"] += 1
            logger.info(
                "portions_adjusted",
                original_calories=round(current, 1),
                target_calories=target_calories,
                scale=report.portion_scale
            )

        total = 0.0
        for rate, entry in zip(per_gram, entries):
            entry.params["calories"] = round(rate * entry.params["portion_grams"])
            total += rate * entry.params["portion_grams"]
        report.total_calories = round(total, 1)

        if abs(total - target_calories) > target_calories * CALORIE_TOLERANCE:
            report.warnings.append(
                f"Calories off target by {abs(total - target_calories):.0f} kcal "
                f"(target: {target_calories:g}, actual: {total:.0f}); portions hit their limits"
            )

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)


__all__ = ["ResponseValidator"]
