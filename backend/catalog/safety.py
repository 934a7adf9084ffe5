"""
Safety Rules
Maps free-form exclusions (injuries, conditions, diets, allergies) onto the
catalog tags and name keywords that must be filtered out. The built-in
rules can be replaced from a YAML file (see CatalogConfig.safety_rules_path).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from catalog.models import CatalogItem


@dataclass(frozen=True)
class SafetyRule:
    name: str
    keywords: FrozenSet[str]
    contraindications: FrozenSet[str] = frozenset()
    exclude_regions: FrozenSet[str] = frozenset()
    exclude_name_keywords: FrozenSet[str] = frozenset()
    warning: Optional[str] = None

    def matches(self, exclusion: str) -> bool:
        text = _normalize(exclusion)
        return any(keyword in text for keyword in self.keywords)

    @classmethod
    def from_mapping(cls, name: str, data: Dict[str, Any]) -> "SafetyRule":
        return cls(
            name=name,
            keywords=frozenset(_normalize(k) for k in data.get("keywords", ())),
            contraindications=frozenset(data.get("contraindications", ())),
            exclude_regions=frozenset(data.get("exclude_regions", ())),
            exclude_name_keywords=frozenset(_normalize(k) for k in data.get("exclude_name_keywords", ())),
            warning=data.get("warning"),
        )


@dataclass(frozen=True)
class SafetyProfile:
    """Everything a request's exclusions rule out."""

    contraindications: FrozenSet[str] = frozenset()
    exclude_regions: FrozenSet[str] = frozenset()
    exclude_name_keywords: FrozenSet[str] = frozenset()
    warnings: List[str] = field(default_factory=list)

    def violation(self, item: CatalogItem) -> Optional[str]:
        """Reason the item is unsafe for this profile, or None."""
        hit = item.contraindications & self.contraindications
        if hit:
            return f"contraindicated for {', '.join(sorted(hit))}"

        hit = item.regions & self.exclude_regions
        if hit:
            return f"loads excluded region {', '.join(sorted(hit))}"

        item_name = _normalize(item.name)
        for keyword in sorted(self.exclude_name_keywords):
            if keyword in item_name:
                return f"movement pattern '{keyword}' excluded"

        return None


def _normalize(text: str) -> str:
    return " ".join(str(text).lower().replace("-", " ").replace("_", " ").split())


# ============================================================================
# BUILT-IN RULES
# ============================================================================

DEFAULT_RULES: Dict[str, Dict[str, Any]] = {
    # Injuries
    "back_pain": {
        "keywords": ["back", "spine", "spinal", "lumbar", "disc"],
        "contraindications": ["lower_back"],
        "exclude_regions": ["lower_back"],
        "exclude_name_keywords": ["deadlift", "row", "good morning", "hyperextension", "romanian"],
        "warning": "Avoiding exercises with spinal loading due to back injury",
    },
    "knee_problems": {
        "keywords": ["knee", "patella", "acl", "mcl", "meniscus"],
        "contraindications": ["knee"],
        "exclude_name_keywords": ["squat", "lunge", "leg press", "jump", "burpee", "step up"],
        "warning": "Avoiding knee-loading exercises due to knee injury",
    },
    "shoulder_issues": {
        "keywords": ["shoulder", "rotator cuff", "impingement"],
        "contraindications": ["shoulder"],
        "exclude_regions": ["shoulders"],
        "exclude_name_keywords": ["overhead press", "lateral raise", "pull up", "dip", "shoulder press"],
        "warning": "Avoiding overhead and shoulder-intensive exercises",
    },
    "neck_problems": {
        "keywords": ["neck", "cervical"],
        "contraindications": ["neck"],
        "exclude_regions": ["neck"],
        "exclude_name_keywords": ["shrug", "upright row"],
        "warning": "Avoiding neck-stressing exercises",
    },
    "wrist_problems": {
        "keywords": ["wrist", "carpal"],
        "contraindications": ["wrist"],
        "exclude_regions": ["forearms"],
        "exclude_name_keywords": ["push up", "plank", "clean", "barbell curl"],
        "warning": "Avoiding wrist-bearing exercises",
    },
    "ankle_foot": {
        "keywords": ["ankle", "foot", "achilles", "plantar"],
        "contraindications": ["ankle"],
        "exclude_name_keywords": ["jump", "run", "calf", "hop", "skip", "plyometric"],
        "warning": "Avoiding high-impact and ankle-stressing exercises",
    },
    "balance_issues": {
        "keywords": ["balance", "vertigo", "dizzy"],
        "contraindications": ["balance"],
        "exclude_name_keywords": ["single leg", "pistol", "bosu"],
        "warning": "Avoiding balance-dependent exercises",
    },
    "hip_groin": {
        "keywords": ["hip", "groin", "adductor"],
        "contraindications": ["hip"],
        "exclude_name_keywords": ["lunge", "split squat", "sumo"],
        "warning": "Avoiding hip-stressing exercises",
    },
    "elbow_issues": {
        "keywords": ["elbow", "tennis elbow", "golfer"],
        "contraindications": ["elbow"],
        "exclude_name_keywords": ["curl", "extension", "close grip"],
        "warning": "Avoiding elbow-intensive exercises",
    },

    # Diets and allergies
    "vegetarian": {
        "keywords": ["vegetarian"],
        "contraindications": ["meat", "fish", "shellfish"],
    },
    "vegan": {
        "keywords": ["vegan", "plant based"],
        "contraindications": ["meat", "fish", "shellfish", "dairy", "egg"],
    },
    "lactose": {
        "keywords": ["lactose", "milk"],
        "contraindications": ["dairy"],
    },
    "peanut_allergy": {
        "keywords": ["peanut"],
        "contraindications": ["peanuts"],
    },
    "tree_nut_allergy": {
        "keywords": ["tree nut", "almond", "cashew", "walnut"],
        "contraindications": ["nuts"],
    },
    "celiac": {
        "keywords": ["celiac", "coeliac", "wheat"],
        "contraindications": ["gluten"],
    },
    "seafood_allergy": {
        "keywords": ["seafood", "crustacean"],
        "contraindications": ["fish", "shellfish"],
    },
}


# ============================================================================
# RULE SET
# ============================================================================

class SafetyRules:
    """Resolves request exclusions into a SafetyProfile."""

    def __init__(self, rules: Optional[Dict[str, Dict[str, Any]]] = None):
        rules = rules if rules else DEFAULT_RULES
        self.rules = [SafetyRule.from_mapping(name, data) for name, data in rules.items()]

    @classmethod
    def from_settings(cls, settings) -> "SafetyRules":
        overrides = settings.safety_rules_dict.get("rules") if settings.safety_rules_dict else None
        return cls(overrides)

    def resolve(self, exclusions: Iterable[str]) -> SafetyProfile:
        exclusions = sorted(set(exclusions))
        # Raw exclusion tags always apply directly to contraindications
        contraindications = set(exclusions)
        regions = set()
        keywords = set()
        warnings = []

        for rule in self.rules:
            if any(rule.matches(exclusion) for exclusion in exclusions):
                contraindications |= rule.contraindications
                regions |= rule.exclude_regions
                keywords |= rule.exclude_name_keywords
                if rule.warning:
                    warnings.append(rule.warning)

        return SafetyProfile(
            contraindications=frozenset(contraindications),
            exclude_regions=frozenset(regions),
            exclude_name_keywords=frozenset(keywords),
            warnings=warnings,
        )


__all__ = ["SafetyRule", "SafetyProfile", "SafetyRules", "DEFAULT_RULES"]
