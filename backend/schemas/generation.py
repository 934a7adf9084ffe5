"""
Generation Schemas - Production Ready
Pydantic models for plan generation requests, generated plans, validation
reports and the success/failure envelopes returned by the API.
"""

from typing import List, Optional, Dict, Any, FrozenSet
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# ENUMS
# ============================================================================

class ItemKind(str, Enum):
    """Kind of catalog item a plan is built from"""
    EXERCISE = "exercise"
    FOOD = "food"


class IntentCategory(str, Enum):
    """Intent category, drives cache expiry and identity scoping"""
    WORKOUT = "workout"
    MEAL = "meal"


class Intent(str, Enum):
    """What the caller wants generated"""
    # Workouts
    FULL_BODY = "full_body"
    UPPER_BODY = "upper_body"
    LOWER_BODY = "lower_body"
    PUSH = "push"
    PULL = "pull"
    CORE = "core"
    CARDIO = "cardio"
    MOBILITY = "mobility"

    # Meals
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"

    @property
    def category(self) -> IntentCategory:
        if self in _MEAL_INTENTS:
            return IntentCategory.MEAL
        return IntentCategory.WORKOUT

    @property
    def item_kind(self) -> ItemKind:
        if self.category == IntentCategory.MEAL:
            return ItemKind.FOOD
        return ItemKind.EXERCISE


_MEAL_INTENTS = frozenset({Intent.BREAKFAST, Intent.LUNCH, Intent.DINNER, Intent.SNACK})


class ExperienceLevel(str, Enum):
    """Training experience"""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class CacheSource(str, Enum):
    """Where a returned plan came from"""
    FAST = "fast"
    DURABLE = "durable"
    FRESH = "fresh"


def _normalize_tags(v):
    """Lower-case, strip and de-duplicate a tag collection."""
    if v is None:
        return frozenset()
    if isinstance(v, str):
        v = [v]
    return frozenset(str(tag).strip().lower() for tag in v if str(tag).strip())


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class Constraints(BaseModel):
    """
    Constraints the plan must satisfy.

    Sets are order-independent; two requests listing the same equipment in
    a different order are the same request.
    """

    model_config = ConfigDict(frozen=True)

    equipment: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Equipment available to the user"
    )
    experience_level: ExperienceLevel = Field(
        ExperienceLevel.BEGINNER,
        description="Training experience"
    )
    exclusions: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Injuries, conditions and allergies to avoid"
    )
    target_regions: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Body regions or cuisines to prefer"
    )
    exclude_items: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Catalog ids the user never wants"
    )

    @field_validator("equipment", "exclusions", "target_regions", mode="before")
    @classmethod
    def normalize_tag_sets(cls, v):
        return _normalize_tags(v)

    @field_validator("exclude_items", mode="before")
    @classmethod
    def normalize_item_ids(cls, v):
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        return frozenset(str(item_id).strip() for item_id in v if str(item_id).strip())


class GenerationRequest(BaseModel):
    """A single, immutable plan generation request."""

    model_config = ConfigDict(frozen=True)

    identity: Optional[str] = Field(None, description="Verified identity of the caller")
    intent: Intent = Field(..., description="Workout type or meal slot")
    constraints: Constraints = Field(default_factory=Constraints)
    target_value: float = Field(
        30.0,
        gt=0,
        le=10000,
        description="Target duration in minutes (workouts) or calories (meals)"
    )


class GenerationBody(BaseModel):
    """
    HTTP body of a generation call.

    Identity is not part of the body; it comes from the auth proxy header.
    """

    intent: Intent
    constraints: Constraints = Field(default_factory=Constraints)
    target_value: float = Field(30.0, gt=0, le=10000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "intent": "full_body",
                "constraints": {
                    "equipment": ["bodyweight"],
                    "experience_level": "beginner",
                    "exclusions": []
                },
                "target_value": 30
            }
        }
    )

    def to_request(self, identity: Optional[str]) -> GenerationRequest:
        return GenerationRequest(
            identity=identity,
            intent=self.intent,
            constraints=self.constraints,
            target_value=self.target_value
        )


# ============================================================================
# PLAN SCHEMAS
# ============================================================================

class PlanEntry(BaseModel):
    """One validated plan entry, always backed by a catalog item."""

    item_id: str
    name: str
    media_ref: str
    section: str = "main"
    params: Dict[str, Any] = Field(default_factory=dict)
    replaced_from: Optional[str] = Field(
        None,
        description="Original id returned by the provider when this entry was repaired"
    )


class GeneratedPlan(BaseModel):
    """Ordered sequence of validated plan entries."""

    intent: Intent
    entries: List[PlanEntry]
    summary: Optional[str] = None

    @property
    def item_ids(self) -> List[str]:
        return [entry.item_id for entry in self.entries]


class ValidationReport(BaseModel):
    """Outcome of validating and repairing provider output."""

    exercises_validated: bool = False
    invalid_found: int = 0
    replacements_made: int = 0
    warnings: List[str] = Field(default_factory=list)
    total_calories: Optional[float] = Field(
        None,
        description="Meal calories after portion adjustment, when every food has calorie data"
    )
    portion_scale: Optional[float] = Field(
        None,
        description="Factor applied to portion_grams to reach target_value kcal"
    )


class FilterStats(BaseModel):
    """Candidate counts after each filter pass."""

    total: int = 0
    after_kind: int = 0
    after_intent: int = 0
    after_equipment: int = 0
    after_experience: int = 0
    after_exclusions: int = 0
    final: int = 0


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class ResponseMetadata(BaseModel):
    """Observability data attached to every successful response."""

    cached: bool
    cache_source: CacheSource
    generation_time_ms: float
    fingerprint: str
    deduplicated: bool = False
    filter_stats: Optional[FilterStats] = None
    validation: Optional[ValidationReport] = None
    model: Optional[str] = None
    tokens_used: int = 0
    cost_usd: float = 0.0


class GenerationResponse(BaseModel):
    """Success envelope."""

    success: bool = True
    plan: GeneratedPlan
    metadata: ResponseMetadata
    rate_limit_headers: Dict[str, str] = Field(
        default_factory=dict,
        exclude=True,
        description="X-RateLimit-* headers for the HTTP layer; never serialized"
    )


class ErrorResponse(BaseModel):
    """Failure envelope."""

    success: bool = False
    error_kind: str
    message: str
    detail: Optional[str] = None
    retryable: bool = False
    request_id: Optional[str] = None
    timestamp: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ItemKind",
    "IntentCategory",
    "Intent",
    "ExperienceLevel",
    "CacheSource",
    "Constraints",
    "GenerationRequest",
    "GenerationBody",
    "PlanEntry",
    "GeneratedPlan",
    "ValidationReport",
    "FilterStats",
    "ResponseMetadata",
    "GenerationResponse",
    "ErrorResponse",
]
