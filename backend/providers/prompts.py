"""
Prompt Builders
Constrained prompts that enumerate candidate ids and instruct the model to
pick only from them, plus the JSON schema the response must follow.
"""

from typing import Any, Dict, List, Optional, Sequence

from catalog.models import CatalogItem
from providers.base import PromptContext
from schemas.generation import GenerationRequest, ItemKind
from utils.cost_calculator import estimate_tokens

# ============================================================================
# RESPONSE SCHEMA
# ============================================================================

PLAN_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "item_id": {"type": "string"},
                    "section": {"type": "string"},
                    "sets": {"type": "integer", "minimum": 1, "maximum": 10},
                    "reps": {"type": "integer", "minimum": 1, "maximum": 50},
                    "rest_seconds": {"type": "integer", "minimum": 0, "maximum": 300},
                    "duration_seconds": {"type": "integer", "minimum": 0},
                    "portion_grams": {"type": "number", "minimum": 10, "maximum": 1000},
                    "servings": {"type": "number", "minimum": 0.25}
                },
                "required": ["item_id"]
            }
        }
    },
    "required": ["entries"]
}

SYSTEM_PROMPTS = {
    ItemKind.EXERCISE: (
        "You are an expert personal trainer and workout programmer. "
        "You answer with JSON only."
    ),
    ItemKind.FOOD: (
        "You are an expert nutritionist planning single meals. "
        "You answer with JSON only."
    ),
}


def candidate_line(index: int, item: CatalogItem) -> str:
    equipment = ", ".join(sorted(item.equipment)) or "none"
    regions = ", ".join(sorted(item.regions)) or "any"
    label = "Body Parts" if item.kind == ItemKind.EXERCISE else "Cuisine"
    line = f'{index}. ID: "{item.id}", Name: "{item.name}", Equipment: {equipment}, {label}: {regions}'
    if item.calories_per_100g is not None:
        line += f", Calories: {item.calories_per_100g:g} kcal/100g"
    return line


def _requirements(request: GenerationRequest, entries: int) -> List[str]:
    constraints = request.constraints
    lines = [f"- Intent: {request.intent.value.replace('_', ' ')}"]

    if request.intent.item_kind == ItemKind.EXERCISE:
        lines.append(f"- Target Duration: {request.target_value:g} minutes")
        lines.append(f"- Experience Level: {constraints.experience_level.value}")
        lines.append(f"- Available Equipment: {', '.join(sorted(constraints.equipment)) or 'none'}")
    else:
        lines.append(f"- Target Calories: {request.target_value:g} kcal")

    if constraints.exclusions:
        lines.append(f"- Injuries/Restrictions: {', '.join(sorted(constraints.exclusions))}")
    if constraints.target_regions:
        lines.append(f"- Focus: {', '.join(sorted(constraints.target_regions))}")

    lines.append(f"- Number of entries: {entries}")
    return lines


def build_prompt(
    request: GenerationRequest,
    candidates: Sequence[CatalogItem],
    entries: int = 6,
    max_prompt_tokens: int = 3000,
    feedback: Optional[List[str]] = None,
    strict: bool = False,
    temperature: float = 0.4,
    max_output_tokens: int = 2000
) -> PromptContext:
    """
    Build the prompt for one generation attempt.

    Candidates are listed in filter order until the token budget is spent;
    at least one candidate is always listed. ``feedback`` carries parse
    errors from earlier attempts and is only used on the stricter pass.
    """
    kind = request.intent.item_kind
    noun = "exercise" if kind == ItemKind.EXERCISE else "food"

    header = [
        "**Requirements:**",
        *_requirements(request, entries),
        "",
        f"**Available {noun}s (MUST ONLY USE THESE):**",
    ]
    rules = [
        "",
        "**IMPORTANT RULES:**",
        f"1. You MUST ONLY use {noun} IDs from the list above",
        "2. Return the item_id for each entry, not the name",
        "3. Respond with a JSON object matching the schema below",
    ]
    if kind == ItemKind.EXERCISE:
        rules.append("4. Use sections warmup, main and cooldown; include sets, reps and rest_seconds")
    else:
        rules.append("4. Include portion_grams and servings for each entry")

    if strict:
        rules.append("5. Any ID not in the list invalidates the whole answer")
    if feedback:
        rules.append("")
        rules.append("**Your previous answer was rejected:**")
        rules.extend(f"- {error}" for error in feedback)

    rules.append("")
    rules.append('Schema: {"summary": string, "entries": [{"item_id": string, "section": string, ...}]}')

    budget = max_prompt_tokens - estimate_tokens("\n".join(header + rules)) - estimate_tokens(SYSTEM_PROMPTS[kind])
    listed: List[str] = []
    offered: List[str] = []
    for index, item in enumerate(candidates, start=1):
        line = candidate_line(index, item)
        cost = estimate_tokens(line) + 1
        if listed and cost > budget:
            break
        listed.append(line)
        offered.append(item.id)
        budget -= cost

    return PromptContext(
        system=SYSTEM_PROMPTS[kind],
        user="\n".join(header + listed + rules),
        schema=PLAN_SCHEMA,
        candidate_ids=offered,
        strict=strict,
        temperature=temperature,
        max_output_tokens=max_output_tokens
    )


__all__ = ["build_prompt", "candidate_line", "PLAN_SCHEMA", "SYSTEM_PROMPTS"]
