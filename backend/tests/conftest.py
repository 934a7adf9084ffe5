"""Pytest configuration for the plan gateway tests."""

import os

# Settings read ENVIRONMENT at import time; force memory backends and fast retries
os.environ.setdefault("ENVIRONMENT", "testing")

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from catalog.index import CatalogIndex, build_synthetic_catalog
from config import GenerationConfig, ProviderConfig
from core.exceptions import ProviderError
from providers.base import Completion, CompletionProvider, PromptContext
from schemas.generation import Constraints, GenerationRequest, Intent


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------

Step = Union[str, Exception, Callable[[PromptContext], Any]]


class ScriptedProvider(CompletionProvider):
    """
    Completion provider that replays a script.

    Each step is completion text, an exception to raise, or a callable
    taking the prompt and returning text. The last step repeats once the
    script runs out.
    """

    name = "scripted"

    def __init__(self, steps: List[Step], delay: float = 0.0, model: str = "scripted-model"):
        self.steps = list(steps)
        self.delay = delay
        self.model = model
        self.calls = 0
        self.prompts: List[PromptContext] = []
        self.closed = False

    async def complete(self, prompt: PromptContext) -> Completion:
        self.prompts.append(prompt)
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1

        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(step, Exception):
            raise step
        text = step(prompt) if callable(step) else step
        return Completion(text=text, model=self.model, prompt_tokens=100, completion_tokens=50)

    async def close(self):
        self.closed = True


def plan_json(item_ids: List[str], **params) -> str:
    """Completion text listing the given ids."""
    entries = [{"item_id": item_id, "section": "main", "sets": 3, "reps": 12, **params} for item_id in item_ids]
    return json.dumps({"summary": "Test plan", "entries": entries})


def pick_candidates(count: int = 6, fabricated: Optional[List[str]] = None):
    """Step answering with the first offered candidates plus invented ids."""
    def _step(prompt: PromptContext) -> str:
        ids = list(prompt.candidate_ids[:count])
        return plan_json(ids + list(fabricated or []))
    return _step


def transient_error(status: int = 503) -> ProviderError:
    return ProviderError(reason=f"Provider returned HTTP {status}", transient=True, provider_status=status)


# ---------------------------------------------------------------------------
# Catalogs and requests
# ---------------------------------------------------------------------------

SMALL_CATALOG_RECORDS: List[Dict[str, Any]] = [
    {"id": "ex-push-up", "name": "Push-Up", "categories": ["strength", "beginner"], "equipment": ["bodyweight"],
     "regions": ["chest", "triceps"], "contraindications": ["wrist"], "media_ref": "media/push-up.gif"},
    {"id": "ex-squat", "name": "Bodyweight Squat", "categories": ["strength", "beginner"], "equipment": ["bodyweight"],
     "regions": ["quads", "glutes"], "contraindications": ["knee"], "media_ref": "media/squat.gif"},
    {"id": "ex-plank", "name": "Plank", "categories": ["strength", "beginner"], "equipment": ["bodyweight"],
     "regions": ["core"], "media_ref": "media/plank.gif"},
    {"id": "ex-glute-bridge", "name": "Glute Bridge", "categories": ["strength", "beginner"], "equipment": ["bodyweight"],
     "regions": ["glutes", "hamstrings"], "media_ref": "media/glute-bridge.gif"},
    {"id": "ex-db-row", "name": "Dumbbell Row", "categories": ["strength", "beginner"], "equipment": ["dumbbell"],
     "regions": ["back", "biceps"], "contraindications": ["lower_back"], "media_ref": "media/db-row.gif"},
    {"id": "ex-bb-deadlift", "name": "Barbell Deadlift", "categories": ["strength", "advanced"], "equipment": ["barbell"],
     "regions": ["hamstrings", "lower_back"], "contraindications": ["lower_back"], "media_ref": "media/deadlift.gif"},
    {"id": "ex-dead-bug", "name": "Dead Bug", "categories": ["strength", "beginner"], "equipment": ["bodyweight"],
     "regions": ["core"], "media_ref": "media/dead-bug.gif"},
    {"id": "ex-jumping-jack", "name": "Jumping Jack", "categories": ["cardio", "beginner"], "equipment": ["bodyweight"],
     "regions": ["calves"], "contraindications": ["ankle"], "media_ref": "media/jumping-jack.gif"},
    {"id": "fd-oatmeal", "name": "Oatmeal with Berries", "kind": "food", "categories": ["breakfast", "vegan"],
     "contraindications": ["gluten"], "media_ref": "media/oatmeal.jpg"},
    {"id": "fd-omelette", "name": "Vegetable Omelette", "kind": "food", "categories": ["breakfast", "vegetarian"],
     "contraindications": ["egg"], "media_ref": "media/omelette.jpg"},
]


@pytest.fixture
def small_catalog() -> CatalogIndex:
    return CatalogIndex.from_records(SMALL_CATALOG_RECORDS)


@pytest.fixture(scope="session")
def synthetic_catalog() -> CatalogIndex:
    return build_synthetic_catalog(size=1500, seed=7)


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        max_retries=2,
        retry_backoff_seconds=0.0,
        timeout_seconds=1.0,
        prompt_cost_per_1k=0.001,
        completion_cost_per_1k=0.002
    )


@pytest.fixture
def generation_config() -> GenerationConfig:
    return GenerationConfig()


def make_request(
    intent: Intent = Intent.FULL_BODY,
    equipment=("bodyweight",),
    experience_level: str = "beginner",
    exclusions=(),
    identity: Optional[str] = None,
    target_value: float = 30,
    **constraints
) -> GenerationRequest:
    return GenerationRequest(
        identity=identity,
        intent=intent,
        constraints=Constraints(
            equipment=equipment,
            experience_level=experience_level,
            exclusions=exclusions,
            **constraints
        ),
        target_value=target_value
    )
