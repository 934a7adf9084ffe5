"""
Model Output Parsing
Turns untrusted completion text into RawModelOutput. Nothing here checks ids
against the catalog; that is the validator's job.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Keys models use for the id field, in order of preference
ID_KEYS = ("item_id", "itemId", "exerciseId", "exercise_id", "foodId", "food_id", "id")
NAME_KEYS = ("name", "exerciseName", "foodName")

# Alias -> canonical param name
PARAM_KEYS = {
    "sets": "sets",
    "reps": "reps",
    "rest_seconds": "rest_seconds",
    "restSeconds": "rest_seconds",
    "rest": "rest_seconds",
    "duration_seconds": "duration_seconds",
    "durationSeconds": "duration_seconds",
    "duration": "duration_seconds",
    "portion_grams": "portion_grams",
    "portionGrams": "portion_grams",
    "grams": "portion_grams",
    "servings": "servings",
}

SECTION_KEYS = ("warmup", "main", "exercises", "cooldown", "items", "foods", "meals")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class OutputParseError(ValueError):
    """Completion text could not be read as a plan."""


@dataclass
class RawEntry:
    """One entry as the model returned it. Fields are untrusted."""

    item_id: str
    name: Optional[str] = None
    section: str = "main"
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawModelOutput:
    entries: List[RawEntry]
    summary: Optional[str] = None
    model: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    attempts: int = 1
    strict: bool = False
    cost_usd: float = 0.0

    @property
    def tokens_used(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def _extract_json(text: str) -> Any:
    text = (text or "").strip()
    if not text:
        raise OutputParseError("empty completion")

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object or array embedded in prose
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue

    raise OutputParseError("completion is not valid JSON")


def _parse_entry(raw: Any, section: str) -> Optional[RawEntry]:
    if isinstance(raw, str):
        return RawEntry(item_id=raw.strip(), section=section) if raw.strip() else None
    if not isinstance(raw, dict):
        return None

    item_id = next((str(raw[k]).strip() for k in ID_KEYS if raw.get(k) not in (None, "")), None)
    if not item_id:
        return None

    name = next((str(raw[k]) for k in NAME_KEYS if raw.get(k)), None)
    params = {PARAM_KEYS[k]: v for k, v in raw.items() if k in PARAM_KEYS and v is not None}

    return RawEntry(
        item_id=item_id,
        name=name,
        section=str(raw.get("section") or section),
        params=params
    )


def parse_model_output(text: str) -> RawModelOutput:
    """
    Parse completion text into entries.

    Accepted shapes:
    - ``{"entries": [...]}`` (the schema we ask for)
    - ``{"warmup": [...], "exercises": [...], "cooldown": [...]}``
    - a bare list of entries

    Raises:
        OutputParseError: If no entry with an id can be recovered
    """
    data = _extract_json(text)
    summary = None
    buckets = []

    if isinstance(data, list):
        buckets.append(("main", data))
    elif isinstance(data, dict):
        summary = data.get("summary") if isinstance(data.get("summary"), str) else None
        if isinstance(data.get("entries"), list):
            buckets.append(("main", data["entries"]))
        else:
            for key in SECTION_KEYS:
                if isinstance(data.get(key), list):
                    section = "main" if key in ("exercises", "items", "foods", "meals") else key
                    buckets.append((section, data[key]))
    else:
        raise OutputParseError(f"unexpected top-level JSON type {type(data).__name__}")

    if not buckets:
        raise OutputParseError("no entries list in completion")

    entries = []
    skipped = 0
    for section, items in buckets:
        for raw in items:
            entry = _parse_entry(raw, section)
            if entry is None:
                skipped += 1
            else:
                entries.append(entry)

    if not entries:
        raise OutputParseError(
            "entries list is empty" if not skipped else f"{skipped} entries without an item_id"
        )

    return RawModelOutput(entries=entries, summary=summary)


__all__ = ["RawEntry", "RawModelOutput", "OutputParseError", "parse_model_output"]
