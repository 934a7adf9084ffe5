"""
Tests for constrained prompt construction and parsing of untrusted model
output.
"""

import json

import pytest

from catalog.filter import ItemFilter
from catalog.index import CatalogIndex
from providers.output import OutputParseError, parse_model_output
from providers.prompts import PLAN_SCHEMA, build_prompt, candidate_line
from schemas.generation import Intent

from conftest import make_request


class TestBuildPrompt:
    def test_lists_every_candidate(self, small_catalog):
        request = make_request()
        candidates = ItemFilter(small_catalog).filter(request).candidates
        prompt = build_prompt(request, candidates)

        assert prompt.candidate_ids == [item.id for item in candidates]
        for item in candidates:
            assert f'ID: "{item.id}"' in prompt.user
        assert "MUST ONLY USE THESE" in prompt.user
        assert prompt.schema == PLAN_SCHEMA

    def test_requirements_section(self, small_catalog):
        request = make_request(exclusions=["knee"], target_value=45)
        candidates = ItemFilter(small_catalog).filter(request).candidates
        prompt = build_prompt(request, candidates, entries=4)

        assert "Target Duration: 45 minutes" in prompt.user
        assert "Injuries/Restrictions: knee" in prompt.user
        assert "Number of entries: 4" in prompt.user

    def test_meal_prompt(self, small_catalog):
        request = make_request(intent=Intent.BREAKFAST, equipment=[], target_value=500)
        candidates = ItemFilter(small_catalog).filter(request).candidates
        prompt = build_prompt(request, candidates)

        assert "Target Calories: 500 kcal" in prompt.user
        assert "nutritionist" in prompt.system
        assert "portion_grams" in prompt.user

    def test_token_budget_truncates_candidates(self, synthetic_catalog):
        request = make_request()
        candidates = ItemFilter(synthetic_catalog).filter(request).candidates
        prompt = build_prompt(request, candidates, max_prompt_tokens=400)

        assert 1 <= len(prompt.candidate_ids) < len(candidates)
        assert prompt.candidate_ids == [item.id for item in candidates[:len(prompt.candidate_ids)]]

    def test_at_least_one_candidate(self, synthetic_catalog):
        request = make_request()
        candidates = ItemFilter(synthetic_catalog).filter(request).candidates
        prompt = build_prompt(request, candidates, max_prompt_tokens=10)
        assert len(prompt.candidate_ids) == 1

    def test_strict_pass_carries_feedback(self, small_catalog):
        request = make_request()
        candidates = ItemFilter(small_catalog).filter(request).candidates
        prompt = build_prompt(request, candidates, strict=True, feedback=["completion is not valid JSON"])

        assert prompt.strict
        assert "invalidates the whole answer" in prompt.user
        assert "- completion is not valid JSON" in prompt.user

    def test_candidate_line(self, small_catalog):
        line = candidate_line(1, small_catalog.lookup("ex-push-up"))
        assert line == '1. ID: "ex-push-up", Name: "Push-Up", Equipment: bodyweight, Body Parts: chest, triceps'

    def test_food_candidate_line_carries_calories(self):
        catalog = CatalogIndex.from_records([{"id": "fd-rice", "name": "Rice", "kind": "food",
                                              "calories_per_100g": 130, "media_ref": "media/rice.jpg"}])
        line = candidate_line(2, catalog.lookup("fd-rice"))
        assert line == '2. ID: "fd-rice", Name: "Rice", Equipment: none, Cuisine: any, Calories: 130 kcal/100g'


class TestParseModelOutput:
    def test_entries_object(self):
        text = json.dumps({
            "summary": "Quick session",
            "entries": [
                {"item_id": "ex-plank", "section": "warmup", "sets": 2, "restSeconds": 30},
                {"item_id": "ex-squat", "reps": 15},
            ]
        })
        output = parse_model_output(text)

        assert output.summary == "Quick session"
        assert [e.item_id for e in output.entries] == ["ex-plank", "ex-squat"]
        assert output.entries[0].section == "warmup"
        assert output.entries[0].params == {"sets": 2, "rest_seconds": 30}
        assert output.entries[1].section == "main"

    def test_code_fence(self):
        text = 'Here you go:\n```json\n{"entries": [{"item_id": "ex-plank"}]}\n```'
        assert parse_model_output(text).entries[0].item_id == "ex-plank"

    def test_json_embedded_in_prose(self):
        text = 'Sure! {"entries": [{"exerciseId": "ex-plank"}]} Enjoy.'
        assert parse_model_output(text).entries[0].item_id == "ex-plank"

    def test_sectioned_shape(self):
        text = json.dumps({
            "warmup": [{"exerciseId": "ex-jumping-jack"}],
            "exercises": [{"exerciseId": "ex-squat"}, {"exerciseId": "ex-push-up"}],
            "cooldown": [{"exerciseId": "ex-plank"}],
        })
        output = parse_model_output(text)
        assert [(e.section, e.item_id) for e in output.entries] == [
            ("warmup", "ex-jumping-jack"),
            ("main", "ex-squat"),
            ("main", "ex-push-up"),
            ("cooldown", "ex-plank"),
        ]

    def test_bare_list_of_ids(self):
        output = parse_model_output('["ex-plank", "ex-squat"]')
        assert [e.item_id for e in output.entries] == ["ex-plank", "ex-squat"]

    def test_entries_without_ids_skipped(self):
        output = parse_model_output(json.dumps({"entries": [{"name": "Mystery"}, {"item_id": "ex-plank"}]}))
        assert [e.item_id for e in output.entries] == ["ex-plank"]

    @pytest.mark.parametrize("text", [
        "",
        "I cannot help with that.",
        '{"plan": "do some pushups"}',
        '{"entries": []}',
        '{"entries": [{"name": "No id"}]}',
        "42",
    ])
    def test_unusable_output_rejected(self, text):
        with pytest.raises(OutputParseError):
            parse_model_output(text)
