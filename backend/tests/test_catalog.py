"""
Tests for the catalog index, the injury/diet safety rules and the candidate
filter.
"""

import json

import pytest

from catalog.filter import ItemFilter
from catalog.index import CatalogIndex, build_synthetic_catalog
from catalog.safety import SafetyRules
from config import CatalogConfig
from core.exceptions import CatalogLoadError, InsufficientCatalogCoverageError
from schemas.generation import Intent, ItemKind

from conftest import SMALL_CATALOG_RECORDS, make_request


# ── Catalog index ────────────────────────────────────────────────────────

class TestCatalogIndex:
    def test_lookup_known_and_unknown(self, small_catalog):
        item = small_catalog.lookup("ex-push-up")
        assert item is not None
        assert item.name == "Push-Up"
        assert item.media_ref == "media/push-up.gif"
        assert small_catalog.lookup("ex-does-not-exist") is None

    def test_contains_and_len(self, small_catalog):
        assert "ex-plank" in small_catalog
        assert "ex-nope" not in small_catalog
        assert len(small_catalog) == len(SMALL_CATALOG_RECORDS)

    def test_query_requires_every_tag(self, small_catalog):
        ids = [item.id for item in small_catalog.query(["bodyweight", "core"])]
        assert ids == ["ex-plank", "ex-dead-bug"]

    def test_query_unknown_tag_is_empty(self, small_catalog):
        assert list(small_catalog.query(["underwater"])) == []

    def test_query_is_restartable(self, small_catalog):
        """Iterating the same query twice yields the same ordered items."""
        query = small_catalog.query(["beginner"])
        first = [item.id for item in query]
        second = [item.id for item in query]
        assert first == second
        assert len(first) > 0

    def test_tags_are_case_insensitive(self, small_catalog):
        assert [i.id for i in small_catalog.query(["CORE"])] == ["ex-plank", "ex-dead-bug"]

    def test_insertion_order_positions(self, small_catalog):
        assert small_catalog.position("ex-push-up") == 0
        assert small_catalog.position("ex-squat") == 1

    def test_food_kind_from_record(self, small_catalog):
        assert small_catalog.lookup("fd-oatmeal").kind == ItemKind.FOOD
        assert len(small_catalog.items_of_kind(ItemKind.FOOD)) == 2

    def test_duplicate_id_rejected(self):
        records = [SMALL_CATALOG_RECORDS[0], dict(SMALL_CATALOG_RECORDS[0])]
        with pytest.raises(CatalogLoadError) as exc_info:
            CatalogIndex.from_records(records)
        assert exc_info.value.context["record_id"] == "ex-push-up"

    def test_missing_media_ref_rejected(self):
        records = [{"id": "ex-no-media", "name": "No Media", "equipment": ["bodyweight"]}]
        with pytest.raises(CatalogLoadError):
            CatalogIndex.from_records(records)

    def test_malformed_record_rejected(self):
        with pytest.raises(CatalogLoadError):
            CatalogIndex.from_records([{"name": "No id", "media_ref": "x"}])

    def test_from_files(self, tmp_path):
        path = tmp_path / "exercises.json"
        path.write_text(json.dumps({"items": SMALL_CATALOG_RECORDS[:3]}))
        catalog = CatalogIndex.from_files((path, ItemKind.EXERCISE))
        assert len(catalog) == 3

    def test_unreadable_file_rejected(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(CatalogLoadError):
            CatalogIndex.from_files((path, ItemKind.EXERCISE))

    def test_invalid_utf8_file_rejected(self, tmp_path):
        path = tmp_path / "latin1.json"
        path.write_bytes(b'[{"id": "ex-caf\xe9", "media_ref": "media/cafe.gif"}]')
        with pytest.raises(CatalogLoadError) as exc_info:
            CatalogIndex.from_files((path, ItemKind.EXERCISE))
        assert "cannot read" in exc_info.value.detail

    @pytest.mark.parametrize("media_ref", ["not a uri", "plank", "https://", "media/plank gif.gif"])
    def test_malformed_media_ref_rejected(self, media_ref):
        records = [{"id": "ex-bad-media", "name": "Bad Media", "media_ref": media_ref}]
        with pytest.raises(CatalogLoadError) as exc_info:
            CatalogIndex.from_records(records)
        assert exc_info.value.context["record_id"] == "ex-bad-media"

    @pytest.mark.parametrize("media_ref", [
        "https://media.plan-gateway.dev/exercises/ex-plank.gif",
        "s3://plan-media/foods/fd-oatmeal.jpg",
        "media/plank.gif",
    ])
    def test_accepted_media_refs(self, media_ref):
        catalog = CatalogIndex.from_records([{"id": "ex-ok", "name": "Ok", "media_ref": media_ref}])
        assert catalog.lookup("ex-ok").media_ref == media_ref

    def test_calories_read_from_record(self):
        catalog = CatalogIndex.from_records(
            [{"id": "fd-rice", "name": "Rice", "kind": "food", "calories_per_100g": "130",
              "media_ref": "media/rice.jpg"}]
        )
        item = catalog.lookup("fd-rice")
        assert item.calories_per_100g == 130.0
        assert item.to_dict()["calories_per_100g"] == 130.0

    def test_negative_calories_rejected(self):
        records = [{"id": "fd-void", "name": "Void", "kind": "food", "calories_per_100g": -5,
                    "media_ref": "media/void.jpg"}]
        with pytest.raises(CatalogLoadError):
            CatalogIndex.from_records(records)

    def test_bundled_dataset_loads(self):
        catalog = CatalogIndex.from_settings(CatalogConfig())
        stats = catalog.get_stats()
        assert stats["exercises"] == 44
        assert stats["foods"] == 24
        assert all(item.media_ref for item in catalog)
        assert all(item.calories_per_100g for item in catalog.items_of_kind(ItemKind.FOOD))

    def test_synthetic_catalog_is_deterministic(self):
        a = build_synthetic_catalog(size=200, seed=3)
        b = build_synthetic_catalog(size=200, seed=3)
        assert [i.to_dict() for i in a] == [i.to_dict() for i in b]
        assert len(a) == 200


# ── Safety rules ─────────────────────────────────────────────────────────

class TestSafetyRules:
    def test_free_text_exclusion_matches_rule(self, small_catalog):
        profile = SafetyRules().resolve(["bad knee"])
        assert "knee" in profile.contraindications
        assert profile.violation(small_catalog.lookup("ex-squat")) is not None
        assert profile.violation(small_catalog.lookup("ex-plank")) is None
        assert any("knee" in warning for warning in profile.warnings)

    def test_name_keyword_rules(self, small_catalog):
        profile = SafetyRules().resolve(["knee"])
        reason = profile.violation(small_catalog.lookup("ex-jumping-jack"))
        assert reason == "movement pattern 'jump' excluded"

    def test_raw_tags_apply_directly(self, small_catalog):
        profile = SafetyRules().resolve(["wrist"])
        assert profile.violation(small_catalog.lookup("ex-push-up")) == "contraindicated for wrist"

    def test_diet_rules(self, small_catalog):
        profile = SafetyRules().resolve(["vegan"])
        assert profile.violation(small_catalog.lookup("fd-omelette")) is not None
        assert profile.violation(small_catalog.lookup("fd-oatmeal")) is None

    def test_custom_rules_replace_defaults(self, small_catalog):
        rules = SafetyRules({"core_strain": {"keywords": ["hernia"], "exclude_regions": ["core"]}})
        profile = rules.resolve(["hernia"])
        assert profile.violation(small_catalog.lookup("ex-plank")) == "loads excluded region core"
        # Defaults are gone: "knee" is now only a raw contraindication tag
        assert rules.resolve(["knee"]).exclude_name_keywords == frozenset()


# ── Item filter ──────────────────────────────────────────────────────────

class TestItemFilter:
    def test_pass_statistics(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request())
        stats = result.stats
        assert stats.total == 10
        assert stats.after_kind == 8
        assert stats.after_intent == 8
        assert stats.after_equipment == 6
        assert stats.after_experience == 6
        assert stats.after_exclusions == 6
        assert stats.final == 6

    def test_every_candidate_satisfies_equipment(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request())
        assert all(item.equipment <= {"bodyweight"} for item in result.candidates)

    def test_compound_movements_rank_first(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request())
        assert result.candidate_ids[0] == "ex-squat"

    def test_deterministic(self, small_catalog):
        item_filter = ItemFilter(small_catalog)
        request = make_request(exclusions=["knee"])
        assert item_filter.filter(request).candidate_ids == item_filter.filter(request).candidate_ids

    def test_exclusions_remove_unsafe_items(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request(exclusions=["knee"]))
        assert "ex-squat" not in result.candidate_ids
        assert "ex-jumping-jack" not in result.candidate_ids
        assert result.stats.after_exclusions == 4
        assert result.warnings

    def test_exclude_items(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request(exclude_items=["ex-plank"]))
        assert "ex-plank" not in result.candidate_ids

    def test_experience_gates_difficulty(self, small_catalog):
        request = make_request(equipment=["bodyweight", "barbell", "dumbbell"])
        assert "ex-bb-deadlift" not in ItemFilter(small_catalog).filter(request).candidate_ids

        advanced = make_request(equipment=["bodyweight", "barbell", "dumbbell"], experience_level="advanced")
        assert "ex-bb-deadlift" in ItemFilter(small_catalog).filter(advanced).candidate_ids

    def test_intent_scope(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request(intent=Intent.CORE))
        assert result.candidate_ids == ["ex-plank", "ex-dead-bug"]

    def test_meal_intent(self, small_catalog):
        result = ItemFilter(small_catalog).filter(make_request(intent=Intent.BREAKFAST, exclusions=["vegan"]))
        assert result.candidate_ids == ["fd-oatmeal"]

    def test_empty_result_raises(self, small_catalog):
        with pytest.raises(InsufficientCatalogCoverageError) as exc_info:
            ItemFilter(small_catalog).filter(make_request(equipment=[]))
        assert exc_info.value.filter_stats["after_equipment"] == 0
        assert exc_info.value.status_code == 422

    def test_candidates_capped(self, synthetic_catalog):
        result = ItemFilter(synthetic_catalog, max_candidates=40).filter(make_request())
        assert result.stats.after_exclusions > 40
        assert result.stats.final == 40
        assert all(item.equipment == {"bodyweight"} for item in result.candidates)
        assert all(item.difficulty == "beginner" for item in result.candidates)
