"""
Tests for validation and repair of raw model output.
"""

import pytest

from catalog.filter import ItemFilter
from catalog.index import CatalogIndex
from core.exceptions import GenerationUnusableError, NoSafeReplacementError, PlanIntegrityError
from gateway.validator import ResponseValidator
from providers.output import RawEntry, RawModelOutput
from schemas.generation import Intent, PlanEntry

from conftest import SMALL_CATALOG_RECORDS, make_request


def _raw(*entries):
    return RawModelOutput(entries=[
        entry if isinstance(entry, RawEntry) else RawEntry(item_id=entry) for entry in entries
    ])


def _validate(catalog, raw, request=None, strict_repair=False):
    request = request or make_request()
    result = ItemFilter(catalog).filter(request)
    validator = ResponseValidator(catalog, strict_repair=strict_repair)
    return validator.validate(raw, result.candidates, request, safety=result.safety)


class TestValidEntries:
    def test_all_valid(self, small_catalog):
        plan, report = _validate(small_catalog, _raw("ex-squat", "ex-plank"))

        assert plan.item_ids == ["ex-squat", "ex-plank"]
        assert report.invalid_found == 0
        assert report.replacements_made == 0
        assert report.exercises_validated

    def test_media_ref_from_catalog(self, small_catalog):
        plan, _ = _validate(small_catalog, _raw("ex-plank"))
        assert plan.entries[0].media_ref == "media/plank.gif"
        assert plan.entries[0].name == "Plank"

    def test_params_clamped(self, small_catalog):
        entry = RawEntry(item_id="ex-plank", section="cooldown",
                         params={"sets": 99, "reps": 0, "rest_seconds": "45", "duration_seconds": 9000})
        plan, _ = _validate(small_catalog, _raw(entry))

        params = plan.entries[0].params
        assert params == {"sets": 10, "reps": 1, "rest_seconds": 45, "duration_seconds": 3600}
        assert plan.entries[0].section == "cooldown"

    def test_defaults_and_unknown_section(self, small_catalog):
        entry = RawEntry(item_id="ex-plank", section="finisher", params={"sets": "lots"})
        plan, _ = _validate(small_catalog, _raw(entry))

        assert plan.entries[0].params == {"sets": 3, "reps": 10, "rest_seconds": 60}
        assert plan.entries[0].section == "main"

    def test_food_params(self, small_catalog):
        request = make_request(intent=Intent.BREAKFAST, equipment=[])
        entry = RawEntry(item_id="fd-oatmeal", params={"portion_grams": 5000})
        plan, _ = _validate(small_catalog, _raw(entry), request=request)

        assert plan.entries[0].params == {"portion_grams": 1000.0, "servings": 1.0}
        assert plan.entries[0].section == "breakfast"

    @pytest.mark.parametrize("value", [float("inf"), 10 ** 400, "Infinity", "-inf", float("nan"), "NaN"])
    def test_non_finite_params_fall_back_to_defaults(self, small_catalog, value):
        entry = RawEntry(item_id="ex-plank", params={"sets": value, "reps": value, "duration_seconds": value})
        plan, _ = _validate(small_catalog, _raw(entry))

        assert plan.entries[0].params == {"sets": 3, "reps": 10, "rest_seconds": 60, "duration_seconds": 0}

    def test_non_finite_food_params_fall_back_to_defaults(self, small_catalog):
        request = make_request(intent=Intent.BREAKFAST, equipment=[])
        entry = RawEntry(item_id="fd-oatmeal", params={"portion_grams": float("inf"), "servings": "nan"})
        plan, _ = _validate(small_catalog, _raw(entry), request=request)

        assert plan.entries[0].params == {"portion_grams": 150.0, "servings": 1.0}


class TestRepair:
    def test_fabricated_id_replaced(self, small_catalog):
        raw = _raw("ex-squat", RawEntry(item_id="ex-core-crusher-3000", name="Core Crusher"))
        plan, report = _validate(small_catalog, raw)

        assert report.invalid_found == 1
        assert report.replacements_made == 1
        replaced = plan.entries[1]
        assert replaced.replaced_from == "ex-core-crusher-3000"
        # "core" overlaps with the core-tagged candidates
        assert replaced.item_id == "ex-plank"
        assert any("ex-core-crusher-3000" in warning and "not in catalog" in warning for warning in report.warnings)

    def test_replacement_never_duplicates_valid_ids(self, small_catalog):
        # ex-plank is valid later in the output, so the invented core entry must not take it
        raw = _raw(RawEntry(item_id="ex-core-thing", name="Core Thing"), "ex-plank")
        plan, _ = _validate(small_catalog, raw)

        assert plan.item_ids[1] == "ex-plank"
        assert plan.item_ids[0] != "ex-plank"
        assert len(set(plan.item_ids)) == 2

    def test_equipment_violation_replaced(self, small_catalog):
        plan, report = _validate(small_catalog, _raw("ex-db-row"))

        assert report.invalid_found == 1
        assert plan.entries[0].item_id != "ex-db-row"
        assert small_catalog.lookup(plan.entries[0].item_id).equipment <= {"bodyweight"}

    def test_unsafe_item_replaced(self, small_catalog):
        request = make_request(exclusions=["knee"])
        plan, report = _validate(small_catalog, _raw("ex-squat"), request=request)

        assert plan.entries[0].item_id != "ex-squat"
        assert report.invalid_found == 1
        # Safety warnings from the exclusions lead the report
        assert "knee" in report.warnings[0]

    def test_wrong_kind_replaced(self, small_catalog):
        plan, report = _validate(small_catalog, _raw("fd-oatmeal"))
        assert plan.entries[0].item_id != "fd-oatmeal"
        assert report.invalid_found == 1

    def test_exhausted_candidates_drop_entry(self, small_catalog):
        request = make_request(intent=Intent.CORE)
        raw = _raw("ex-plank", "ex-dead-bug", "ex-made-up")
        plan, report = _validate(small_catalog, raw, request=request)

        assert plan.item_ids == ["ex-plank", "ex-dead-bug"]
        assert report.invalid_found == 1
        assert report.replacements_made == 0
        assert any(warning.startswith("NoSafeReplacement") for warning in report.warnings)

    def test_strict_repair_raises(self, small_catalog):
        request = make_request(intent=Intent.CORE)
        with pytest.raises(NoSafeReplacementError):
            _validate(small_catalog, _raw("ex-plank", "ex-dead-bug", "ex-made-up"), request=request, strict_repair=True)

    def test_nothing_usable(self, small_catalog):
        validator = ResponseValidator(small_catalog)
        with pytest.raises(GenerationUnusableError) as exc_info:
            validator.validate(_raw("ex-plank", "ex-made-up"), [], make_request())
        assert exc_info.value.context["invalid_found"] == 2

    def test_invented_only_output_with_single_candidate(self, small_catalog):
        request = make_request(intent=Intent.BREAKFAST, equipment=[], exclusions=["vegan"])
        plan, report = _validate(small_catalog, _raw("fd-pizza", "fd-burger"), request=request)

        assert plan.item_ids == ["fd-oatmeal"]
        assert report.replacements_made == 1
        assert report.invalid_found == 2


class TestAssertMedia:
    def test_unknown_entry_rejected(self, small_catalog):
        validator = ResponseValidator(small_catalog)
        entry = PlanEntry(item_id="ex-ghost", name="Ghost", media_ref="media/ghost.gif")
        with pytest.raises(PlanIntegrityError):
            validator.assert_media([entry])

    def test_mismatched_media_rejected(self, small_catalog):
        validator = ResponseValidator(small_catalog)
        entry = PlanEntry(item_id="ex-plank", name="Plank", media_ref="media/other.gif")
        with pytest.raises(PlanIntegrityError):
            validator.assert_media([entry])


class TestPortionAdjustment:
    @pytest.fixture
    def calorie_catalog(self):
        calories = {"fd-oatmeal": 100, "fd-omelette": 150}
        records = [
            {**record, "calories_per_100g": calories[record["id"]]} if record["id"] in calories else record
            for record in SMALL_CATALOG_RECORDS
        ]
        return CatalogIndex.from_records(records)

    @staticmethod
    def _breakfast(catalog, target_value, *entries):
        request = make_request(intent=Intent.BREAKFAST, equipment=[], target_value=target_value)
        return _validate(catalog, _raw(*entries), request=request)

    def test_portions_scaled_to_target(self, calorie_catalog):
        plan, report = self._breakfast(
            calorie_catalog, 450,
            RawEntry(item_id="fd-oatmeal", params={"portion_grams": 200}),
            RawEntry(item_id="fd-omelette", params={"portion_grams": 100})
        )

        oatmeal, omelette = plan.entries
        assert oatmeal.params["portion_grams"] == 257.1
        assert omelette.params["portion_grams"] == 128.6
        assert oatmeal.params["calories"] == 257
        assert omelette.params["calories"] == 193
        assert report.total_calories == pytest.approx(450.0)
        assert report.portion_scale == 1.286

    def test_within_tolerance_left_alone(self, calorie_catalog):
        # 350 kcal against a 355 kcal target is inside 2%
        plan, report = self._breakfast(
            calorie_catalog, 355,
            RawEntry(item_id="fd-oatmeal", params={"portion_grams": 200}),
            RawEntry(item_id="fd-omelette", params={"portion_grams": 100})
        )

        assert [e.params["portion_grams"] for e in plan.entries] == [200.0, 100.0]
        assert report.portion_scale is None
        assert report.total_calories == pytest.approx(350.0)

    def test_servings_count_towards_calories(self, calorie_catalog):
        plan, report = self._breakfast(
            calorie_catalog, 300,
            RawEntry(item_id="fd-oatmeal", params={"portion_grams": 100, "servings": 2})
        )

        # two 100 g servings are 200 kcal, so each serving grows to 150 g
        assert plan.entries[0].params["portion_grams"] == 150.0
        assert plan.entries[0].params["calories"] == 300
        assert report.portion_scale == 1.5
        assert report.total_calories == pytest.approx(300.0)

    def test_clamped_portions_flagged(self, calorie_catalog):
        plan, report = self._breakfast(
            calorie_catalog, 5000,
            RawEntry(item_id="fd-oatmeal", params={"portion_grams": 200})
        )

        assert plan.entries[0].params["portion_grams"] == 1000.0
        assert report.total_calories == pytest.approx(1000.0)
        assert any(warning.startswith("Calories off target") for warning in report.warnings)

    def test_missing_calorie_data_skips_adjustment(self, small_catalog):
        plan, report = self._breakfast(
            small_catalog, 450,
            RawEntry(item_id="fd-oatmeal", params={"portion_grams": 200})
        )

        assert plan.entries[0].params == {"portion_grams": 200.0, "servings": 1.0}
        assert report.total_calories is None
        assert report.portion_scale is None

    def test_workouts_untouched(self, calorie_catalog):
        _, report = _validate(calorie_catalog, _raw("ex-plank"))
        assert report.total_calories is None
