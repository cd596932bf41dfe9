from __future__ import annotations

import random

import pytest

from scoring_engine.criteria import CRITERIA_TYPES, default_value, parse_config
from scoring_engine.errors import ValidationError
from scoring_engine.models import Criterion, ScoreInput
from scoring_engine.normalizer import (
    display_value,
    is_auto_fail_triggered,
    normalize,
    not_applicable,
    score_input,
    validate_score_value,
)


def _criterion(criteria_type: str, config: dict, weight: float = 100, **extra) -> Criterion:
    return Criterion(id=extra.pop("id", "c1"), criteria_type=criteria_type, config=config, weight=weight, **extra)


CHECKLIST = {
    "items": [
        {"id": "a", "label": "Greeting", "points": 10},
        {"id": "b", "label": "Verification", "points": 20},
        {"id": "c", "label": "Closing", "points": 30},
    ]
}
OPTIONS = [
    {"value": "poor", "label": "Poor", "score": 0},
    {"value": "ok", "label": "OK", "score": 5},
    {"value": "great", "label": "Great", "score": 10},
]


@pytest.mark.parametrize(
    "criteria_type, config, value, raw, normalized",
    [
        ("scale", {"min": 1, "max": 5}, {"value": 4}, 4, 75),
        ("scale", {"min": 1, "max": 5}, {"value": 1}, 1, 0),
        ("pass_fail", {}, {"passed": True}, 100, 100),
        ("pass_fail", {"pass_value": 80, "fail_value": 20}, {"passed": False}, 20, 20),
        ("checklist", CHECKLIST, {"checked": ["a", "b"]}, 30, 50),
        ("checklist", {**CHECKLIST, "scoring": "all_required"}, {"checked": ["a", "b", "c"]}, 60, 100),
        ("checklist", {**CHECKLIST, "scoring": "all_required"}, {"checked": ["a", "c"]}, 0, 0),
        ("checklist", {**CHECKLIST, "scoring": "average"}, {"checked": ["b", "c"]}, 25, 25 / 30 * 100),
        ("dropdown", {"options": OPTIONS}, {"selected": "ok"}, 5, 50),
        ("multi_select", {"options": OPTIONS}, {"selected": ["ok", "great"]}, 15, 100),
        ("multi_select", {"options": OPTIONS, "scoring": "average"}, {"selected": ["poor", "great"]}, 5, 50),
        ("rating_stars", {"max_stars": 4}, {"stars": 3}, 3, 75),
        ("percentage", {"thresholds": [{"value": 80, "label": "Good"}]}, {"value": 85}, 85, 85),
        ("text", {}, {"response": "Handled the objection well"}, 100, 100),
        ("text", {}, {"response": "   "}, 0, 0),
    ],
)
def test_normalize_per_type(criteria_type, config, value, raw, normalized):
    result = normalize(_criterion(criteria_type, config), value)
    assert result.raw_score == pytest.approx(raw)
    assert result.normalized_score == pytest.approx(normalized)
    assert result.is_na is False


def test_checklist_sum_scenario_is_exactly_fifty():
    result = normalize(_criterion("checklist", CHECKLIST), {"checked": ["a", "b"]})
    assert result.normalized_score == 50


def test_zero_denominators_normalize_to_zero():
    empty_checklist = _criterion("checklist", {"items": [{"id": "a", "points": 0}]})
    assert normalize(empty_checklist, {"checked": ["a"]}).normalized_score == 0

    zero_dropdown = _criterion("dropdown", {"options": [{"value": "x", "score": 0}]})
    assert normalize(zero_dropdown, {"selected": "x"}).normalized_score == 0


@pytest.mark.parametrize("bounds", [{"min": 3, "max": 3}, {"min": 5, "max": 1}])
def test_scale_config_needs_min_below_max(bounds):
    with pytest.raises(ValidationError) as excinfo:
        parse_config("scale", bounds)
    assert "must be below max" in str(excinfo.value)


@pytest.mark.parametrize(
    "criteria_type, config, value",
    [
        ("scale", {"min": 1, "max": 5}, {"value": float("nan")}),
        ("scale", {"min": 1, "max": 5}, {"value": float("inf")}),
        ("percentage", {}, {"value": float("nan")}),
        ("percentage", {}, {"value": float("-inf")}),
        ("rating_stars", {"max_stars": 5}, {"stars": float("nan")}),
    ],
)
def test_non_finite_answers_are_rejected(criteria_type, config, value):
    criterion = _criterion(criteria_type, config, id="crit-nan")
    with pytest.raises(ValidationError) as excinfo:
        validate_score_value(criterion, value)
    assert excinfo.value.errors[0]["criteria_id"] == "crit-nan"
    assert "finite" in str(excinfo.value)
    with pytest.raises(ValidationError):
        normalize(criterion, value)


def test_normalized_score_is_clamped():
    generous = _criterion("pass_fail", {"pass_value": 140})
    assert normalize(generous, {"passed": True}).normalized_score == 100
    overshoot = _criterion("percentage", {})
    result = normalize(overshoot, {"value": 150})
    assert result.raw_score == 150
    assert result.normalized_score == 100


def test_value_shape_must_match_criteria_type():
    with pytest.raises(ValidationError):
        normalize(_criterion("scale", {"min": 1, "max": 5}), {"passed": True})
    with pytest.raises(ValidationError):
        normalize(_criterion("scale", {"min": 1, "max": 5}), {"value": "4"})


def test_weight_zero_gives_zero_weighted_score():
    result = normalize(_criterion("percentage", {}, weight=0), {"value": 90})
    assert result.weighted_score == 0


def test_not_applicable_has_no_scores():
    result = not_applicable(_criterion("scale", {"min": 1, "max": 5}, is_auto_fail=True, auto_fail_threshold=90))
    assert result.is_na is True
    assert result.normalized_score is None
    assert result.weighted_score is None
    assert result.is_auto_fail_triggered is False


def test_score_input_requires_value_unless_na():
    criterion = _criterion("percentage", {})
    assert score_input(ScoreInput(criterion=criterion, is_na=True)).is_na
    assert score_input(ScoreInput(criterion=criterion, value={"value": 40})).normalized_score == 40
    with pytest.raises(ValidationError) as excinfo:
        score_input(ScoreInput(criterion=criterion))
    assert excinfo.value.errors[0]["criteria_id"] == "c1"


def test_auto_fail_is_strictly_below_threshold():
    criterion = _criterion("percentage", {}, is_auto_fail=True, auto_fail_threshold=50)
    assert is_auto_fail_triggered(criterion, 50) is False
    assert is_auto_fail_triggered(criterion, 49) is True
    assert normalize(criterion, {"value": 50}).is_auto_fail_triggered is False
    assert normalize(criterion, {"value": 49}).is_auto_fail_triggered is True


def test_auto_fail_needs_flag_and_threshold():
    no_flag = _criterion("percentage", {}, auto_fail_threshold=50)
    no_threshold = _criterion("percentage", {}, is_auto_fail=True)
    assert is_auto_fail_triggered(no_flag, 0) is False
    assert is_auto_fail_triggered(no_threshold, 0) is False


@pytest.mark.parametrize(
    "criteria_type, config, value, fragment",
    [
        ("scale", {"min": 1, "max": 5}, {"value": 6}, "between 1 and 5"),
        ("scale", {"min": 1, "max": 5}, {"value": 0}, "between 1 and 5"),
        ("rating_stars", {"max_stars": 5}, {"stars": 2.5}, "Half stars"),
        ("rating_stars", {"max_stars": 5, "allow_half": True}, {"stars": 2.3}, "whole or half"),
        ("rating_stars", {"max_stars": 5}, {"stars": 6}, "between 0 and 5"),
        ("dropdown", {"options": OPTIONS}, {"selected": "meh"}, "Invalid option"),
        ("multi_select", {"options": OPTIONS}, {"selected": ["ok", "meh"]}, "meh"),
        ("checklist", CHECKLIST, {"checked": ["a", "z"]}, "Unknown checklist items: z"),
        ("percentage", {}, {"value": 101}, "between 0 and 100"),
        ("text", {"max_length": 5}, {"response": "too long"}, "exceeds 5"),
        ("pass_fail", {}, {"value": 1}, "pass_fail"),
    ],
)
def test_validate_score_value_rejects(criteria_type, config, value, fragment):
    with pytest.raises(ValidationError) as excinfo:
        validate_score_value(_criterion(criteria_type, config, id="crit-9"), value)
    assert fragment in str(excinfo.value)
    assert excinfo.value.errors == [{"criteria_id": "crit-9", "message": str(excinfo.value)}]


def test_validate_score_value_accepts_half_stars_when_allowed():
    criterion = _criterion("rating_stars", {"max_stars": 5, "allow_half": True})
    parsed = validate_score_value(criterion, {"stars": 3.5})
    assert normalize(criterion, parsed).normalized_score == pytest.approx(70)


def test_display_values():
    scale = _criterion("scale", {"min": 1, "max": 5, "labels": {"4": "Good"}})
    assert display_value(scale, {"value": 4}) == "4 - Good"
    assert display_value(scale, {"value": 2}) == "2"
    assert display_value(_criterion("pass_fail", {}), {"passed": False}) == "Fail"
    assert display_value(_criterion("checklist", CHECKLIST), {"checked": ["a", "b"]}) == "2/3 items"
    assert display_value(_criterion("dropdown", {"options": OPTIONS}), {"selected": "great"}) == "Great"
    assert display_value(_criterion("multi_select", {"options": OPTIONS}), {"selected": ["ok"]}) == "1 selected"
    assert display_value(_criterion("rating_stars", {"max_stars": 5}), {"stars": 4}) == "4/5 stars"
    assert display_value(_criterion("percentage", {}), {"value": 85}) == "85%"
    assert display_value(_criterion("text", {}), {"response": "x" * 60}) == "x" * 50 + "..."
    assert display_value(scale, None) == "Not scored"
    assert display_value(scale, None, is_na=True) == "N/A"


def _random_case(rng: random.Random, criteria_type: str):
    if criteria_type == "scale":
        low = rng.randint(-5, 5)
        high = low + rng.randint(1, 10)
        return {"min": low, "max": high}, {"value": rng.uniform(low, high)}
    if criteria_type == "pass_fail":
        config = {"pass_value": rng.uniform(-50, 150), "fail_value": rng.uniform(-50, 150)}
        return config, {"passed": rng.random() < 0.5}
    if criteria_type == "checklist":
        items = [{"id": f"i{n}", "points": rng.randint(0, 20)} for n in range(rng.randint(1, 6))]
        ids = [item["id"] for item in items]
        config = {"items": items, "scoring": rng.choice(["sum", "average", "all_required"])}
        return config, {"checked": rng.sample(ids, rng.randint(0, len(ids)))}
    if criteria_type in ("dropdown", "multi_select"):
        options = [{"value": f"o{n}", "score": rng.uniform(0, 10)} for n in range(rng.randint(1, 5))]
        values = [option["value"] for option in options]
        if criteria_type == "dropdown":
            return {"options": options}, {"selected": rng.choice(values)}
        config = {"options": options, "scoring": rng.choice(["sum", "average"])}
        return config, {"selected": rng.sample(values, rng.randint(0, len(values)))}
    if criteria_type == "rating_stars":
        max_stars = rng.randint(1, 10)
        allow_half = rng.random() < 0.5
        stars = rng.randint(0, max_stars * 2) / 2 if allow_half else rng.randint(0, max_stars)
        return {"max_stars": max_stars, "allow_half": allow_half}, {"stars": stars}
    if criteria_type == "percentage":
        return {}, {"value": rng.uniform(0, 100)}
    return {}, {"response": rng.choice(["", "   ", "Confirmed the address", "ok"])}


@pytest.mark.parametrize("criteria_type", CRITERIA_TYPES)
def test_normalized_range_and_weighted_law_hold_for_random_valid_input(criteria_type):
    rng = random.Random(f"normalizer-{criteria_type}")
    for _ in range(200):
        config, value = _random_case(rng, criteria_type)
        weight = rng.choice([0, 0.5, 1, 2.5, 10, 40, 100])
        criterion = _criterion(criteria_type, config, weight=weight)
        parsed = validate_score_value(criterion, value)
        result = normalize(criterion, parsed)
        assert 0 <= result.normalized_score <= 100
        assert result.weighted_score == result.normalized_score * weight / 100
        assert normalize(criterion, parsed) == result


@pytest.mark.parametrize("criteria_type", CRITERIA_TYPES)
def test_empty_answers_score_zero(criteria_type):
    criterion = _criterion(criteria_type, {})
    assert normalize(criterion, default_value(criteria_type)).normalized_score == 0


def test_unknown_criteria_type_is_rejected():
    with pytest.raises(ValidationError):
        parse_config("slider", {})
    with pytest.raises(ValidationError):
        default_value("slider")
