"""Per-criterion scoring: validation, normalization to 0-100 and display values.

Every function here is pure. ``normalize`` dispatches on ``criteria_type`` and
expects a value already parsed for that type (see ``parse_value``); raw JSON
answers go through ``validate_score_value`` first.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

from .criteria import (
    ChecklistConfig,
    ChecklistValue,
    DropdownConfig,
    DropdownValue,
    MultiSelectConfig,
    MultiSelectValue,
    PassFailConfig,
    PassFailValue,
    PercentageValue,
    ScaleConfig,
    ScaleValue,
    ScoreValue,
    StarsConfig,
    StarsValue,
    TextConfig,
    TextValue,
    parse_value,
)
from .errors import ValidationError
from .models import Criterion, CriterionResult, ScoreInput

RawAndNormalized = Tuple[float, float]


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _ratio(part: float, whole: float) -> float:
    """Return ``part / whole * 100`` or 0 when ``whole`` is not positive."""
    if whole <= 0:
        return 0.0
    return part / whole * 100


def _score_scale(config: ScaleConfig, value: ScaleValue) -> RawAndNormalized:
    raw = float(value.value)
    return raw, _ratio(raw - config.min, config.max - config.min)


def _score_pass_fail(config: PassFailConfig, value: PassFailValue) -> RawAndNormalized:
    raw = float(config.pass_value if value.passed else config.fail_value)
    return raw, raw


def _score_checklist(config: ChecklistConfig, value: ChecklistValue) -> RawAndNormalized:
    checked = set(value.checked)
    items = config.items
    if not items:
        return 0.0, 0.0
    checked_points = [item.points for item in items if item.id in checked]
    total_points = sum(item.points for item in items)
    if config.scoring == "all_required":
        complete = all(item.id in checked for item in items)
        return (float(total_points) if complete else 0.0), (100.0 if complete else 0.0)
    if config.scoring == "average":
        if not checked_points:
            return 0.0, 0.0
        avg = sum(checked_points) / len(checked_points)
        return avg, _ratio(avg, max(item.points for item in items))
    raw = float(sum(checked_points))
    return raw, _ratio(raw, total_points)


def _score_dropdown(config: DropdownConfig, value: DropdownValue) -> RawAndNormalized:
    option = next((opt for opt in config.options if opt.value == value.selected), None)
    if option is None or not config.options:
        return 0.0, 0.0
    raw = float(option.score)
    return raw, _ratio(raw, max(opt.score for opt in config.options))


def _score_multi_select(config: MultiSelectConfig, value: MultiSelectValue) -> RawAndNormalized:
    selected = set(value.selected)
    chosen = [opt.score for opt in config.options if opt.value in selected]
    if not config.options or not chosen:
        return 0.0, 0.0
    if config.scoring == "average":
        avg = sum(chosen) / len(chosen)
        return avg, _ratio(avg, max(opt.score for opt in config.options))
    raw = float(sum(chosen))
    return raw, _ratio(raw, sum(opt.score for opt in config.options))


def _score_stars(config: StarsConfig, value: StarsValue) -> RawAndNormalized:
    raw = float(value.stars)
    return raw, _ratio(raw, config.max_stars)


def _score_percentage(_config: Any, value: PercentageValue) -> RawAndNormalized:
    raw = float(value.value)
    return raw, raw


def _score_text(_config: Any, value: TextValue) -> RawAndNormalized:
    raw = 100.0 if value.response.strip() else 0.0
    return raw, raw


_SCORERS: Dict[str, Callable[[Any, Any], RawAndNormalized]] = {
    "scale": _score_scale,
    "pass_fail": _score_pass_fail,
    "checklist": _score_checklist,
    "dropdown": _score_dropdown,
    "multi_select": _score_multi_select,
    "rating_stars": _score_stars,
    "percentage": _score_percentage,
    "text": _score_text,
}


def normalize(criterion: Criterion, value: ScoreValue | Dict[str, Any]) -> CriterionResult:
    """Score one answer against its criterion.

    ``normalized_score`` is clamped to [0, 100] and
    ``weighted_score == normalized_score * weight / 100``.
    """

    parsed = parse_value(criterion.criteria_type, value)
    raw, normalized = _SCORERS[criterion.criteria_type](criterion.config, parsed)
    normalized = _clamp(normalized)
    return CriterionResult(
        criteria_id=criterion.id,
        raw_score=raw,
        normalized_score=normalized,
        weighted_score=normalized * criterion.weight / 100,
        weight=criterion.weight,
        max_score=criterion.max_score,
        is_na=False,
        is_auto_fail_triggered=is_auto_fail_triggered(criterion, normalized),
    )


def not_applicable(criterion: Criterion) -> CriterionResult:
    """Result for an answer flagged N/A: excluded from every aggregate."""

    return CriterionResult(
        criteria_id=criterion.id,
        raw_score=0.0,
        normalized_score=None,
        weighted_score=None,
        weight=criterion.weight,
        max_score=criterion.max_score,
        is_na=True,
        is_auto_fail_triggered=False,
    )


def score_input(item: ScoreInput) -> CriterionResult:
    if item.is_na:
        return not_applicable(item.criterion)
    if item.value is None:
        raise ValidationError(
            "A value is required unless the score is marked N/A",
            [{"criteria_id": item.criterion.id, "message": "value is required"}],
        )
    return normalize(item.criterion, item.value)


def is_auto_fail_triggered(criterion: Criterion, normalized_score: float | None) -> bool:
    """Strictly below the threshold triggers; a score equal to it does not."""

    if normalized_score is None:
        return False
    if not criterion.is_auto_fail or criterion.auto_fail_threshold is None:
        return False
    return normalized_score < criterion.auto_fail_threshold


def _check_scale(config: ScaleConfig, value: ScaleValue) -> str | None:
    if value.value < config.min or value.value > config.max:
        return f"Value must be between {config.min:g} and {config.max:g}"
    return None


def _check_stars(config: StarsConfig, value: StarsValue) -> str | None:
    if value.stars < 0 or value.stars > config.max_stars:
        return f"Stars must be between 0 and {config.max_stars}"
    if not config.allow_half and value.stars % 1 != 0:
        return "Half stars are not allowed"
    if (value.stars * 2) % 1 != 0:
        return "Stars must be whole or half values"
    return None


def _check_percentage(_config: Any, value: PercentageValue) -> str | None:
    if value.value < 0 or value.value > 100:
        return "Percentage must be between 0 and 100"
    return None


def _check_dropdown(config: DropdownConfig, value: DropdownValue) -> str | None:
    if value.selected not in {opt.value for opt in config.options}:
        return f"Invalid option selected: {value.selected!r}"
    return None


def _check_multi_select(config: MultiSelectConfig, value: MultiSelectValue) -> str | None:
    allowed = {opt.value for opt in config.options}
    unknown = [item for item in value.selected if item not in allowed]
    if unknown:
        return f"Invalid options selected: {', '.join(unknown)}"
    return None


def _check_checklist(config: ChecklistConfig, value: ChecklistValue) -> str | None:
    known = {item.id for item in config.items}
    unknown = [item for item in value.checked if item not in known]
    if unknown:
        return f"Unknown checklist items: {', '.join(unknown)}"
    return None


def _check_text(config: TextConfig, value: TextValue) -> str | None:
    if config.max_length is not None and len(value.response) > config.max_length:
        return f"Text response exceeds {config.max_length} characters"
    return None


def _check_nothing(_config: Any, _value: Any) -> str | None:
    return None


_CHECKS: Dict[str, Callable[[Any, Any], str | None]] = {
    "scale": _check_scale,
    "pass_fail": _check_nothing,
    "checklist": _check_checklist,
    "dropdown": _check_dropdown,
    "multi_select": _check_multi_select,
    "rating_stars": _check_stars,
    "percentage": _check_percentage,
    "text": _check_text,
}


def validate_score_value(criterion: Criterion, raw_value: Any) -> ScoreValue:
    """Parse ``raw_value`` for ``criterion`` and check it against the config.

    Returns the parsed value so callers score exactly what was validated.

    Raises:
        ValidationError: Shape mismatch or a value outside the config's bounds.
    """

    try:
        value = parse_value(criterion.criteria_type, raw_value)
    except ValidationError as exc:
        raise ValidationError(str(exc), [{"criteria_id": criterion.id, "message": str(exc)}]) from exc

    problem = _CHECKS[criterion.criteria_type](criterion.config, value)
    if problem:
        raise ValidationError(problem, [{"criteria_id": criterion.id, "message": problem}])
    return value


def _show_scale(config: ScaleConfig, value: ScaleValue) -> str:
    label = config.labels.get(f"{value.value:g}")
    return f"{value.value:g} - {label}" if label else f"{value.value:g}"


def _show_pass_fail(config: PassFailConfig, value: PassFailValue) -> str:
    return config.pass_label if value.passed else config.fail_label


def _show_checklist(config: ChecklistConfig, value: ChecklistValue) -> str:
    return f"{len(value.checked)}/{len(config.items)} items"


def _show_dropdown(config: DropdownConfig, value: DropdownValue) -> str:
    option = next((opt for opt in config.options if opt.value == value.selected), None)
    if option is not None:
        return option.label or option.value
    return value.selected or "Not selected"


def _show_multi_select(_config: Any, value: MultiSelectValue) -> str:
    return f"{len(value.selected)} selected"


def _show_stars(config: StarsConfig, value: StarsValue) -> str:
    return f"{value.stars:g}/{config.max_stars} stars"


def _show_percentage(_config: Any, value: PercentageValue) -> str:
    return f"{value.value:g}%"


def _show_text(_config: Any, value: TextValue) -> str:
    if not value.response:
        return "No response"
    return value.response if len(value.response) <= 50 else f"{value.response[:50]}..."


_DISPLAYS: Dict[str, Callable[[Any, Any], str]] = {
    "scale": _show_scale,
    "pass_fail": _show_pass_fail,
    "checklist": _show_checklist,
    "dropdown": _show_dropdown,
    "multi_select": _show_multi_select,
    "rating_stars": _show_stars,
    "percentage": _show_percentage,
    "text": _show_text,
}


def display_value(criterion: Criterion, value: ScoreValue | Dict[str, Any] | None, *, is_na: bool = False) -> str:
    """Human-readable rendering of an answer for scorecards."""

    if is_na:
        return "N/A"
    if value is None:
        return "Not scored"
    parsed = parse_value(criterion.criteria_type, value)
    return _DISPLAYS[criterion.criteria_type](criterion.config, parsed)


__all__ = [
    "display_value",
    "is_auto_fail_triggered",
    "normalize",
    "not_applicable",
    "score_input",
    "validate_score_value",
]
