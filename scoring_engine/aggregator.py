"""Session-level aggregation of criterion results under the five scoring methods.

``aggregate`` is pure apart from logging: it never mutates its inputs and
produces bit-identical output for identical input. N/A results are dropped
before any method runs, so a session scored ``[a, b(N/A), c]`` aggregates
exactly like ``[a, c]``.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Mapping, Tuple

from config.registry import get_formula
from config.settings import settings
from observability.logger import log_event

from .auto_fail import evaluate_auto_fail
from .errors import ConfigIntegrityError
from .models import Criterion, CriterionResult, ScoringTemplate, SessionScoreResult
from .verdict import decide

Totals = Tuple[float, float, float]  # (total_score, total_possible, percentage)


def _clamp_percentage(value: float) -> float:
    return max(0.0, min(100.0, value))


def _weighted(results: List[CriterionResult], _criteria: Mapping[str, Criterion]) -> Totals:
    earned = sum(r.weighted_score or 0.0 for r in results if r.weight > 0)
    possible = sum(r.weight for r in results if r.weight > 0)
    if possible <= 0:
        return 0.0, 0.0, 0.0
    return earned, possible, earned / possible * 100


def _simple_average(results: List[CriterionResult], _criteria: Mapping[str, Criterion]) -> Totals:
    mean = sum(r.normalized_score or 0.0 for r in results) / len(results)
    return mean, 100.0, mean


def _pass_fail(results: List[CriterionResult], _criteria: Mapping[str, Criterion]) -> Totals:
    passed = all((r.normalized_score or 0.0) >= 100 for r in results)
    pct = 100.0 if passed else 0.0
    return pct, 100.0, pct


def _points(results: List[CriterionResult], criteria: Mapping[str, Criterion]) -> Totals:
    earned = sum(r.raw_score for r in results)
    possible = sum(criteria[r.criteria_id].max_score for r in results)
    if possible <= 0:
        return earned, 0.0, 0.0
    return earned, possible, earned / possible * 100


_METHODS: Dict[str, Callable[[List[CriterionResult], Mapping[str, Criterion]], Totals]] = {
    "weighted": _weighted,
    "simple_average": _simple_average,
    "pass_fail": _pass_fail,
    "points": _points,
}


def _custom_formula(template: ScoringTemplate) -> Callable[[List[CriterionResult], Mapping[str, Criterion]], Totals]:
    if not template.formula:
        return _weighted
    try:
        formula = get_formula(template.formula)
    except KeyError as exc:
        raise ConfigIntegrityError(f"Custom formula {template.formula!r} is not registered") from exc

    def _run(results: List[CriterionResult], _criteria: Mapping[str, Criterion]) -> Totals:
        pct = _clamp_percentage(float(formula(list(results))))
        return pct, 100.0, pct

    return _run


def scoreable_results(
    criteria: Mapping[str, Criterion],
    results: Iterable[CriterionResult],
    *,
    session_id: str | None = None,
) -> List[CriterionResult]:
    """Drop N/A results and results whose criterion is missing from ``criteria``.

    A missing criterion means scores and snapshot have drifted apart; it is
    logged at ERROR and left out so the rest of the session still aggregates.
    """

    kept: List[CriterionResult] = []
    for result in results:
        if result.criteria_id not in criteria:
            log_event(
                "config_integrity",
                session_id,
                level=logging.ERROR,
                criteria_id=result.criteria_id,
                reason="criterion missing from bound snapshot",
            )
            continue
        if result.is_na:
            continue
        kept.append(result)
    return kept


def aggregate(
    template: ScoringTemplate,
    criteria: Iterable[Criterion],
    results: Iterable[CriterionResult],
    *,
    session_id: str | None = None,
) -> SessionScoreResult:
    """Combine per-criterion results into the session verdict."""

    by_id = {criterion.id: criterion for criterion in criteria}
    kept = scoreable_results(by_id, results, session_id=session_id)
    if not kept:
        return SessionScoreResult(pass_status="pending")

    if template.scoring_method == "custom_formula":
        method = _custom_formula(template)
    else:
        method = _METHODS[template.scoring_method]

    total, possible, pct = method(kept, by_id)
    precision = settings.SCORE_PRECISION
    percentage = round(_clamp_percentage(pct), precision)

    auto_fail = evaluate_auto_fail(by_id, kept)
    return SessionScoreResult(
        total_score=round(total, precision),
        total_possible=round(possible, precision),
        percentage_score=percentage,
        pass_status=decide(percentage, template.pass_threshold, auto_fail.has_auto_fail, True),
        has_auto_fail=auto_fail.has_auto_fail,
        auto_fail_criteria_ids=auto_fail.auto_fail_criteria_ids,
    )


__all__ = ["aggregate", "scoreable_results"]
