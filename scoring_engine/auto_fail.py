"""Auto-fail overrides computed from per-criterion results."""
from __future__ import annotations

from typing import Iterable, List, Mapping

from pydantic import BaseModel, Field

from .models import Criterion, CriterionResult
from .normalizer import is_auto_fail_triggered


class AutoFailVerdict(BaseModel):
    has_auto_fail: bool = False
    auto_fail_criteria_ids: List[str] = Field(default_factory=list)


def evaluate_auto_fail(
    criteria: Mapping[str, Criterion],
    results: Iterable[CriterionResult],
) -> AutoFailVerdict:
    """Collect criteria whose normalized score sits strictly below their threshold.

    The trigger is recomputed from the criterion rather than read off the
    stored result, so a stale flag cannot force or hide a failure. N/A results
    and results for unknown criteria never trigger.
    """

    triggered: List[str] = []
    for result in results:
        if result.is_na:
            continue
        criterion = criteria.get(result.criteria_id)
        if criterion is None:
            continue
        if is_auto_fail_triggered(criterion, result.normalized_score) and result.criteria_id not in triggered:
            triggered.append(result.criteria_id)
    return AutoFailVerdict(has_auto_fail=bool(triggered), auto_fail_criteria_ids=triggered)


__all__ = ["AutoFailVerdict", "evaluate_auto_fail"]
