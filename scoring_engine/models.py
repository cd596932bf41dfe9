"""Shared record types consumed by the normalizer and aggregator."""
from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from .criteria import CriteriaType, CriterionConfig, ScoreValue, parse_config, parse_value
from .errors import ValidationError

ScoringMethod = Literal["weighted", "simple_average", "pass_fail", "points", "custom_formula"]
PassStatus = Literal["pass", "fail", "pending"]


class TemplateSettings(BaseModel):
    allow_na: bool = True
    require_comments_below_threshold: bool = False
    comments_threshold: float = Field(default=50, ge=0, le=100)
    auto_calculate: bool = True  # Live running total in the scoring UI; complete always aggregates
    show_weights_to_agents: bool = True
    allow_partial_submission: bool = False


class ScoringTemplate(BaseModel):
    """The parts of a template that decide how a session is scored."""

    scoring_method: ScoringMethod = "weighted"
    pass_threshold: float = Field(default=70, ge=0, le=100)
    max_total_score: float = Field(default=100, ge=0)
    formula: Optional[str] = None
    settings: TemplateSettings = Field(default_factory=TemplateSettings)


class Criterion(BaseModel):
    """One gradable item. ``config`` is parsed into the model for ``criteria_type``."""

    id: str
    template_id: str = ""
    group_id: Optional[str] = None
    name: str = ""
    description: str = ""
    criteria_type: CriteriaType
    config: CriterionConfig
    weight: float = Field(default=0, ge=0)
    max_score: float = Field(default=100, ge=0)
    sort_order: int = 0
    is_required: bool = True
    is_auto_fail: bool = False
    auto_fail_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    scoring_guide: str = ""
    keywords: List[str] = Field(default_factory=list)

    @field_validator("config", mode="before")
    @classmethod
    def _parse_config(cls, value: Any, info: ValidationInfo) -> Any:
        criteria_type = info.data.get("criteria_type")
        if criteria_type is None:
            raise ValueError("criteria_type is required before config")
        try:
            return parse_config(criteria_type, value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc


class ScoreInput(BaseModel):  # One answer paired with its criterion
    criterion: Criterion
    value: Optional[ScoreValue] = None
    is_na: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def _parse_value(cls, value: Any, info: ValidationInfo) -> Any:
        criterion = info.data.get("criterion")
        if value is None or criterion is None:
            return value
        try:
            return parse_value(criterion.criteria_type, value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc


class CriterionResult(BaseModel):
    criteria_id: str
    raw_score: float = 0.0
    normalized_score: Optional[float] = None
    weighted_score: Optional[float] = None
    weight: float = 0.0
    max_score: float = 0.0
    is_na: bool = False
    is_auto_fail_triggered: bool = False


class SessionScoreResult(BaseModel):
    total_score: float = 0.0
    total_possible: float = 0.0
    percentage_score: float = 0.0
    pass_status: PassStatus = "pending"
    has_auto_fail: bool = False
    auto_fail_criteria_ids: List[str] = Field(default_factory=list)


__all__ = [
    "Criterion",
    "CriterionResult",
    "PassStatus",
    "ScoreInput",
    "ScoringMethod",
    "ScoringTemplate",
    "SessionScoreResult",
    "TemplateSettings",
]
