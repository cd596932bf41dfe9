from __future__ import annotations  # Criterion config and answer shapes keyed by criteria type

from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

CriteriaType = Literal[
    "scale",
    "pass_fail",
    "checklist",
    "dropdown",
    "multi_select",
    "rating_stars",
    "percentage",
    "text",
]

CRITERIA_TYPES: tuple[str, ...] = (
    "scale",
    "pass_fail",
    "checklist",
    "dropdown",
    "multi_select",
    "rating_stars",
    "percentage",
    "text",
)


class ScaleConfig(BaseModel):  # Numeric scale such as 1-5 or 1-10
    model_config = ConfigDict(allow_inf_nan=False)

    min: float = 1
    max: float = 5
    step: float = Field(default=1, gt=0)
    labels: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _min_below_max(self) -> "ScaleConfig":
        if self.min >= self.max:
            raise ValueError(f"min ({self.min:g}) must be below max ({self.max:g})")
        return self


class PassFailConfig(BaseModel):  # Binary outcome mapped to two scores
    pass_label: str = "Pass"
    fail_label: str = "Fail"
    pass_value: float = 100
    fail_value: float = 0


class ChecklistItem(BaseModel):
    id: str
    label: str = ""
    points: float = Field(default=1, ge=0)


class ChecklistConfig(BaseModel):  # Checkbox items worth points
    items: List[ChecklistItem] = Field(default_factory=list)
    scoring: Literal["sum", "average", "all_required"] = "sum"


class ScoredOption(BaseModel):
    value: str
    label: str = ""
    score: float = 0


class DropdownConfig(BaseModel):  # Single choice from scored options
    options: List[ScoredOption] = Field(default_factory=list)


class MultiSelectConfig(BaseModel):  # Several choices from scored options
    options: List[ScoredOption] = Field(default_factory=list)
    scoring: Literal["sum", "average"] = "sum"


class StarsConfig(BaseModel):  # Star rating with optional half steps
    max_stars: int = Field(default=5, ge=1)
    allow_half: bool = False


class PercentageThreshold(BaseModel):
    value: float
    label: str = ""
    color: str = ""


class PercentageConfig(BaseModel):  # Thresholds only drive presentation
    thresholds: List[PercentageThreshold] = Field(default_factory=list)


class TextConfig(BaseModel):  # Free text response
    placeholder: str = ""
    max_length: Optional[int] = Field(default=None, ge=1)


CriterionConfig = Union[
    ScaleConfig,
    PassFailConfig,
    ChecklistConfig,
    DropdownConfig,
    MultiSelectConfig,
    StarsConfig,
    PercentageConfig,
    TextConfig,
]


class _StrictValue(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, frozen=True, allow_inf_nan=False)


class ScaleValue(_StrictValue):
    value: float


class PassFailValue(_StrictValue):
    passed: bool


class ChecklistValue(_StrictValue):
    checked: List[str] = Field(default_factory=list)
    unchecked: List[str] = Field(default_factory=list)


class DropdownValue(_StrictValue):
    selected: str


class MultiSelectValue(_StrictValue):
    selected: List[str] = Field(default_factory=list)


class StarsValue(_StrictValue):
    stars: float


class PercentageValue(_StrictValue):
    value: float


class TextValue(_StrictValue):
    response: str


ScoreValue = Union[
    ScaleValue,
    PassFailValue,
    ChecklistValue,
    DropdownValue,
    MultiSelectValue,
    StarsValue,
    PercentageValue,
    TextValue,
]

CONFIG_MODELS: Dict[str, Type[BaseModel]] = {
    "scale": ScaleConfig,
    "pass_fail": PassFailConfig,
    "checklist": ChecklistConfig,
    "dropdown": DropdownConfig,
    "multi_select": MultiSelectConfig,
    "rating_stars": StarsConfig,
    "percentage": PercentageConfig,
    "text": TextConfig,
}

VALUE_MODELS: Dict[str, Type[BaseModel]] = {
    "scale": ScaleValue,
    "pass_fail": PassFailValue,
    "checklist": ChecklistValue,
    "dropdown": DropdownValue,
    "multi_select": MultiSelectValue,
    "rating_stars": StarsValue,
    "percentage": PercentageValue,
    "text": TextValue,
}


def _first_error(exc: PydanticValidationError) -> str:  # Compact message from pydantic errors
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def parse_config(criteria_type: str, raw: Any) -> CriterionConfig:
    """Coerce ``raw`` into the config model registered for ``criteria_type``.

    Raises:
        ValidationError: Unknown type or a payload that does not fit the type.
    """

    model = CONFIG_MODELS.get(criteria_type)
    if model is None:
        raise ValidationError(f"Unknown criteria type: {criteria_type!r}")
    if isinstance(raw, model):
        return raw  # type: ignore[return-value]
    if isinstance(raw, BaseModel):
        raise ValidationError(
            f"Config of type {type(raw).__name__} does not match criteria type {criteria_type!r}"
        )
    try:
        return model.model_validate(raw if raw is not None else {})  # type: ignore[return-value]
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {criteria_type} config: {_first_error(exc)}") from exc


def parse_value(criteria_type: str, raw: Any) -> ScoreValue:
    """Coerce ``raw`` into the answer model registered for ``criteria_type``.

    A value whose shape belongs to another type is rejected here rather than
    trusted, so the normalizer can dispatch on ``criteria_type`` alone.
    """

    model = VALUE_MODELS.get(criteria_type)
    if model is None:
        raise ValidationError(f"Unknown criteria type: {criteria_type!r}")
    if isinstance(raw, model):
        return raw  # type: ignore[return-value]
    if isinstance(raw, BaseModel):
        raise ValidationError(
            f"Value of type {type(raw).__name__} does not match criteria type {criteria_type!r}"
        )
    if not isinstance(raw, dict):
        raise ValidationError(f"Value for {criteria_type} criteria must be an object")
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {criteria_type} value: {_first_error(exc)}") from exc


def default_value(criteria_type: str) -> ScoreValue:
    """Return the empty answer for ``criteria_type``."""

    defaults: Dict[str, Dict[str, Any]] = {
        "scale": {"value": 0},
        "pass_fail": {"passed": False},
        "checklist": {"checked": [], "unchecked": []},
        "dropdown": {"selected": ""},
        "multi_select": {"selected": []},
        "rating_stars": {"stars": 0},
        "percentage": {"value": 0},
        "text": {"response": ""},
    }
    if criteria_type not in defaults:
        raise ValidationError(f"Unknown criteria type: {criteria_type!r}")
    return VALUE_MODELS[criteria_type].model_validate(defaults[criteria_type])  # type: ignore[return-value]


__all__ = [
    "CRITERIA_TYPES",
    "CONFIG_MODELS",
    "VALUE_MODELS",
    "ChecklistConfig",
    "ChecklistItem",
    "ChecklistValue",
    "CriteriaType",
    "CriterionConfig",
    "DropdownConfig",
    "DropdownValue",
    "MultiSelectConfig",
    "MultiSelectValue",
    "PassFailConfig",
    "PassFailValue",
    "PercentageConfig",
    "PercentageThreshold",
    "PercentageValue",
    "ScaleConfig",
    "ScaleValue",
    "ScoredOption",
    "ScoreValue",
    "StarsConfig",
    "StarsValue",
    "TextConfig",
    "TextValue",
    "default_value",
    "parse_config",
    "parse_value",
]
