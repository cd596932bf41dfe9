from __future__ import annotations  # Template, group, snapshot and version records

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from config.settings import settings
from scoring_engine.criteria import CriteriaType, parse_config
from scoring_engine.errors import ValidationError
from scoring_engine.models import Criterion, ScoringMethod, ScoringTemplate, TemplateSettings

TemplateStatus = Literal["draft", "active", "archived"]


class Template(ScoringTemplate):  # Live, editable rubric definition
    id: str
    name: str
    description: str = ""
    status: TemplateStatus = "draft"
    version: int = 0
    is_default: bool = False
    created_at: str = ""
    updated_at: str = ""
    activated_at: Optional[str] = None
    archived_at: Optional[str] = None


class CriteriaGroup(BaseModel):  # Organizational grouping; weight is never aggregated
    id: str
    template_id: str
    name: str
    description: str = ""
    sort_order: int = 0
    weight: float = Field(default=0, ge=0)
    is_required: bool = True


class TemplateSnapshot(BaseModel):
    """Value copy of a template with its ordered groups and criteria.

    Frozen and compared structurally. Stores hand out a freshly parsed copy on
    every read, so nothing a caller does to one instance reaches another
    session or version.
    """

    model_config = ConfigDict(frozen=True)

    template: Template
    groups: Tuple[CriteriaGroup, ...] = ()
    criteria: Tuple[Criterion, ...] = ()

    def criterion_map(self) -> Dict[str, Criterion]:
        return {criterion.id: criterion for criterion in self.criteria}


class TemplateVersion(BaseModel):  # Immutable record written once by publish
    model_config = ConfigDict(frozen=True)

    id: str
    template_id: str
    version_number: int = Field(ge=1)
    snapshot: TemplateSnapshot
    change_summary: str = ""
    changed_by: Optional[str] = None
    created_at: str = ""


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    scoring_method: ScoringMethod = "weighted"
    formula: Optional[str] = None
    pass_threshold: float = Field(default_factory=lambda: settings.DEFAULT_PASS_THRESHOLD, ge=0, le=100)
    max_total_score: float = Field(default=100, ge=0)
    settings: TemplateSettings = Field(default_factory=TemplateSettings)
    is_default: bool = False


class TemplateUpdate(BaseModel):  # Partial edit of template-level fields
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    scoring_method: Optional[ScoringMethod] = None
    formula: Optional[str] = None
    pass_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    max_total_score: Optional[float] = Field(default=None, ge=0)
    settings: Optional[TemplateSettings] = None
    is_default: Optional[bool] = None


class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    sort_order: int = 0
    weight: float = Field(default=0, ge=0)
    is_required: bool = True


class CriterionCreate(BaseModel):
    group_id: Optional[str] = None
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    criteria_type: CriteriaType
    config: Dict[str, Any] = Field(default_factory=dict)
    weight: float = Field(default=0, ge=0)
    max_score: float = Field(default=100, ge=0)
    sort_order: int = 0
    is_required: bool = True
    is_auto_fail: bool = False
    auto_fail_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    scoring_guide: str = ""
    keywords: List[str] = Field(default_factory=list)


class CriterionUpdate(BaseModel):
    """Partial edit of a live criterion; unset fields are left alone."""

    group_id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    criteria_type: Optional[CriteriaType] = None
    config: Optional[Dict[str, Any]] = None
    weight: Optional[float] = Field(default=None, ge=0)
    max_score: Optional[float] = Field(default=None, ge=0)
    sort_order: Optional[int] = None
    is_required: Optional[bool] = None
    is_auto_fail: Optional[bool] = None
    auto_fail_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    scoring_guide: Optional[str] = None
    keywords: Optional[List[str]] = None

    @model_validator(mode="after")
    def _type_needs_config(self) -> "CriterionUpdate":
        # A type change must carry a config of the new shape.
        if self.criteria_type is not None and self.config is None:
            raise ValueError("config is required when criteria_type changes")
        if self.criteria_type is not None and self.config is not None:
            try:
                parse_config(self.criteria_type, self.config)
            except ValidationError as exc:
                raise ValueError(str(exc)) from exc
        return self


__all__ = [
    "CriteriaGroup",
    "CriterionCreate",
    "CriterionUpdate",
    "GroupCreate",
    "Template",
    "TemplateCreate",
    "TemplateSnapshot",
    "TemplateStatus",
    "TemplateUpdate",
    "TemplateVersion",
]
