"""Pydantic schemas for the evaluation API."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from scoring_engine.models import Criterion
from session_lifecycle.models import ScoreEntry, ScoreRecord
from template_versions.models import CriteriaGroup, Template, TemplateVersion


class PublishReq(BaseModel):
    change_summary: str = Field(default="", max_length=500)
    changed_by: Optional[str] = None
    set_as_default: bool = False


class DuplicateReq(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ActorReq(BaseModel):
    actor: Optional[str] = None


class CreateSessionReq(ActorReq):
    template_id: str
    coach_id: Optional[str] = None
    agent_id: Optional[str] = None
    call_id: Optional[str] = None


class SubmitScoresReq(ActorReq):
    scores: List[ScoreEntry] = Field(min_length=1)


class CompleteReq(ActorReq):
    coach_notes: Optional[str] = None


class ReviewReq(ActorReq):
    review_notes: Optional[str] = None
    reviewer_rating: Optional[int] = Field(default=None, ge=1, le=5)


class DisputeReq(ActorReq):
    reason: str = Field(min_length=1)
    disputed_criteria_ids: List[str] = Field(default_factory=list)


class ResolveReq(ActorReq):
    resolution: str = Field(min_length=1)


class ReasonReq(ActorReq):
    reason: Optional[str] = None


class TemplateDetail(BaseModel):
    template: Template
    groups: List[CriteriaGroup] = Field(default_factory=list)
    criteria: List[Criterion] = Field(default_factory=list)


class PublishResp(BaseModel):
    version: TemplateVersion
    template: Template


class ScoresResp(BaseModel):
    session_id: str
    scores: List[ScoreRecord] = Field(default_factory=list)


class ErrorItem(BaseModel):
    criteria_id: str
    message: str


class ErrorDetail(BaseModel):
    message: str
    errors: List[ErrorItem] = Field(default_factory=list)
    missing_criteria_ids: List[str] = Field(default_factory=list)
