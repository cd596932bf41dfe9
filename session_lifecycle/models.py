from __future__ import annotations  # Session, score and audit records plus transition payloads

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from scoring_engine.models import Criterion, CriterionResult, PassStatus
from storage.audit import AuditAction
from template_versions.models import TemplateSnapshot

from .machine import SessionStatus


class Session(BaseModel):  # One evaluation of a call against a bound snapshot
    id: str
    template_id: str
    template_version: int
    template_snapshot: TemplateSnapshot
    status: SessionStatus = "pending"
    coach_id: Optional[str] = None
    agent_id: Optional[str] = None
    call_id: Optional[str] = None
    total_score: Optional[float] = None
    total_possible: Optional[float] = None
    percentage_score: Optional[float] = None
    pass_status: PassStatus = "pending"
    has_auto_fail: bool = False
    auto_fail_criteria_ids: List[str] = Field(default_factory=list)
    coach_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    review_notes: Optional[str] = None
    reviewer_rating: Optional[int] = Field(default=None, ge=1, le=5)
    disputed_by: Optional[str] = None
    disputed_at: Optional[str] = None
    dispute_reason: Optional[str] = None
    disputed_criteria_ids: List[str] = Field(default_factory=list)
    dispute_resolved_at: Optional[str] = None
    dispute_resolution: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None


class ScoreRecord(BaseModel):  # Persisted answer for one criterion
    session_id: str
    criteria_id: str
    value: Optional[Dict[str, Any]] = None
    is_na: bool = False
    raw_score: float = 0.0
    normalized_score: Optional[float] = None
    weighted_score: Optional[float] = None
    is_auto_fail_triggered: bool = False
    comment: Optional[str] = None
    criteria_snapshot: Criterion
    scored_by: Optional[str] = None
    scored_at: str = ""
    updated_at: str = ""

    def to_result(self) -> CriterionResult:
        return CriterionResult(
            criteria_id=self.criteria_id,
            raw_score=self.raw_score,
            normalized_score=self.normalized_score,
            weighted_score=self.weighted_score,
            weight=self.criteria_snapshot.weight,
            max_score=self.criteria_snapshot.max_score,
            is_na=self.is_na,
            is_auto_fail_triggered=self.is_auto_fail_triggered,
        )


class AuditEntry(BaseModel):
    id: int
    session_id: str
    user_id: Optional[str] = None
    action: AuditAction
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: str


class ScoreEntry(BaseModel):  # One item of a batch submission
    criteria_id: str
    value: Optional[Dict[str, Any]] = None
    is_na: bool = False
    comment: Optional[str] = Field(default=None, max_length=5000)


class ClearScorePayload(BaseModel):
    criteria_id: str = Field(min_length=1)


class CompletePayload(BaseModel):
    coach_notes: Optional[str] = None


class ReviewPayload(BaseModel):
    review_notes: Optional[str] = None
    reviewer_rating: Optional[int] = Field(default=None, ge=1, le=5)


class DisputePayload(BaseModel):
    reason: str = Field(min_length=1)
    disputed_criteria_ids: List[str] = Field(default_factory=list)


class ResolvePayload(BaseModel):
    resolution: str = Field(min_length=1)


class CancelPayload(BaseModel):
    reason: Optional[str] = None


class ReopenPayload(BaseModel):
    reason: Optional[str] = None


__all__ = [
    "AuditEntry",
    "CancelPayload",
    "ClearScorePayload",
    "CompletePayload",
    "DisputePayload",
    "ReopenPayload",
    "ResolvePayload",
    "ReviewPayload",
    "ScoreEntry",
    "ScoreRecord",
    "Session",
]
