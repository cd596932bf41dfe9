"""Session lifecycle service.

Every mutating operation runs through :meth:`SessionService.transition`, which
looks the action up in the transition table, applies the action's handler,
performs a status-guarded update and appends the audit entry, all inside a
single ``BEGIN IMMEDIATE`` transaction.
"""
from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from observability.logger import log_event
from observability.tracing import span
from scoring_engine.aggregator import aggregate
from scoring_engine.errors import ConflictError, PreconditionError, ValidationError
from scoring_engine.models import SessionScoreResult
from scoring_engine.normalizer import normalize, not_applicable, validate_score_value
from storage.audit import insert_audit_entry
from storage.sqlite import utcnow
from template_versions.store import TemplateStore

from .machine import next_state
from .models import (
    AuditEntry,
    CancelPayload,
    ClearScorePayload,
    CompletePayload,
    DisputePayload,
    ReopenPayload,
    ResolvePayload,
    ReviewPayload,
    ScoreEntry,
    ScoreRecord,
    Session,
)
from .store import SessionStore

P = TypeVar("P", bound=BaseModel)

# (session field updates, [(audit action, details), ...])
Outcome = Tuple[Dict[str, Any], List[Tuple[str, Dict[str, Any]]]]
Handler = Callable[[sqlite3.Connection, Session, Any, Optional[str], str], Outcome]


def _coerce(model: Type[P], payload: Any) -> P:
    if payload is None:
        payload = {}
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [{"criteria_id": "", "message": err.get("msg", "invalid value")} for err in exc.errors()]
        raise ValidationError(f"Invalid {model.__name__}: {errors[0]['message']}", errors) from exc


class SessionService:  # Single entry point for session state changes
    def __init__(
        self,
        path: Path | str | None = None,
        *,
        templates: Optional[TemplateStore] = None,
        store: Optional[SessionStore] = None,
    ) -> None:
        self.templates = templates or TemplateStore(path)
        self.store = store or SessionStore(path)
        self._handlers: Dict[str, Handler] = {
            "start": self._on_start,
            "submit_scores": self._on_submit_scores,
            "clear_score": self._on_clear_score,
            "complete": self._on_complete,
            "review": self._on_review,
            "dispute": self._on_dispute,
            "resolve": self._on_resolve,
            "cancel": self._on_cancel,
            "reopen": self._on_reopen,
        }

    # ------------------------------------------------------------------ reads

    def get_session(self, session_id: str) -> Session:
        with self.store.connect() as conn:
            return self.store.load_session(conn, session_id)

    def list_scores(self, session_id: str) -> List[ScoreRecord]:
        with self.store.connect() as conn:
            self.store.load_session(conn, session_id)
            return self.store.list_scores(conn, session_id)

    def audit_log(self, session_id: str) -> List[AuditEntry]:
        with self.store.connect() as conn:
            self.store.load_session(conn, session_id)
            return self.store.list_audit(conn, session_id)

    def recompute(self, session_id: str) -> SessionScoreResult:
        """Aggregate the persisted scores without writing anything."""

        with self.store.connect() as conn:
            session = self.store.load_session(conn, session_id)
            scores = self.store.list_scores(conn, session_id)
        snapshot = session.template_snapshot
        return aggregate(
            snapshot.template,
            snapshot.criteria,
            [score.to_result() for score in scores],
            session_id=session_id,
        )

    # ----------------------------------------------------------------- writes

    def create_session(
        self,
        template_id: str,
        coach_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        call_id: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> Session:
        """Bind a new ``pending`` session to the template's current published snapshot.

        Raises:
            KeyError: Unknown template.
            StateError: The template is not active.
        """

        snapshot = self.templates.current_snapshot(template_id)
        now = utcnow()
        session = Session(
            id=uuid4().hex,
            template_id=template_id,
            template_version=snapshot.template.version,
            template_snapshot=snapshot,
            coach_id=coach_id,
            agent_id=agent_id,
            call_id=call_id,
            created_at=now,
            updated_at=now,
        )
        with self.store.connect(immediate=True) as conn:
            self.store.insert_session(conn, session)
            insert_audit_entry(
                conn,
                session_id=session.id,
                user_id=actor or coach_id,
                action="created",
                details={"template_id": template_id, "template_version": session.template_version},
            )
        log_event(
            "session_created",
            session.id,
            template_id=template_id,
            version=session.template_version,
            actor=actor or coach_id,
        )
        return session

    def transition(
        self,
        session_id: str,
        action: str,
        payload: Any = None,
        actor: Optional[str] = None,
    ) -> Session:
        """Apply ``action`` to the session and return its new state.

        Raises:
            KeyError: Unknown session.
            StateError: ``action`` is not legal from the current status.
            ValidationError: Payload or submitted scores are invalid.
            PreconditionError: Completion blocked by missing scores or comments.
            ConflictError: The status changed underneath the guarded update.
        """

        events: List[Dict[str, Any]] = []
        with span(events, action, session_id=session_id):
            with self.store.connect(immediate=True) as conn:
                session = self.store.load_session(conn, session_id)
                target = next_state(session.status, action)
                now = utcnow()
                fields, audits = self._handlers[action](conn, session, payload, actor, now)
                fields.update(status=target, updated_at=now)
                if not self.store.update_session(conn, session_id, fields, expected_status=session.status):
                    raise ConflictError(
                        f"Session '{session_id}' is no longer {session.status}; {action} was not applied"
                    )
                for audit_action, details in audits:
                    insert_audit_entry(
                        conn,
                        session_id=session_id,
                        user_id=actor,
                        action=audit_action,
                        details=details,
                    )
                updated = self.store.load_session(conn, session_id)

        log_event(
            "session_transition",
            session_id,
            level=logging.WARNING if action == "reopen" else logging.INFO,
            action=action,
            from_status=session.status,
            to_status=updated.status,
            actor=actor,
            ms=events[-1]["ms"],
        )
        return updated

    def submit_scores(
        self,
        session_id: str,
        entries: Sequence[ScoreEntry | Dict[str, Any]],
        actor: Optional[str] = None,
    ) -> List[ScoreRecord]:
        """Validate and persist a batch of answers; nothing is stored if any entry fails."""

        parsed = [_coerce(ScoreEntry, entry) for entry in entries]
        self.transition(session_id, "submit_scores", parsed, actor)
        with self.store.connect() as conn:
            return self.store.list_scores(conn, session_id, [entry.criteria_id for entry in parsed])

    def clear_score(self, session_id: str, criteria_id: str, actor: Optional[str] = None) -> Session:
        """Remove one submitted answer so the criterion counts as unscored again."""

        return self.transition(session_id, "clear_score", {"criteria_id": criteria_id}, actor)

    def start(self, session_id: str, actor: Optional[str] = None) -> Session:
        return self.transition(session_id, "start", None, actor)

    def complete(self, session_id: str, coach_notes: Optional[str] = None, actor: Optional[str] = None) -> Session:
        return self.transition(session_id, "complete", CompletePayload(coach_notes=coach_notes), actor)

    def review(
        self,
        session_id: str,
        review_notes: Optional[str] = None,
        reviewer_rating: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> Session:
        payload = {"review_notes": review_notes, "reviewer_rating": reviewer_rating}
        return self.transition(session_id, "review", payload, actor)

    def dispute(
        self,
        session_id: str,
        reason: str,
        disputed_criteria_ids: Sequence[str] = (),
        actor: Optional[str] = None,
    ) -> Session:
        payload = {"reason": reason, "disputed_criteria_ids": list(disputed_criteria_ids)}
        return self.transition(session_id, "dispute", payload, actor)

    def resolve(self, session_id: str, resolution: str, actor: Optional[str] = None) -> Session:
        return self.transition(session_id, "resolve", {"resolution": resolution}, actor)

    def cancel(self, session_id: str, reason: Optional[str] = None, actor: Optional[str] = None) -> Session:
        return self.transition(session_id, "cancel", {"reason": reason}, actor)

    def reopen(self, session_id: str, reason: Optional[str] = None, actor: Optional[str] = None) -> Session:
        return self.transition(session_id, "reopen", {"reason": reason}, actor)

    # --------------------------------------------------------------- handlers

    def _on_start(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        return {"started_at": now}, [("started", {})]

    def _on_submit_scores(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        entries: List[ScoreEntry] = [_coerce(ScoreEntry, entry) for entry in (payload or [])]
        if not entries:
            raise ValidationError("At least one score is required")

        snapshot = session.template_snapshot
        criteria = snapshot.criterion_map()
        allow_na = snapshot.template.settings.allow_na
        errors: List[Dict[str, str]] = []
        records: List[ScoreRecord] = []
        for entry in entries:
            criterion = criteria.get(entry.criteria_id)
            if criterion is None:
                errors.append(
                    {"criteria_id": entry.criteria_id, "message": "Criterion is not part of this session's template"}
                )
                continue
            if entry.is_na:
                if not allow_na:
                    errors.append({"criteria_id": entry.criteria_id, "message": "N/A is not allowed for this template"})
                    continue
                result = not_applicable(criterion)
                value = None
            else:
                if entry.value is None:
                    errors.append({"criteria_id": entry.criteria_id, "message": "value is required"})
                    continue
                try:
                    parsed = validate_score_value(criterion, entry.value)
                except ValidationError as exc:
                    errors.extend(exc.errors or [{"criteria_id": entry.criteria_id, "message": str(exc)}])
                    continue
                result = normalize(criterion, parsed)
                value = parsed.model_dump()
            records.append(
                ScoreRecord(
                    session_id=session.id,
                    criteria_id=criterion.id,
                    value=value,
                    is_na=result.is_na,
                    raw_score=result.raw_score,
                    normalized_score=result.normalized_score,
                    weighted_score=result.weighted_score,
                    is_auto_fail_triggered=result.is_auto_fail_triggered,
                    comment=entry.comment,
                    criteria_snapshot=criterion,
                    scored_by=actor,
                    scored_at=now,
                    updated_at=now,
                )
            )

        if errors:
            raise ValidationError(f"{len(errors)} score(s) failed validation", errors)

        for record in records:
            self.store.upsert_score(conn, record)

        fields: Dict[str, Any] = {}
        audits: List[Tuple[str, Dict[str, Any]]] = []
        if session.status == "pending":
            fields["started_at"] = now
            audits.append(("started", {"auto": True}))
        audits.append(
            (
                "score_updated",
                {"count": len(records), "criteria_ids": [record.criteria_id for record in records]},
            )
        )
        return fields, audits

    def _on_clear_score(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(ClearScorePayload, payload)
        if not self.store.delete_score(conn, session.id, data.criteria_id):
            raise KeyError(f"No score for criterion '{data.criteria_id}' in session '{session.id}'")
        return {}, [("score_updated", {"cleared": data.criteria_id})]

    def _on_complete(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(CompletePayload, payload)
        snapshot = session.template_snapshot
        template_settings = snapshot.template.settings
        scores = {score.criteria_id: score for score in self.store.list_scores(conn, session.id)}

        if not template_settings.allow_partial_submission:
            missing = [
                criterion.id
                for criterion in snapshot.criteria
                if criterion.is_required
                and (
                    criterion.id not in scores
                    or (scores[criterion.id].is_na and not template_settings.allow_na)
                )
            ]
            if missing:
                raise PreconditionError("Required criteria are not scored", missing)

        if template_settings.require_comments_below_threshold:
            threshold = template_settings.comments_threshold
            uncommented = [
                score.criteria_id
                for score in scores.values()
                if not score.is_na
                and score.normalized_score is not None
                and score.normalized_score < threshold
                and not (score.comment or "").strip()
            ]
            if uncommented:
                raise PreconditionError(f"Comments are required for scores below {threshold:g}", uncommented)

        verdict = aggregate(
            snapshot.template,
            snapshot.criteria,
            [score.to_result() for score in scores.values()],
            session_id=session.id,
        )
        fields: Dict[str, Any] = {
            "total_score": verdict.total_score,
            "total_possible": verdict.total_possible,
            "percentage_score": verdict.percentage_score,
            "pass_status": verdict.pass_status,
            "has_auto_fail": verdict.has_auto_fail,
            "auto_fail_criteria_ids": verdict.auto_fail_criteria_ids,
            "completed_at": now,
        }
        if data.coach_notes is not None:
            fields["coach_notes"] = data.coach_notes
        details = {
            "percentage_score": verdict.percentage_score,
            "pass_status": verdict.pass_status,
            "has_auto_fail": verdict.has_auto_fail,
        }
        return fields, [("completed", details)]

    def _on_review(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(ReviewPayload, payload)
        fields = {
            "reviewed_by": actor,
            "reviewed_at": now,
            "review_notes": data.review_notes,
            "reviewer_rating": data.reviewer_rating,
        }
        return fields, [("reviewed", {"reviewer_rating": data.reviewer_rating})]

    def _on_dispute(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(DisputePayload, payload)
        known = session.template_snapshot.criterion_map()
        unknown = [criteria_id for criteria_id in data.disputed_criteria_ids if criteria_id not in known]
        if unknown:
            raise ValidationError(
                "Disputed criteria are not part of this session's template",
                [{"criteria_id": criteria_id, "message": "unknown criterion"} for criteria_id in unknown],
            )
        fields = {
            "disputed_by": actor,
            "disputed_at": now,
            "dispute_reason": data.reason,
            "disputed_criteria_ids": data.disputed_criteria_ids,
        }
        return fields, [("disputed", {"reason": data.reason, "criteria_ids": data.disputed_criteria_ids})]

    def _on_resolve(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(ResolvePayload, payload)
        fields = {"dispute_resolution": data.resolution, "dispute_resolved_at": now}
        return fields, [("dispute_resolved", {"resolution": data.resolution})]

    def _on_cancel(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(CancelPayload, payload)
        fields = {"cancellation_reason": data.reason, "cancelled_at": now}
        return fields, [("cancelled", {"reason": data.reason})]

    def _on_reopen(self, conn, session: Session, payload: Any, actor: Optional[str], now: str) -> Outcome:
        data = _coerce(ReopenPayload, payload)
        fields: Dict[str, Any] = {
            "total_score": None,
            "total_possible": None,
            "percentage_score": None,
            "pass_status": "pending",
            "has_auto_fail": False,
            "auto_fail_criteria_ids": [],
            "completed_at": None,
        }
        details = {
            "reason": data.reason,
            "previous_status": session.status,
            "previous_percentage_score": session.percentage_score,
            "previous_pass_status": session.pass_status,
        }
        return fields, [("reopened", details)]


__all__ = ["SessionService"]
