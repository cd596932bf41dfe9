"""FastAPI routes for templates and evaluation sessions."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Response

from api.schemas import (
    ActorReq,
    CompleteReq,
    CreateSessionReq,
    DisputeReq,
    DuplicateReq,
    ErrorDetail,
    PublishReq,
    PublishResp,
    ReasonReq,
    ResolveReq,
    ReviewReq,
    ScoresResp,
    SubmitScoresReq,
    TemplateDetail,
)
from config.settings import settings
from scorecards import render_scorecard_pdf
from scoring_engine.errors import (
    ConfigIntegrityError,
    ConflictError,
    PreconditionError,
    StateError,
    ValidationError,
)
from scoring_engine.models import Criterion
from session_lifecycle import AuditEntry, Session, SessionService
from template_versions import (
    CriteriaGroup,
    CriterionCreate,
    CriterionUpdate,
    GroupCreate,
    Template,
    TemplateCreate,
    TemplateStore,
    TemplateUpdate,
    TemplateVersion,
)

templates_router = APIRouter(prefix="/api/templates")
sessions_router = APIRouter(prefix="/api/sessions")
router = APIRouter()


def _templates() -> TemplateStore:
    return TemplateStore(settings.DB_PATH)


def _sessions() -> SessionService:
    return SessionService(settings.DB_PATH)


@contextmanager
def _http_errors() -> Iterator[None]:
    """Translate domain errors into HTTP responses."""

    try:
        yield
    except ValidationError as exc:
        detail = ErrorDetail(message=str(exc), errors=exc.errors)
        raise HTTPException(status_code=422, detail=detail.model_dump()) from exc
    except PreconditionError as exc:
        detail = ErrorDetail(message=str(exc), missing_criteria_ids=exc.missing_ids)
        raise HTTPException(status_code=409, detail=detail.model_dump()) from exc
    except (StateError, ConflictError) as exc:
        raise HTTPException(status_code=409, detail=ErrorDetail(message=str(exc)).model_dump()) from exc
    except ConfigIntegrityError as exc:
        raise HTTPException(status_code=500, detail=ErrorDetail(message=str(exc)).model_dump()) from exc
    except KeyError as exc:
        message = exc.args[0] if exc.args else "Not found"
        raise HTTPException(status_code=404, detail=ErrorDetail(message=str(message)).model_dump()) from exc


# --------------------------------------------------------------------------- templates


@templates_router.post("", response_model=Template, status_code=201)
def create_template(req: TemplateCreate) -> Template:
    with _http_errors():
        return _templates().create_template(req)


@templates_router.get("/{template_id}", response_model=TemplateDetail)
def get_template(template_id: str) -> TemplateDetail:
    store = _templates()
    with _http_errors():
        return TemplateDetail(
            template=store.get_template(template_id),
            groups=store.list_groups(template_id),
            criteria=store.list_criteria(template_id),
        )


@templates_router.patch("/{template_id}", response_model=Template)
def update_template(template_id: str, req: TemplateUpdate) -> Template:
    with _http_errors():
        return _templates().update_template(template_id, req)


@templates_router.post("/{template_id}/groups", response_model=CriteriaGroup, status_code=201)
def add_group(template_id: str, req: GroupCreate) -> CriteriaGroup:
    with _http_errors():
        return _templates().add_group(template_id, req)


@templates_router.post("/{template_id}/criteria", response_model=Criterion, status_code=201)
def add_criterion(template_id: str, req: CriterionCreate) -> Criterion:
    with _http_errors():
        return _templates().add_criterion(template_id, req)


@templates_router.patch("/{template_id}/criteria/{criterion_id}", response_model=Criterion)
def update_criterion(template_id: str, criterion_id: str, req: CriterionUpdate) -> Criterion:
    with _http_errors():
        return _templates().update_criterion(template_id, criterion_id, req)


@templates_router.delete("/{template_id}/criteria/{criterion_id}", status_code=204)
def delete_criterion(template_id: str, criterion_id: str) -> Response:
    with _http_errors():
        _templates().delete_criterion(template_id, criterion_id)
    return Response(status_code=204)


@templates_router.post("/{template_id}/publish", response_model=PublishResp, status_code=201)
def publish_template(template_id: str, req: Optional[PublishReq] = None) -> PublishResp:
    req = req or PublishReq()
    store = _templates()
    with _http_errors():
        version = store.publish(
            template_id,
            change_summary=req.change_summary,
            changed_by=req.changed_by,
            set_as_default=req.set_as_default,
        )
        return PublishResp(version=version, template=store.get_template(template_id))


@templates_router.get("/{template_id}/versions", response_model=List[TemplateVersion])
def list_versions(template_id: str) -> List[TemplateVersion]:
    with _http_errors():
        return _templates().list_versions(template_id)


@templates_router.get("/{template_id}/versions/{version_number}", response_model=TemplateVersion)
def get_version(template_id: str, version_number: int) -> TemplateVersion:
    with _http_errors():
        return _templates().get_version(template_id, version_number)


@templates_router.post("/{template_id}/duplicate", response_model=Template, status_code=201)
def duplicate_template(template_id: str, req: Optional[DuplicateReq] = None) -> Template:
    req = req or DuplicateReq()
    with _http_errors():
        return _templates().duplicate_template(template_id, name=req.name)


@templates_router.post("/{template_id}/archive", response_model=Template)
def archive_template(template_id: str) -> Template:
    with _http_errors():
        return _templates().archive_template(template_id)


# ---------------------------------------------------------------------------- sessions


@sessions_router.post("", response_model=Session, status_code=201)
def create_session(req: CreateSessionReq) -> Session:
    with _http_errors():
        return _sessions().create_session(
            req.template_id,
            coach_id=req.coach_id,
            agent_id=req.agent_id,
            call_id=req.call_id,
            actor=req.actor,
        )


@sessions_router.get("/{session_id}", response_model=Session)
def get_session(session_id: str) -> Session:
    with _http_errors():
        return _sessions().get_session(session_id)


@sessions_router.post("/{session_id}/start", response_model=Session)
def start_session(session_id: str, req: Optional[ActorReq] = None) -> Session:
    req = req or ActorReq()
    with _http_errors():
        return _sessions().start(session_id, actor=req.actor)


@sessions_router.post("/{session_id}/scores", response_model=ScoresResp)
def submit_scores(session_id: str, req: SubmitScoresReq) -> ScoresResp:
    with _http_errors():
        scores = _sessions().submit_scores(session_id, req.scores, actor=req.actor)
        return ScoresResp(session_id=session_id, scores=scores)


@sessions_router.get("/{session_id}/scores", response_model=ScoresResp)
def list_scores(session_id: str) -> ScoresResp:
    with _http_errors():
        return ScoresResp(session_id=session_id, scores=_sessions().list_scores(session_id))


@sessions_router.delete("/{session_id}/scores/{criteria_id}", response_model=Session)
def clear_score(session_id: str, criteria_id: str, actor: Optional[str] = None) -> Session:
    with _http_errors():
        return _sessions().clear_score(session_id, criteria_id, actor=actor)


@sessions_router.post("/{session_id}/complete", response_model=Session)
def complete_session(session_id: str, req: Optional[CompleteReq] = None) -> Session:
    req = req or CompleteReq()
    with _http_errors():
        return _sessions().complete(session_id, coach_notes=req.coach_notes, actor=req.actor)


@sessions_router.post("/{session_id}/review", response_model=Session)
def review_session(session_id: str, req: Optional[ReviewReq] = None) -> Session:
    req = req or ReviewReq()
    with _http_errors():
        return _sessions().review(
            session_id,
            review_notes=req.review_notes,
            reviewer_rating=req.reviewer_rating,
            actor=req.actor,
        )


@sessions_router.post("/{session_id}/dispute", response_model=Session)
def dispute_session(session_id: str, req: DisputeReq) -> Session:
    with _http_errors():
        return _sessions().dispute(
            session_id,
            req.reason,
            disputed_criteria_ids=req.disputed_criteria_ids,
            actor=req.actor,
        )


@sessions_router.post("/{session_id}/resolve", response_model=Session)
def resolve_dispute(session_id: str, req: ResolveReq) -> Session:
    with _http_errors():
        return _sessions().resolve(session_id, req.resolution, actor=req.actor)


@sessions_router.post("/{session_id}/cancel", response_model=Session)
def cancel_session(session_id: str, req: Optional[ReasonReq] = None) -> Session:
    req = req or ReasonReq()
    with _http_errors():
        return _sessions().cancel(session_id, reason=req.reason, actor=req.actor)


@sessions_router.post("/{session_id}/reopen", response_model=Session)
def reopen_session(session_id: str, req: Optional[ReasonReq] = None) -> Session:
    req = req or ReasonReq()
    with _http_errors():
        return _sessions().reopen(session_id, reason=req.reason, actor=req.actor)


@sessions_router.get("/{session_id}/audit", response_model=List[AuditEntry])
def session_audit(session_id: str) -> List[AuditEntry]:
    with _http_errors():
        return _sessions().audit_log(session_id)


@sessions_router.get("/{session_id}/scorecard.pdf")
def session_scorecard(session_id: str) -> Response:
    service = _sessions()
    with _http_errors():
        session = service.get_session(session_id)
        payload = render_scorecard_pdf(session, service.list_scores(session_id))
    headers = {"Content-Disposition": f'attachment; filename="scorecard-{session_id}.pdf"'}
    return Response(content=payload, media_type="application/pdf", headers=headers)


router.include_router(templates_router)
router.include_router(sessions_router)
