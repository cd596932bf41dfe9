from __future__ import annotations

import logging
import threading

import pytest

import session_lifecycle.service as service_module
from scoring_engine.errors import (
    ConflictError,
    PreconditionError,
    StateError,
    ValidationError,
)
from template_versions import CriterionCreate, CriterionUpdate, TemplateCreate


def _answers(published, stars=4, passed=True):
    return [
        {"criteria_id": published["scale_id"], "value": {"value": stars}},
        {"criteria_id": published["gate_id"], "value": {"passed": passed}},
    ]


def _completed(service, published, **kwargs):
    session = service.create_session(published["template_id"], coach_id="coach-1", agent_id="agent-7")
    service.submit_scores(session.id, _answers(published, **kwargs), actor="coach-1")
    return service.complete(session.id, coach_notes="Good call", actor="coach-1")


def test_create_session_binds_current_version(service, published):
    session = service.create_session(published["template_id"], coach_id="coach-1", call_id="call-42")
    assert session.status == "pending"
    assert session.template_version == 1
    assert session.pass_status == "pending"
    assert set(session.template_snapshot.criterion_map()) == {published["scale_id"], published["gate_id"]}
    assert service.get_session(session.id) == session
    assert [entry.action for entry in service.audit_log(session.id)] == ["created"]


def test_create_session_requires_active_template(service, store):
    draft = store.create_template(TemplateCreate(name="Draft"))
    with pytest.raises(StateError):
        service.create_session(draft.id)
    with pytest.raises(KeyError):
        service.create_session("missing")


def test_unknown_session_is_a_key_error(service):
    with pytest.raises(KeyError):
        service.get_session("missing")
    with pytest.raises(KeyError):
        service.start("missing")


def test_first_submission_starts_a_pending_session(service, published):
    session = service.create_session(published["template_id"])
    records = service.submit_scores(session.id, _answers(published)[:1], actor="coach-1")

    assert [r.criteria_id for r in records] == [published["scale_id"]]
    assert records[0].normalized_score == 75
    assert records[0].weighted_score == 45
    assert records[0].scored_by == "coach-1"
    current = service.get_session(session.id)
    assert current.status == "in_progress"
    assert current.started_at is not None
    log = service.audit_log(session.id)
    assert [entry.action for entry in log] == ["created", "started", "score_updated"]
    assert log[1].details == {"auto": True}


def test_explicit_start(service, published):
    session = service.create_session(published["template_id"])
    started = service.start(session.id, actor="coach-1")
    assert started.status == "in_progress"
    with pytest.raises(StateError):
        service.start(session.id)


def test_batch_is_all_or_nothing(service, published):
    session = service.create_session(published["template_id"])
    batch = [
        {"criteria_id": published["scale_id"], "value": {"value": 9}},
        {"criteria_id": published["gate_id"], "value": {"passed": True}},
        {"criteria_id": "ghost", "value": {"value": 1}},
    ]
    with pytest.raises(ValidationError) as excinfo:
        service.submit_scores(session.id, batch)

    failed = [error["criteria_id"] for error in excinfo.value.errors]
    assert failed == [published["scale_id"], "ghost"]
    assert service.list_scores(session.id) == []
    assert service.get_session(session.id).status == "pending"
    assert [entry.action for entry in service.audit_log(session.id)] == ["created"]


def test_value_required_unless_na(service, published):
    session = service.create_session(published["template_id"])
    with pytest.raises(ValidationError) as excinfo:
        service.submit_scores(session.id, [{"criteria_id": published["scale_id"]}])
    assert excinfo.value.errors[0]["message"] == "value is required"


def test_resubmission_overwrites_previous_answer(service, published):
    session = service.create_session(published["template_id"])
    service.submit_scores(session.id, [{"criteria_id": published["scale_id"], "value": {"value": 2}}])
    first = service.list_scores(session.id)[0]
    service.submit_scores(session.id, [{"criteria_id": published["scale_id"], "value": {"value": 5}}])

    scores = service.list_scores(session.id)
    assert len(scores) == 1
    assert scores[0].value == {"value": 5.0}
    assert scores[0].normalized_score == 100
    assert scores[0].scored_at == first.scored_at


def test_complete_requires_every_required_criterion(service, published):
    session = service.create_session(published["template_id"])
    service.submit_scores(session.id, _answers(published)[:1])
    with pytest.raises(PreconditionError) as excinfo:
        service.complete(session.id)
    assert excinfo.value.missing_ids == [published["gate_id"]]
    assert service.get_session(session.id).status == "in_progress"


def test_complete_from_pending_is_illegal(service, published):
    session = service.create_session(published["template_id"])
    with pytest.raises(StateError):
        service.complete(session.id)


def test_complete_aggregates_and_persists(service, published):
    done = _completed(service, published)
    assert done.status == "completed"
    assert done.total_score == 85
    assert done.total_possible == 100
    assert done.percentage_score == 85
    assert done.pass_status == "pass"
    assert done.has_auto_fail is False
    assert done.coach_notes == "Good call"
    assert done.completed_at is not None
    assert service.recompute(done.id).percentage_score == done.percentage_score

    log = service.audit_log(done.id)
    assert log[-1].action == "completed"
    assert log[-1].details == {"percentage_score": 85.0, "pass_status": "pass", "has_auto_fail": False}


def test_failed_gate_forces_fail(service, published):
    done = _completed(service, published, stars=5, passed=False)
    assert done.percentage_score == 60
    assert done.has_auto_fail is True
    assert done.auto_fail_criteria_ids == [published["gate_id"]]
    assert done.pass_status == "fail"


def test_completed_session_rejects_new_scores(service, published):
    done = _completed(service, published)
    with pytest.raises(StateError):
        service.submit_scores(done.id, _answers(published))
    with pytest.raises(StateError):
        service.complete(done.id)


def _publish(store, *criteria, **template_kwargs):
    template = store.create_template(TemplateCreate(name="Custom", scoring_method="simple_average", **template_kwargs))
    ids = [store.add_criterion(template.id, criterion).id for criterion in criteria]
    store.publish(template.id)
    return template.id, ids


def test_na_answers_count_as_scored_when_allowed(service, store):
    template_id, (a, b) = _publish(
        store,
        CriterionCreate(name="A", criteria_type="percentage"),
        CriterionCreate(name="B", criteria_type="percentage"),
    )
    session = service.create_session(template_id)
    service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": 80}}, {"criteria_id": b, "is_na": True}])
    done = service.complete(session.id)
    assert done.percentage_score == 80
    assert done.pass_status == "pass"


def test_na_rejected_when_template_disallows_it(service, store):
    template_id, (a,) = _publish(
        store,
        CriterionCreate(name="A", criteria_type="percentage"),
        settings={"allow_na": False},
    )
    session = service.create_session(template_id)
    with pytest.raises(ValidationError) as excinfo:
        service.submit_scores(session.id, [{"criteria_id": a, "is_na": True}])
    assert excinfo.value.errors[0]["criteria_id"] == a


def test_all_na_completes_as_pending(service, store):
    template_id, (a,) = _publish(store, CriterionCreate(name="A", criteria_type="percentage"))
    session = service.create_session(template_id)
    service.submit_scores(session.id, [{"criteria_id": a, "is_na": True}])
    done = service.complete(session.id)
    assert done.status == "completed"
    assert done.pass_status == "pending"
    assert done.percentage_score == 0


def test_partial_submission_allowed_by_template(service, store):
    template_id, (a, _b) = _publish(
        store,
        CriterionCreate(name="A", criteria_type="percentage"),
        CriterionCreate(name="B", criteria_type="percentage"),
        settings={"allow_partial_submission": True},
    )
    session = service.create_session(template_id)
    service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": 90}}])
    assert service.complete(session.id).percentage_score == 90


def test_optional_criteria_may_stay_unscored(service, store):
    template_id, (a, _b) = _publish(
        store,
        CriterionCreate(name="A", criteria_type="percentage"),
        CriterionCreate(name="B", criteria_type="percentage", is_required=False),
    )
    session = service.create_session(template_id)
    service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": 40}}])
    assert service.complete(session.id).pass_status == "fail"


def test_low_scores_need_comments_when_configured(service, store):
    template_id, (a, b) = _publish(
        store,
        CriterionCreate(name="A", criteria_type="percentage"),
        CriterionCreate(name="B", criteria_type="percentage"),
        settings={"require_comments_below_threshold": True, "comments_threshold": 50},
    )
    session = service.create_session(template_id)
    service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": 30}}, {"criteria_id": b, "value": {"value": 50}}])
    with pytest.raises(PreconditionError) as excinfo:
        service.complete(session.id)
    assert excinfo.value.missing_ids == [a]

    service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": 30}, "comment": "Skipped verification"}])
    assert service.complete(session.id).status == "completed"


def test_review_dispute_resolve(service, published):
    done = _completed(service, published)
    reviewed = service.review(done.id, review_notes="Agreed", reviewer_rating=4, actor="lead-1")
    assert reviewed.status == "reviewed"
    assert reviewed.reviewed_by == "lead-1"
    assert reviewed.reviewer_rating == 4

    disputed = service.dispute(done.id, "Gate was met", disputed_criteria_ids=[published["gate_id"]], actor="agent-7")
    assert disputed.status == "disputed"
    assert disputed.disputed_criteria_ids == [published["gate_id"]]
    assert disputed.dispute_reason == "Gate was met"

    resolved = service.resolve(done.id, "Score stands", actor="lead-1")
    assert resolved.status == "reviewed"
    assert resolved.dispute_resolution == "Score stands"
    assert resolved.percentage_score == done.percentage_score

    actions = [entry.action for entry in service.audit_log(done.id)]
    assert actions[-3:] == ["reviewed", "disputed", "dispute_resolved"]


def test_dispute_rejects_unknown_criteria_and_empty_reason(service, published):
    done = _completed(service, published)
    with pytest.raises(ValidationError):
        service.dispute(done.id, "wrong", disputed_criteria_ids=["ghost"])
    with pytest.raises(ValidationError):
        service.dispute(done.id, "")
    assert service.get_session(done.id).status == "completed"


def test_review_rating_is_bounded(service, published):
    done = _completed(service, published)
    with pytest.raises(ValidationError):
        service.review(done.id, reviewer_rating=6)


def test_cancel_is_terminal(service, published):
    session = service.create_session(published["template_id"])
    cancelled = service.cancel(session.id, reason="Wrong call", actor="coach-1")
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Wrong call"
    assert cancelled.cancelled_at is not None
    for attempt in (service.start, service.complete, service.reopen, service.cancel):
        with pytest.raises(StateError):
            attempt(session.id)


def test_reopen_clears_aggregates_and_warns(service, published, monkeypatch):
    events = []
    monkeypatch.setattr(service_module, "log_event", lambda kind, session_id, **fields: events.append((kind, fields)))
    done = _completed(service, published)
    reopened = service.reopen(done.id, reason="Recalibration", actor="lead-1")

    assert reopened.status == "in_progress"
    assert reopened.percentage_score is None
    assert reopened.total_score is None
    assert reopened.pass_status == "pending"
    assert reopened.completed_at is None
    assert len(service.list_scores(done.id)) == 2

    audit = service.audit_log(done.id)[-1]
    assert audit.action == "reopened"
    assert audit.details["previous_percentage_score"] == 85
    assert audit.details["previous_status"] == "completed"
    assert events[-1][1]["level"] == logging.WARNING
    assert events[-1][1]["action"] == "reopen"

    again = service.complete(done.id)
    assert again.percentage_score == 85


def test_guarded_update_losing_the_race_is_a_conflict(service, published, monkeypatch):
    session = service.create_session(published["template_id"])
    monkeypatch.setattr(service.store, "update_session", lambda *args, **kwargs: False)
    with pytest.raises(ConflictError):
        service.submit_scores(session.id, _answers(published))
    assert service.list_scores(session.id) == []
    assert service.get_session(session.id).status == "pending"


def test_status_guard_rejects_stale_expected_status(service, published):
    session = service.create_session(published["template_id"])
    with service.store.connect(immediate=True) as conn:
        assert service.store.update_session(conn, session.id, {"status": "cancelled"}, expected_status="in_progress") is False
        assert service.store.update_session(conn, session.id, {"status": "in_progress"}, expected_status="pending") is True


def test_sessions_keep_their_snapshot_across_republish(service, store, published):
    before = service.create_session(published["template_id"])
    store.update_criterion(published["template_id"], published["scale_id"], CriterionUpdate(config={"min": 1, "max": 9}))
    store.publish(published["template_id"], change_summary="wider scale")
    after = service.create_session(published["template_id"])

    assert service.get_session(before.id).template_snapshot == before.template_snapshot
    assert before.template_version == 1
    assert after.template_version == 2

    service.submit_scores(before.id, _answers(published, stars=5))
    service.submit_scores(after.id, _answers(published, stars=5))
    assert service.complete(before.id).percentage_score == 100
    assert service.complete(after.id).percentage_score == 70


def test_same_answers_same_verdict(service, published):
    first = _completed(service, published, stars=3)
    second = _completed(service, published, stars=3)
    fields = ("total_score", "total_possible", "percentage_score", "pass_status", "has_auto_fail")
    assert [getattr(first, f) for f in fields] == [getattr(second, f) for f in fields]


def test_non_finite_answers_never_reach_storage(service, store):
    template_id, (a,) = _publish(store, CriterionCreate(name="A", criteria_type="percentage"))
    session = service.create_session(template_id)
    with pytest.raises(ValidationError) as excinfo:
        service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": float("nan")}}])
    assert excinfo.value.errors[0]["criteria_id"] == a
    assert service.list_scores(session.id) == []
    assert service.get_session(session.id).status == "pending"


def test_clear_score_makes_criterion_unscored(service, published):
    session = service.create_session(published["template_id"])
    service.submit_scores(session.id, _answers(published), actor="coach-1")
    cleared = service.clear_score(session.id, published["gate_id"], actor="coach-1")

    assert cleared.status == "in_progress"
    assert [s.criteria_id for s in service.list_scores(session.id)] == [published["scale_id"]]
    audit = service.audit_log(session.id)[-1]
    assert audit.action == "score_updated"
    assert audit.details == {"cleared": published["gate_id"]}
    with pytest.raises(PreconditionError) as excinfo:
        service.complete(session.id)
    assert excinfo.value.missing_ids == [published["gate_id"]]

    with pytest.raises(KeyError):
        service.clear_score(session.id, published["gate_id"])


def test_clear_score_is_illegal_once_completed(service, published):
    done = _completed(service, published)
    with pytest.raises(StateError):
        service.clear_score(done.id, published["gate_id"])
    assert len(service.list_scores(done.id)) == 2


def test_completion_aggregates_without_auto_calculate(service, store):
    template_id, (a,) = _publish(
        store,
        CriterionCreate(name="A", criteria_type="percentage"),
        settings={"auto_calculate": False},
    )
    session = service.create_session(template_id)
    service.submit_scores(session.id, [{"criteria_id": a, "value": {"value": 65}}])
    done = service.complete(session.id)
    assert done.percentage_score == 65
    assert done.pass_status == "fail"


def test_concurrent_completes_apply_once(service, published):
    session = service.create_session(published["template_id"])
    service.submit_scores(session.id, _answers(published))
    outcomes = []
    barrier = threading.Barrier(5)

    def complete():
        barrier.wait()
        try:
            outcomes.append(service.complete(session.id))
        except (StateError, ConflictError) as exc:
            outcomes.append(exc)

    threads = [threading.Thread(target=complete) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    finished = [o for o in outcomes if not isinstance(o, Exception)]
    rejected = [o for o in outcomes if isinstance(o, Exception)]
    assert len(finished) == 1
    assert len(rejected) == 4
    # Losers wait on the write lock, then see the completed status.
    assert all(isinstance(exc, StateError) for exc in rejected)
    actions = [entry.action for entry in service.audit_log(session.id)]
    assert actions.count("completed") == 1
