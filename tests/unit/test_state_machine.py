import pytest

from scoring_engine.errors import StateError
from session_lifecycle.machine import (
    SESSION_ACTIONS,
    SESSION_STATUSES,
    TRANSITIONS,
    allowed_actions,
    next_state,
)


@pytest.mark.parametrize(
    "state, action, expected",
    [
        ("pending", "start", "in_progress"),
        ("pending", "submit_scores", "in_progress"),
        ("in_progress", "submit_scores", "in_progress"),
        ("pending", "clear_score", "pending"),
        ("in_progress", "clear_score", "in_progress"),
        ("in_progress", "complete", "completed"),
        ("completed", "review", "reviewed"),
        ("completed", "dispute", "disputed"),
        ("reviewed", "dispute", "disputed"),
        ("disputed", "resolve", "reviewed"),
        ("pending", "cancel", "cancelled"),
        ("in_progress", "cancel", "cancelled"),
        ("completed", "reopen", "in_progress"),
        ("reviewed", "reopen", "in_progress"),
    ],
)
def test_legal_transitions(state, action, expected):
    assert next_state(state, action) == expected


def test_every_other_pair_is_illegal():
    for state in SESSION_STATUSES:
        for action in SESSION_ACTIONS:
            if (state, action) in TRANSITIONS:
                continue
            with pytest.raises(StateError):
                next_state(state, action)


@pytest.mark.parametrize(
    "state, action",
    [
        ("completed", "submit_scores"),
        ("pending", "complete"),
        ("disputed", "reopen"),
        ("completed", "cancel"),
        ("cancelled", "start"),
        ("completed", "clear_score"),
    ],
)
def test_common_mistakes_are_rejected(state, action):
    with pytest.raises(StateError) as excinfo:
        next_state(state, action)
    assert state in str(excinfo.value)


def test_unknown_action():
    with pytest.raises(StateError):
        next_state("pending", "archive")


def test_cancelled_is_terminal():
    assert allowed_actions("cancelled") == []
    assert allowed_actions("pending") == ["start", "submit_scores", "clear_score", "cancel"]
