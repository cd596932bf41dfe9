"""Session lifecycle as an explicit transition table.

Every mutating session operation is an ``action`` looked up against the
session's current ``status``; a pair missing from ``TRANSITIONS`` is illegal.
``cancelled`` has no outgoing transitions.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Tuple

from scoring_engine.errors import StateError

SessionStatus = Literal["pending", "in_progress", "completed", "reviewed", "disputed", "cancelled"]
SessionAction = Literal[
    "start", "submit_scores", "clear_score", "complete", "review", "dispute", "resolve", "cancel", "reopen"
]

SESSION_STATUSES: Tuple[str, ...] = ("pending", "in_progress", "completed", "reviewed", "disputed", "cancelled")
SESSION_ACTIONS: Tuple[str, ...] = (
    "start",
    "submit_scores",
    "clear_score",
    "complete",
    "review",
    "dispute",
    "resolve",
    "cancel",
    "reopen",
)

TRANSITIONS: Dict[Tuple[str, str], str] = {
    ("pending", "start"): "in_progress",
    ("pending", "submit_scores"): "in_progress",
    ("in_progress", "submit_scores"): "in_progress",
    ("pending", "clear_score"): "pending",
    ("in_progress", "clear_score"): "in_progress",
    ("in_progress", "complete"): "completed",
    ("completed", "review"): "reviewed",
    ("completed", "dispute"): "disputed",
    ("reviewed", "dispute"): "disputed",
    ("disputed", "resolve"): "reviewed",
    ("pending", "cancel"): "cancelled",
    ("in_progress", "cancel"): "cancelled",
    ("completed", "reopen"): "in_progress",
    ("reviewed", "reopen"): "in_progress",
}


def next_state(state: str, action: str) -> str:
    """Return the status ``action`` leads to from ``state``.

    Raises:
        StateError: The pair is not in the transition table.
    """

    if action not in SESSION_ACTIONS:
        raise StateError(f"Unknown session action: {action!r}")
    target = TRANSITIONS.get((state, action))
    if target is None:
        raise StateError(f"Cannot {action} a session that is {state}")
    return target


def allowed_actions(state: str) -> List[str]:
    return [action for (source, action) in TRANSITIONS if source == state]


__all__ = [
    "SESSION_ACTIONS",
    "SESSION_STATUSES",
    "SessionAction",
    "SessionStatus",
    "TRANSITIONS",
    "allowed_actions",
    "next_state",
]
