from __future__ import annotations  # Public exports for the session lifecycle

from .machine import SESSION_ACTIONS, SESSION_STATUSES, TRANSITIONS, allowed_actions, next_state
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
from .service import SessionService
from .store import SessionStore

__all__ = [
    "AuditEntry",
    "CancelPayload",
    "ClearScorePayload",
    "CompletePayload",
    "DisputePayload",
    "ReopenPayload",
    "ResolvePayload",
    "ReviewPayload",
    "SESSION_ACTIONS",
    "SESSION_STATUSES",
    "ScoreEntry",
    "ScoreRecord",
    "Session",
    "SessionService",
    "SessionStore",
    "TRANSITIONS",
    "allowed_actions",
    "next_state",
]
