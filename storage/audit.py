"""Write-only persistence for session audit entries."""
from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from .sqlite import utcnow

AuditAction = Literal[
    "created",
    "started",
    "score_updated",
    "completed",
    "reviewed",
    "disputed",
    "dispute_resolved",
    "cancelled",
    "reopened",
]


class AuditPayload(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    action: AuditAction
    details: Dict[str, Any] = Field(default_factory=dict)


def insert_audit_entry(conn: sqlite3.Connection, **data: Any) -> int:
    """Insert an audit row on ``conn`` and return its primary key.

    The caller owns the transaction so the entry commits or rolls back with
    the state change it records.
    """

    payload = AuditPayload(**data)
    cur = conn.execute(
        """INSERT INTO session_audit_log (session_id, user_id, action, details_json, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (
            payload.session_id,
            payload.user_id,
            payload.action,
            json.dumps(payload.details, default=str),
            utcnow(),
        ),
    )
    return int(cur.lastrowid)


__all__ = ["AuditAction", "AuditPayload", "insert_audit_entry"]
