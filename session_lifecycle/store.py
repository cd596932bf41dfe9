from __future__ import annotations  # SQLite persistence for sessions, scores and audit history

import json
import sqlite3
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.settings import settings
from storage.migrate import migrate
from storage.sqlite import get_conn

from .models import AuditEntry, ScoreRecord, Session

_JSON_COLUMNS = {
    "auto_fail_criteria_ids": "auto_fail_criteria_ids_json",
    "disputed_criteria_ids": "disputed_criteria_ids_json",
}
_BOOL_COLUMNS = {"has_auto_fail"}
_UPDATABLE = {
    "status",
    "total_score",
    "total_possible",
    "percentage_score",
    "pass_status",
    "has_auto_fail",
    "auto_fail_criteria_ids",
    "coach_notes",
    "reviewed_by",
    "reviewed_at",
    "review_notes",
    "reviewer_rating",
    "disputed_by",
    "disputed_at",
    "dispute_reason",
    "disputed_criteria_ids",
    "dispute_resolved_at",
    "dispute_resolution",
    "cancellation_reason",
    "updated_at",
    "started_at",
    "completed_at",
    "cancelled_at",
}


def _row_to_session(row: sqlite3.Row) -> Session:
    data = dict(row)
    data["template_snapshot"] = json.loads(data.pop("template_snapshot_json"))
    for field, column in _JSON_COLUMNS.items():
        data[field] = json.loads(data.pop(column))
    data["has_auto_fail"] = bool(data["has_auto_fail"])
    return Session.model_validate(data)


def _row_to_score(row: sqlite3.Row) -> ScoreRecord:
    return ScoreRecord(
        session_id=row["session_id"],
        criteria_id=row["criteria_id"],
        value=json.loads(row["value_json"]) if row["value_json"] else None,
        is_na=bool(row["is_na"]),
        raw_score=row["raw_score"],
        normalized_score=row["normalized_score"],
        weighted_score=row["weighted_score"],
        is_auto_fail_triggered=bool(row["is_auto_fail_triggered"]),
        comment=row["comment"],
        criteria_snapshot=json.loads(row["criteria_snapshot_json"]),
        scored_by=row["scored_by"],
        scored_at=row["scored_at"],
        updated_at=row["updated_at"],
    )


class SessionStore:  # Row-level reads and writes; the caller owns the transaction
    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path or settings.DB_PATH)
        migrate(self._path)

    def connect(self, *, immediate: bool = False) -> AbstractContextManager[sqlite3.Connection]:
        return get_conn(self._path, immediate=immediate)

    def insert_session(self, conn: sqlite3.Connection, session: Session) -> None:
        conn.execute(
            """
            INSERT INTO sessions (id, template_id, template_version, template_snapshot_json, status,
                coach_id, agent_id, call_id, pass_status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.template_id,
                session.template_version,
                session.template_snapshot.model_dump_json(),
                session.status,
                session.coach_id,
                session.agent_id,
                session.call_id,
                session.pass_status,
                session.created_at,
                session.updated_at,
            ),
        )

    def load_session(self, conn: sqlite3.Connection, session_id: str) -> Session:
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise KeyError(f"Session '{session_id}' not found")
        return _row_to_session(row)

    def update_session(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        fields: Dict[str, Any],
        *,
        expected_status: str,
    ) -> bool:
        """Apply ``fields`` only while the row still has ``expected_status``.

        Returns False when another writer moved the session first.
        """

        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unsupported session fields: {sorted(unknown)}")
        columns: List[str] = []
        params: List[Any] = []
        for name, value in fields.items():
            if name in _JSON_COLUMNS:
                columns.append(f"{_JSON_COLUMNS[name]} = ?")
                params.append(json.dumps(list(value)))
            elif name in _BOOL_COLUMNS:
                columns.append(f"{name} = ?")
                params.append(int(bool(value)))
            else:
                columns.append(f"{name} = ?")
                params.append(value)
        cur = conn.execute(
            f"UPDATE sessions SET {', '.join(columns)} WHERE id = ? AND status = ?",
            (*params, session_id, expected_status),
        )
        return cur.rowcount == 1

    def upsert_score(self, conn: sqlite3.Connection, record: ScoreRecord) -> None:
        """Insert or overwrite the score for ``(session_id, criteria_id)``; the last write wins."""

        conn.execute(
            """
            INSERT INTO scores (session_id, criteria_id, value_json, is_na, raw_score, normalized_score,
                weighted_score, is_auto_fail_triggered, comment, criteria_snapshot_json, scored_by,
                scored_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id, criteria_id) DO UPDATE SET
                value_json = excluded.value_json,
                is_na = excluded.is_na,
                raw_score = excluded.raw_score,
                normalized_score = excluded.normalized_score,
                weighted_score = excluded.weighted_score,
                is_auto_fail_triggered = excluded.is_auto_fail_triggered,
                comment = excluded.comment,
                criteria_snapshot_json = excluded.criteria_snapshot_json,
                scored_by = excluded.scored_by,
                updated_at = excluded.updated_at
            """,
            (
                record.session_id,
                record.criteria_id,
                json.dumps(record.value) if record.value is not None else None,
                int(record.is_na),
                record.raw_score,
                record.normalized_score,
                record.weighted_score,
                int(record.is_auto_fail_triggered),
                record.comment,
                record.criteria_snapshot.model_dump_json(),
                record.scored_by,
                record.scored_at,
                record.updated_at,
            ),
        )

    def delete_score(self, conn: sqlite3.Connection, session_id: str, criteria_id: str) -> bool:
        cur = conn.execute(
            "DELETE FROM scores WHERE session_id = ? AND criteria_id = ?",
            (session_id, criteria_id),
        )
        return cur.rowcount == 1

    def list_scores(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        criteria_ids: Optional[List[str]] = None,
    ) -> List[ScoreRecord]:
        rows = conn.execute(
            "SELECT * FROM scores WHERE session_id = ? ORDER BY id",
            (session_id,),
        ).fetchall()
        records = [_row_to_score(row) for row in rows]
        if criteria_ids is not None:
            wanted = set(criteria_ids)
            records = [record for record in records if record.criteria_id in wanted]
        return records

    def list_audit(self, conn: sqlite3.Connection, session_id: str) -> List[AuditEntry]:
        rows = conn.execute(
            "SELECT * FROM session_audit_log WHERE session_id = ? ORDER BY id",
            (session_id,),
        ).fetchall()
        return [
            AuditEntry(
                id=row["id"],
                session_id=row["session_id"],
                user_id=row["user_id"],
                action=row["action"],
                details=json.loads(row["details_json"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]


__all__ = ["SessionStore"]
