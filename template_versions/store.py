from __future__ import annotations  # Template persistence, publishing and version history

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from config.settings import settings
from observability.logger import log_event
from scoring_engine.errors import ConflictError, StateError, ValidationError
from scoring_engine.models import Criterion, TemplateSettings
from storage.migrate import migrate
from storage.sqlite import get_conn, utcnow

from .models import (
    CriteriaGroup,
    CriterionCreate,
    CriterionUpdate,
    GroupCreate,
    Template,
    TemplateCreate,
    TemplateSnapshot,
    TemplateUpdate,
    TemplateVersion,
)

logger = logging.getLogger(__name__)

_CRITERION_COLUMNS = (
    "id, template_id, group_id, name, description, criteria_type, config_json, weight, max_score, "
    "sort_order, is_required, is_auto_fail, auto_fail_threshold, scoring_guide, keywords_json"
)


def _row_to_template(row: sqlite3.Row) -> Template:
    return Template(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        scoring_method=row["scoring_method"],
        formula=row["formula"],
        pass_threshold=row["pass_threshold"],
        max_total_score=row["max_total_score"],
        settings=TemplateSettings.model_validate_json(row["settings_json"]),
        status=row["status"],
        version=row["version"],
        is_default=bool(row["is_default"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        activated_at=row["activated_at"],
        archived_at=row["archived_at"],
    )


def _row_to_group(row: sqlite3.Row) -> CriteriaGroup:
    return CriteriaGroup(
        id=row["id"],
        template_id=row["template_id"],
        name=row["name"],
        description=row["description"],
        sort_order=row["sort_order"],
        weight=row["weight"],
        is_required=bool(row["is_required"]),
    )


def _row_to_criterion(row: sqlite3.Row) -> Criterion:
    return Criterion(
        id=row["id"],
        template_id=row["template_id"],
        group_id=row["group_id"],
        name=row["name"],
        description=row["description"],
        criteria_type=row["criteria_type"],
        config=json.loads(row["config_json"]),
        weight=row["weight"],
        max_score=row["max_score"],
        sort_order=row["sort_order"],
        is_required=bool(row["is_required"]),
        is_auto_fail=bool(row["is_auto_fail"]),
        auto_fail_threshold=row["auto_fail_threshold"],
        scoring_guide=row["scoring_guide"],
        keywords=json.loads(row["keywords_json"]),
    )


def _criterion_params(criterion: Criterion) -> tuple:
    return (
        criterion.template_id,
        criterion.group_id,
        criterion.name,
        criterion.description,
        criterion.criteria_type,
        criterion.config.model_dump_json(),
        criterion.weight,
        criterion.max_score,
        criterion.sort_order,
        int(criterion.is_required),
        int(criterion.is_auto_fail),
        criterion.auto_fail_threshold,
        criterion.scoring_guide,
        json.dumps(criterion.keywords),
    )


def _build_criterion(data: Dict[str, Any]) -> Criterion:
    try:
        return Criterion.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            {"criteria_id": str(data.get("id", "")), "message": err.get("msg", "invalid value")}
            for err in exc.errors()
        ]
        raise ValidationError(f"Invalid criterion: {errors[0]['message']}", errors) from exc


class TemplateStore:  # SQLite-backed templates, criteria and published versions
    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path or settings.DB_PATH)
        migrate(self._path)

    def _conn(self, *, immediate: bool = False):
        return get_conn(self._path, immediate=immediate)

    def _load_template(self, conn: sqlite3.Connection, template_id: str) -> Template:
        row = conn.execute("SELECT * FROM templates WHERE id = ?", (template_id,)).fetchone()
        if row is None:
            raise KeyError(f"Template '{template_id}' not found")
        return _row_to_template(row)

    def _load_editable(self, conn: sqlite3.Connection, template_id: str) -> Template:
        template = self._load_template(conn, template_id)
        if template.status == "archived":
            raise StateError("Cannot modify an archived template")
        return template

    def _load_groups(self, conn: sqlite3.Connection, template_id: str) -> List[CriteriaGroup]:
        rows = conn.execute(
            "SELECT * FROM criteria_groups WHERE template_id = ? ORDER BY sort_order, rowid",
            (template_id,),
        ).fetchall()
        return [_row_to_group(row) for row in rows]

    def _load_criteria(self, conn: sqlite3.Connection, template_id: str) -> List[Criterion]:
        rows = conn.execute(
            f"SELECT {_CRITERION_COLUMNS} FROM criteria WHERE template_id = ? ORDER BY sort_order, rowid",
            (template_id,),
        ).fetchall()
        return [_row_to_criterion(row) for row in rows]

    def _touch(self, conn: sqlite3.Connection, template_id: str) -> None:
        conn.execute("UPDATE templates SET updated_at = ? WHERE id = ?", (utcnow(), template_id))

    def _check_group(self, conn: sqlite3.Connection, template_id: str, group_id: Optional[str]) -> None:
        if group_id is None:
            return
        row = conn.execute(
            "SELECT 1 FROM criteria_groups WHERE id = ? AND template_id = ?",
            (group_id, template_id),
        ).fetchone()
        if row is None:
            raise ValidationError(f"Group '{group_id}' does not belong to template '{template_id}'")

    def create_template(self, data: TemplateCreate) -> Template:
        now = utcnow()
        template = Template(id=uuid4().hex, created_at=now, updated_at=now, **data.model_dump())
        with self._conn(immediate=True) as conn:
            if template.is_default:
                conn.execute("UPDATE templates SET is_default = 0 WHERE is_default = 1")
            conn.execute(
                """
                INSERT INTO templates (id, name, description, scoring_method, formula, pass_threshold,
                    max_total_score, settings_json, status, version, is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'draft', 0, ?, ?, ?)
                """,
                (
                    template.id,
                    template.name,
                    template.description,
                    template.scoring_method,
                    template.formula,
                    template.pass_threshold,
                    template.max_total_score,
                    template.settings.model_dump_json(),
                    int(template.is_default),
                    now,
                    now,
                ),
            )
        return template

    def get_template(self, template_id: str) -> Template:
        with self._conn() as conn:
            return self._load_template(conn, template_id)

    def update_template(self, template_id: str, changes: TemplateUpdate) -> Template:
        """Edit template-level fields; like criterion edits they reach sessions on the next publish."""

        with self._conn(immediate=True) as conn:
            current = self._load_editable(conn, template_id)
            merged = current.model_dump()
            merged.update(changes.model_dump(exclude_unset=True))
            merged["updated_at"] = utcnow()
            try:
                updated = Template.model_validate(merged)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid template: {exc.errors()[0].get('msg', 'invalid value')}") from exc
            if updated.is_default and not current.is_default:
                conn.execute("UPDATE templates SET is_default = 0 WHERE is_default = 1 AND id != ?", (template_id,))
            conn.execute(
                """
                UPDATE templates SET name = ?, description = ?, scoring_method = ?, formula = ?,
                    pass_threshold = ?, max_total_score = ?, settings_json = ?, is_default = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.name,
                    updated.description,
                    updated.scoring_method,
                    updated.formula,
                    updated.pass_threshold,
                    updated.max_total_score,
                    updated.settings.model_dump_json(),
                    int(updated.is_default),
                    updated.updated_at,
                    template_id,
                ),
            )
        return updated

    def list_groups(self, template_id: str) -> List[CriteriaGroup]:
        with self._conn() as conn:
            self._load_template(conn, template_id)
            return self._load_groups(conn, template_id)

    def list_criteria(self, template_id: str) -> List[Criterion]:
        with self._conn() as conn:
            self._load_template(conn, template_id)
            return self._load_criteria(conn, template_id)

    def add_group(self, template_id: str, data: GroupCreate) -> CriteriaGroup:
        group = CriteriaGroup(id=uuid4().hex, template_id=template_id, **data.model_dump())
        with self._conn(immediate=True) as conn:
            self._load_editable(conn, template_id)
            conn.execute(
                """
                INSERT INTO criteria_groups (id, template_id, name, description, sort_order, weight, is_required)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    group.id,
                    group.template_id,
                    group.name,
                    group.description,
                    group.sort_order,
                    group.weight,
                    int(group.is_required),
                ),
            )
            self._touch(conn, template_id)
        return group

    def add_criterion(self, template_id: str, data: CriterionCreate) -> Criterion:
        criterion = _build_criterion({"id": uuid4().hex, "template_id": template_id, **data.model_dump()})
        with self._conn(immediate=True) as conn:
            self._load_editable(conn, template_id)
            self._check_group(conn, template_id, criterion.group_id)
            conn.execute(
                f"INSERT INTO criteria ({_CRITERION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (criterion.id, *_criterion_params(criterion)),
            )
            self._touch(conn, template_id)
        return criterion

    def update_criterion(self, template_id: str, criterion_id: str, changes: CriterionUpdate) -> Criterion:
        """Edit a criterion on the live template.

        Published snapshots are separate copies, so sessions and versions that
        already captured this criterion keep the old definition; the change
        only reaches the next publish.
        """

        with self._conn(immediate=True) as conn:
            self._load_editable(conn, template_id)
            row = conn.execute(
                f"SELECT {_CRITERION_COLUMNS} FROM criteria WHERE id = ? AND template_id = ?",
                (criterion_id, template_id),
            ).fetchone()
            if row is None:
                raise KeyError(f"Criterion '{criterion_id}' not found")
            current = _row_to_criterion(row)
            merged = current.model_dump()
            merged.update(changes.model_dump(exclude_unset=True))
            updated = _build_criterion(merged)
            self._check_group(conn, template_id, updated.group_id)
            conn.execute(
                """
                UPDATE criteria SET template_id = ?, group_id = ?, name = ?, description = ?, criteria_type = ?,
                    config_json = ?, weight = ?, max_score = ?, sort_order = ?, is_required = ?, is_auto_fail = ?,
                    auto_fail_threshold = ?, scoring_guide = ?, keywords_json = ?
                WHERE id = ?
                """,
                (*_criterion_params(updated), criterion_id),
            )
            self._touch(conn, template_id)
        return updated

    def delete_criterion(self, template_id: str, criterion_id: str) -> None:
        """Remove a criterion from the live template; published snapshots keep their copy."""

        with self._conn(immediate=True) as conn:
            self._load_editable(conn, template_id)
            cur = conn.execute(
                "DELETE FROM criteria WHERE id = ? AND template_id = ?",
                (criterion_id, template_id),
            )
            if cur.rowcount == 0:
                raise KeyError(f"Criterion '{criterion_id}' not found")
            self._touch(conn, template_id)
        logger.info("Removed criterion %s from template %s", criterion_id, template_id)

    def _next_version_number(self, conn: sqlite3.Connection, template_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(version_number) AS latest FROM template_versions WHERE template_id = ?",
            (template_id,),
        ).fetchone()
        return (row["latest"] or 0) + 1

    def publish(
        self,
        template_id: str,
        change_summary: str = "",
        changed_by: Optional[str] = None,
        set_as_default: bool = False,
    ) -> TemplateVersion:
        """Freeze the live template into the next numbered version and activate it.

        Raises:
            KeyError: Unknown template.
            ValidationError: Archived template, no criteria, or weighted
                template whose weights do not total 100.
            ConflictError: Another publish claimed the same version number.
        """

        with self._conn(immediate=True) as conn:
            template = self._load_template(conn, template_id)
            if template.status == "archived":
                raise ValidationError("Cannot publish an archived template")
            groups = self._load_groups(conn, template_id)
            criteria = self._load_criteria(conn, template_id)
            if not criteria:
                raise ValidationError("Template must have at least one criterion to publish")
            if template.scoring_method == "weighted" and settings.ENFORCE_WEIGHT_TOTAL:
                total_weight = sum(criterion.weight for criterion in criteria)
                if abs(total_weight - 100) > settings.WEIGHT_TOTAL_TOLERANCE:
                    raise ValidationError(
                        f"Total weight must equal 100 for weighted scoring. Current total: {total_weight:g}"
                    )

            next_version = self._next_version_number(conn, template_id)
            now = utcnow()
            live = template.model_copy(
                update={
                    "status": "active",
                    "version": next_version,
                    "activated_at": now,
                    "updated_at": now,
                    "is_default": template.is_default or set_as_default,
                }
            )
            snapshot = TemplateSnapshot(template=live, groups=tuple(groups), criteria=tuple(criteria))
            version = TemplateVersion(
                id=uuid4().hex,
                template_id=template_id,
                version_number=next_version,
                snapshot=snapshot,
                change_summary=change_summary,
                changed_by=changed_by,
                created_at=now,
            )
            try:
                conn.execute(
                    """
                    INSERT INTO template_versions (id, template_id, version_number, snapshot_json,
                        change_summary, changed_by, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        version.id,
                        template_id,
                        next_version,
                        snapshot.model_dump_json(),
                        change_summary,
                        changed_by,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    f"Version {next_version} of template '{template_id}' was published concurrently"
                ) from exc
            if set_as_default:
                conn.execute(
                    "UPDATE templates SET is_default = 0 WHERE is_default = 1 AND id != ?",
                    (template_id,),
                )
            conn.execute(
                """
                UPDATE templates SET status = 'active', version = ?, activated_at = ?, updated_at = ?,
                    is_default = ?
                WHERE id = ?
                """,
                (next_version, now, now, int(live.is_default), template_id),
            )

        log_event(
            "template_published",
            None,
            template_id=template_id,
            version=next_version,
            count=len(criteria),
            actor=changed_by,
        )
        return version

    def archive_template(self, template_id: str) -> Template:
        now = utcnow()
        with self._conn(immediate=True) as conn:
            template = self._load_template(conn, template_id)
            if template.status == "archived":
                raise StateError("Template is already archived")
            conn.execute(
                """
                UPDATE templates SET status = 'archived', archived_at = ?, updated_at = ?, is_default = 0
                WHERE id = ?
                """,
                (now, now, template_id),
            )
            archived = self._load_template(conn, template_id)
        log_event("template_archived", None, template_id=template_id, version=archived.version)
        return archived

    def duplicate_template(self, template_id: str, name: Optional[str] = None) -> Template:
        """Copy a template's groups and criteria into a new draft with fresh ids."""

        with self._conn(immediate=True) as conn:
            source = self._load_template(conn, template_id)
            groups = self._load_groups(conn, template_id)
            criteria = self._load_criteria(conn, template_id)

            now = utcnow()
            copy = source.model_copy(
                update={
                    "id": uuid4().hex,
                    "name": name or f"{source.name} (Copy)",
                    "status": "draft",
                    "version": 0,
                    "is_default": False,
                    "created_at": now,
                    "updated_at": now,
                    "activated_at": None,
                    "archived_at": None,
                }
            )
            conn.execute(
                """
                INSERT INTO templates (id, name, description, scoring_method, formula, pass_threshold,
                    max_total_score, settings_json, status, version, is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'draft', 0, 0, ?, ?)
                """,
                (
                    copy.id,
                    copy.name,
                    copy.description,
                    copy.scoring_method,
                    copy.formula,
                    copy.pass_threshold,
                    copy.max_total_score,
                    copy.settings.model_dump_json(),
                    now,
                    now,
                ),
            )
            group_ids: Dict[str, str] = {}
            for group in groups:
                group_ids[group.id] = uuid4().hex
                conn.execute(
                    """
                    INSERT INTO criteria_groups (id, template_id, name, description, sort_order, weight, is_required)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        group_ids[group.id],
                        copy.id,
                        group.name,
                        group.description,
                        group.sort_order,
                        group.weight,
                        int(group.is_required),
                    ),
                )
            for criterion in criteria:
                cloned = criterion.model_copy(
                    update={
                        "template_id": copy.id,
                        "group_id": group_ids.get(criterion.group_id) if criterion.group_id else None,
                    }
                )
                conn.execute(
                    f"INSERT INTO criteria ({_CRITERION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (uuid4().hex, *_criterion_params(cloned)),
                )
        logger.info("Duplicated template %s into %s", template_id, copy.id)
        return copy

    def list_versions(self, template_id: str) -> List[TemplateVersion]:
        with self._conn() as conn:
            self._load_template(conn, template_id)
            rows = conn.execute(
                "SELECT * FROM template_versions WHERE template_id = ? ORDER BY version_number DESC",
                (template_id,),
            ).fetchall()
        return [self._row_to_version(row) for row in rows]

    def get_version(self, template_id: str, version_number: int) -> TemplateVersion:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM template_versions WHERE template_id = ? AND version_number = ?",
                (template_id, version_number),
            ).fetchone()
        if row is None:
            raise KeyError(f"Version {version_number} of template '{template_id}' not found")
        return self._row_to_version(row)

    def current_snapshot(self, template_id: str) -> TemplateSnapshot:
        """Snapshot of the latest published version of an active template.

        Raises:
            KeyError: Unknown template.
            StateError: Template is not active or was never published.
        """

        with self._conn() as conn:
            template = self._load_template(conn, template_id)
            if template.status != "active":
                raise StateError(f"Template '{template_id}' is {template.status}, not active")
            row = conn.execute(
                "SELECT snapshot_json FROM template_versions WHERE template_id = ? AND version_number = ?",
                (template_id, template.version),
            ).fetchone()
        if row is None:
            raise StateError(f"Template '{template_id}' has no published version")
        return TemplateSnapshot.model_validate_json(row["snapshot_json"])

    @staticmethod
    def _row_to_version(row: sqlite3.Row) -> TemplateVersion:
        return TemplateVersion(
            id=row["id"],
            template_id=row["template_id"],
            version_number=row["version_number"],
            snapshot=TemplateSnapshot.model_validate_json(row["snapshot_json"]),
            change_summary=row["change_summary"],
            changed_by=row["changed_by"],
            created_at=row["created_at"],
        )


__all__ = ["TemplateStore"]
