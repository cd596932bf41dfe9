"""SQLite schema migrations."""
from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Iterable

SCHEMA: Iterable[str] = [
    """
CREATE TABLE IF NOT EXISTS templates (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  scoring_method TEXT NOT NULL,
  formula TEXT,
  pass_threshold REAL NOT NULL,
  max_total_score REAL NOT NULL,
  settings_json TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'draft',
  version INTEGER NOT NULL DEFAULT 0,
  is_default INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  activated_at TEXT,
  archived_at TEXT
);
""",
    """
CREATE TABLE IF NOT EXISTS criteria_groups (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL,
  name TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  sort_order INTEGER NOT NULL DEFAULT 0,
  weight REAL NOT NULL DEFAULT 0,
  is_required INTEGER NOT NULL DEFAULT 1,
  FOREIGN KEY(template_id) REFERENCES templates(id) ON DELETE CASCADE
);
""",
    """
CREATE TABLE IF NOT EXISTS criteria (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL,
  group_id TEXT,
  name TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  criteria_type TEXT NOT NULL,
  config_json TEXT NOT NULL,
  weight REAL NOT NULL DEFAULT 0,
  max_score REAL NOT NULL DEFAULT 100,
  sort_order INTEGER NOT NULL DEFAULT 0,
  is_required INTEGER NOT NULL DEFAULT 1,
  is_auto_fail INTEGER NOT NULL DEFAULT 0,
  auto_fail_threshold REAL,
  scoring_guide TEXT NOT NULL DEFAULT '',
  keywords_json TEXT NOT NULL DEFAULT '[]',
  FOREIGN KEY(template_id) REFERENCES templates(id) ON DELETE CASCADE,
  FOREIGN KEY(group_id) REFERENCES criteria_groups(id) ON DELETE SET NULL
);
""",
    """
CREATE TABLE IF NOT EXISTS template_versions (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL,
  version_number INTEGER NOT NULL,
  snapshot_json TEXT NOT NULL,
  change_summary TEXT NOT NULL DEFAULT '',
  changed_by TEXT,
  created_at TEXT NOT NULL,
  UNIQUE(template_id, version_number),
  FOREIGN KEY(template_id) REFERENCES templates(id)
);
""",
    """
CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  template_id TEXT NOT NULL,
  template_version INTEGER NOT NULL,
  template_snapshot_json TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'pending',
  coach_id TEXT,
  agent_id TEXT,
  call_id TEXT,
  total_score REAL,
  total_possible REAL,
  percentage_score REAL,
  pass_status TEXT NOT NULL DEFAULT 'pending',
  has_auto_fail INTEGER NOT NULL DEFAULT 0,
  auto_fail_criteria_ids_json TEXT NOT NULL DEFAULT '[]',
  coach_notes TEXT,
  reviewed_by TEXT,
  reviewed_at TEXT,
  review_notes TEXT,
  reviewer_rating INTEGER,
  disputed_by TEXT,
  disputed_at TEXT,
  dispute_reason TEXT,
  disputed_criteria_ids_json TEXT NOT NULL DEFAULT '[]',
  dispute_resolved_at TEXT,
  dispute_resolution TEXT,
  cancellation_reason TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  started_at TEXT,
  completed_at TEXT,
  cancelled_at TEXT,
  FOREIGN KEY(template_id) REFERENCES templates(id)
);
""",
    """
CREATE TABLE IF NOT EXISTS scores (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  criteria_id TEXT NOT NULL,
  value_json TEXT,
  is_na INTEGER NOT NULL DEFAULT 0,
  raw_score REAL NOT NULL DEFAULT 0,
  normalized_score REAL,
  weighted_score REAL,
  is_auto_fail_triggered INTEGER NOT NULL DEFAULT 0,
  comment TEXT,
  criteria_snapshot_json TEXT NOT NULL,
  scored_by TEXT,
  scored_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(session_id, criteria_id),
  FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
""",
    """
CREATE TABLE IF NOT EXISTS session_audit_log (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  user_id TEXT,
  action TEXT NOT NULL,
  details_json TEXT NOT NULL,
  created_at TEXT NOT NULL,
  FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
""",
    "CREATE INDEX IF NOT EXISTS idx_criteria_template ON criteria(template_id, sort_order);",
    "CREATE INDEX IF NOT EXISTS idx_scores_session ON scores(session_id);",
    "CREATE INDEX IF NOT EXISTS idx_audit_session ON session_audit_log(session_id, id);",
]


def migrate(db_path: str | Path = "data/coaching.db") -> None:
    """Apply schema migrations to the SQLite database."""

    directory = os.path.dirname(str(db_path)) or "."
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    try:
        cur = conn.cursor()
        for stmt in SCHEMA:
            cur.execute(stmt)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    from config.settings import settings

    migrate(settings.DB_PATH)
