"""SQLite helpers for the persistence layer."""
from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from config.settings import settings


def utcnow() -> str:
    """Server-side timestamp used for every persisted row."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@contextmanager
def get_conn(path: str | Path | None = None, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a connection wrapped in one transaction.

    ``immediate`` takes the write lock up front (``BEGIN IMMEDIATE``) so that
    read-check-write sequences such as status transitions and version
    allocation cannot interleave with another writer.
    """

    db_path = str(path or settings.DB_PATH)
    directory = os.path.dirname(db_path) or "."
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()
