"""
Bookkeeping database using SQLite.

Holds everything the engine knows that neither backing store records:

- sync_state: per-collection link to the last-synced Dolt commit
- deletion_ledger: tombstones for deletions pending commit
- collection_changes: collection-level change events
- sync_operations: audit log of engine operations

Every row is scoped by ``repo_path`` so one database can serve several
repositories.  The file survives process restarts and is independent of
both the document store and the Dolt repository.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    repo_path TEXT NOT NULL,
    collection TEXT NOT NULL,
    last_synced_commit TEXT,
    branch TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'synced',
    document_count INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (repo_path, collection)
);

CREATE TABLE IF NOT EXISTS deletion_ledger (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_path TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    collection TEXT NOT NULL,
    branch_context TEXT,
    sync_status TEXT NOT NULL DEFAULT 'pending',
    original_content_hash TEXT,
    original_metadata TEXT NOT NULL DEFAULT '{}',
    base_commit TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_deletion_pending
ON deletion_ledger(repo_path, sync_status, collection);

CREATE TABLE IF NOT EXISTS collection_changes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_path TEXT NOT NULL,
    kind TEXT NOT NULL,
    old_name TEXT NOT NULL,
    new_name TEXT,
    old_metadata TEXT,
    new_metadata TEXT,
    branch TEXT NOT NULL,
    commit_hash TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_collection_changes_branch
ON collection_changes(repo_path, branch, status);

CREATE TABLE IF NOT EXISTS sync_operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_path TEXT NOT NULL,
    operation TEXT NOT NULL,
    status TEXT NOT NULL,
    branch TEXT,
    commit_hash TEXT,
    detail TEXT,
    created_at TEXT NOT NULL
);
"""


def utc_now() -> str:
    """Current timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


class BookkeepingDatabase:
    """
    Shared SQLite connection for the sync bookkeeping tables.

    Writes go through ``transaction()``, which serializes access across
    threads and commits or rolls back as a unit.
    """

    def __init__(self, db_path: Path | str):
        """
        Args:
            db_path: SQLite file path, or ``":memory:"``.
        """
        self.db_path = db_path
        self._lock = threading.RLock()
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            str(db_path), check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.debug("Opened bookkeeping database %s", db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Bookkeeping database is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; rolls back if the block raises."""
        with self._lock:
            conn = self.connection
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, params).fetchall()

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.connection.execute(sql, params).fetchone()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> BookkeepingDatabase:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
