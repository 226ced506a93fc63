"""Sync state persistence layer.

Tracks, per repository and collection, which Dolt commit the document
store was last brought in line with.  Records are created on the first
sync of a collection, updated after every successful commit, merge,
checkout or pull, and removed only by ``clear()`` on repository reset.

Also provides ``OperationLog``, the audit trail of engine operations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .database import BookkeepingDatabase, utc_now
from .models import SyncOperation, SyncStateRecord, SyncStateStatus

if TYPE_CHECKING:
    from ..core.dolt_cli import DoltCli

logger = logging.getLogger(__name__)


def _row_to_record(row) -> SyncStateRecord:
    return SyncStateRecord(
        collection=row["collection"],
        last_synced_commit=row["last_synced_commit"],
        branch=row["branch"],
        status=SyncStateStatus(row["status"]),
        document_count=row["document_count"],
        updated_at=row["updated_at"],
    )


class SyncStateStore:
    """Load, save, and validate per-collection sync state.

    Args:
        db: Shared bookkeeping database.
    """

    def __init__(self, db: BookkeepingDatabase) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, repo: str, collection: str) -> SyncStateRecord | None:
        """Return the record for *collection*, or ``None`` if never synced."""
        row = self._db.fetch_one(
            "SELECT * FROM sync_state WHERE repo_path = ? AND collection = ?",
            (repo, collection),
        )
        return _row_to_record(row) if row else None

    def get_all(self, repo: str) -> list[SyncStateRecord]:
        rows = self._db.fetch_all(
            "SELECT * FROM sync_state WHERE repo_path = ? ORDER BY collection",
            (repo,),
        )
        return [_row_to_record(row) for row in rows]

    def tracked_collections(self, repo: str) -> set[str]:
        return {record.collection for record in self.get_all(repo)}

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def upsert(
        self,
        repo: str,
        collection: str,
        commit: str | None,
        branch: str,
        document_count: int = 0,
        status: SyncStateStatus = SyncStateStatus.SYNCED,
    ) -> SyncStateRecord:
        """Insert or update the record for *collection*."""
        now = utc_now()
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_state
                (repo_path, collection, last_synced_commit, branch, status,
                 document_count, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(repo_path, collection) DO UPDATE SET
                    last_synced_commit = excluded.last_synced_commit,
                    branch = excluded.branch,
                    status = excluded.status,
                    document_count = excluded.document_count,
                    updated_at = excluded.updated_at
                """,
                (repo, collection, commit, branch, status.value, document_count, now),
            )
        logger.debug(
            "Sync state %s -> %s@%s (%d docs)", collection, branch, commit, document_count
        )
        return SyncStateRecord(
            collection=collection,
            last_synced_commit=commit,
            branch=branch,
            status=status,
            document_count=document_count,
            updated_at=now,
        )

    def rename(self, repo: str, old_name: str, new_name: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM sync_state WHERE repo_path = ? AND collection = ?",
                (repo, new_name),
            )
            conn.execute(
                "UPDATE sync_state SET collection = ?, updated_at = ? "
                "WHERE repo_path = ? AND collection = ?",
                (new_name, utc_now(), repo, old_name),
            )

    def remove(self, repo: str, collection: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM sync_state WHERE repo_path = ? AND collection = ?",
                (repo, collection),
            )

    def mark_status(self, repo: str, collection: str, status: SyncStateStatus) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sync_state SET status = ?, updated_at = ? "
                "WHERE repo_path = ? AND collection = ?",
                (status.value, utc_now(), repo, collection),
            )

    def clear(self, repo: str) -> int:
        """Delete every record for *repo*.  Only used on repository reset."""
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_state WHERE repo_path = ?", (repo,))
        logger.info("Cleared %d sync state records for %s", cursor.rowcount, repo)
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, repo: str, dolt: DoltCli) -> list[str]:
        """Mark records whose commit is not in their branch's history.

        Returns:
            Names of collections that were marked ``pending``.
        """
        invalid: list[str] = []
        for record in self.get_all(repo):
            if record.last_synced_commit is None:
                continue
            if dolt.commit_exists_on_branch(record.last_synced_commit, record.branch):
                continue
            logger.warning(
                "Sync state for %s points at %s, not in history of %s; marking pending",
                record.collection,
                record.last_synced_commit,
                record.branch,
            )
            self.mark_status(repo, record.collection, SyncStateStatus.PENDING)
            invalid.append(record.collection)
        return invalid


class OperationLog:
    """Append-only audit log of commit/merge/checkout/pull/reset runs."""

    def __init__(self, db: BookkeepingDatabase) -> None:
        self._db = db

    def record(
        self,
        repo: str,
        operation: str,
        status: str,
        branch: str | None = None,
        commit_hash: str | None = None,
        detail: str | None = None,
    ) -> int:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO sync_operations "
                "(repo_path, operation, status, branch, commit_hash, detail, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (repo, operation, status, branch, commit_hash, detail, utc_now()),
            )
        return int(cursor.lastrowid)

    def recent(self, repo: str, limit: int = 20) -> list[SyncOperation]:
        rows = self._db.fetch_all(
            "SELECT * FROM sync_operations WHERE repo_path = ? "
            "ORDER BY id DESC LIMIT ?",
            (repo, limit),
        )
        return [
            SyncOperation(
                id=row["id"],
                operation=row["operation"],
                status=row["status"],
                branch=row["branch"],
                commit_hash=row["commit_hash"],
                detail=row["detail"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
