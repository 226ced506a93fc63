"""Deletion ledger: persistent tombstones for deletions pending commit.

A tombstone is written when a document is removed from the document
store through the engine.  It is consumed (``committed``) by a successful
commit or explicitly ``discarded`` when found stale.  Discards always go
through this module so the on-disk ledger matches what later queries see.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable

from .database import BookkeepingDatabase, utc_now
from .models import DeletionRecord, DeletionStatus, Document

logger = logging.getLogger(__name__)


def _row_to_record(row) -> DeletionRecord:
    return DeletionRecord(
        id=row["id"],
        doc_id=row["doc_id"],
        collection=row["collection"],
        branch_context=row["branch_context"],
        sync_status=DeletionStatus(row["sync_status"]),
        original_content_hash=row["original_content_hash"],
        original_metadata=json.loads(row["original_metadata"] or "{}"),
        base_commit=row["base_commit"],
        created_at=row["created_at"],
    )


class DeletionLedger:
    """Tombstone storage scoped per repository and branch.

    Every query is scoped by the repository path passed as *repo*.

    Args:
        db: Shared bookkeeping database.
    """

    def __init__(self, db: BookkeepingDatabase) -> None:
        self._db = db

    def record_deletion(
        self,
        repo: str,
        document: Document,
        branch_context: str | None,
        base_commit: str | None = None,
    ) -> DeletionRecord:
        """Write a pending tombstone for *document*.

        An existing pending tombstone for the same document and branch is
        returned instead of writing a duplicate.
        """
        existing = self._find_pending(
            repo, document.collection, document.doc_id, branch_context
        )
        if existing is not None:
            return existing

        now = utc_now()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO deletion_ledger
                (repo_path, doc_id, collection, branch_context, sync_status,
                 original_content_hash, original_metadata, base_commit,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?)
                """,
                (
                    repo,
                    document.doc_id,
                    document.collection,
                    branch_context,
                    document.content_hash,
                    json.dumps(document.metadata, ensure_ascii=False, default=str),
                    base_commit,
                    now,
                    now,
                ),
            )
        record = DeletionRecord(
            id=int(cursor.lastrowid),
            doc_id=document.doc_id,
            collection=document.collection,
            branch_context=branch_context,
            original_content_hash=document.content_hash,
            original_metadata=dict(document.metadata),
            base_commit=base_commit,
            created_at=now,
        )
        logger.info(
            "Recorded deletion %d for %s/%s on %s",
            record.id,
            record.collection,
            record.doc_id,
            branch_context or "<unscoped>",
        )
        return record

    def get_pending_deletions(
        self, repo: str, collection: str | None = None
    ) -> list[DeletionRecord]:
        sql = "SELECT * FROM deletion_ledger WHERE repo_path = ? AND sync_status = 'pending'"
        params: tuple = (repo,)
        if collection is not None:
            sql += " AND collection = ?"
            params += (collection,)
        rows = self._db.fetch_all(sql + " ORDER BY id", params)
        return [_row_to_record(row) for row in rows]

    def has_pending_deletion(self, repo: str, collection: str, doc_id: str) -> bool:
        row = self._db.fetch_one(
            "SELECT 1 FROM deletion_ledger WHERE repo_path = ? AND collection = ? "
            "AND doc_id = ? AND sync_status = 'pending' LIMIT 1",
            (repo, collection, doc_id),
        )
        return row is not None

    def discard_deletion(self, record_id: int, reason: str = "") -> bool:
        """Mark one tombstone ``discarded``.

        Returns:
            True if a pending tombstone was discarded.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE deletion_ledger SET sync_status = 'discarded', updated_at = ? "
                "WHERE id = ? AND sync_status = 'pending'",
                (utc_now(), record_id),
            )
        if cursor.rowcount:
            logger.info("Discarded deletion %d%s", record_id, f": {reason}" if reason else "")
        return cursor.rowcount > 0

    def discard_pending_deletions_for_branch(self, repo: str, branch: str) -> int:
        """Discard every pending tombstone recorded on *branch*."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE deletion_ledger SET sync_status = 'discarded', updated_at = ? "
                "WHERE repo_path = ? AND branch_context = ? AND sync_status = 'pending'",
                (utc_now(), repo, branch),
            )
        if cursor.rowcount:
            logger.info("Discarded %d pending deletions on branch %s", cursor.rowcount, branch)
        return cursor.rowcount

    def mark_committed(self, record_ids: Iterable[int | None]) -> int:
        ids = [rid for rid in record_ids if rid is not None]
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE deletion_ledger SET sync_status = 'committed', updated_at = ? "
                f"WHERE id IN ({placeholders})",
                (utc_now(), *ids),
            )
        logger.debug("Marked deletions %s committed", ids)
        return cursor.rowcount

    def cleanup_committed(self, repo: str) -> int:
        """Delete committed and discarded tombstones."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM deletion_ledger WHERE repo_path = ? "
                "AND sync_status IN ('committed', 'discarded')",
                (repo,),
            )
        if cursor.rowcount:
            logger.debug("Removed %d settled tombstones", cursor.rowcount)
        return cursor.rowcount

    def rename_collection(self, repo: str, old_name: str, new_name: str) -> int:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE deletion_ledger SET collection = ?, updated_at = ? "
                "WHERE repo_path = ? AND collection = ? AND sync_status = 'pending'",
                (new_name, utc_now(), repo, old_name),
            )
        return cursor.rowcount

    def _find_pending(
        self, repo: str, collection: str, doc_id: str, branch_context: str | None
    ) -> DeletionRecord | None:
        row = self._db.fetch_one(
            "SELECT * FROM deletion_ledger WHERE repo_path = ? AND collection = ? "
            "AND doc_id = ? AND branch_context IS ? AND sync_status = 'pending'",
            (repo, collection, doc_id, branch_context),
        )
        return _row_to_record(row) if row else None
