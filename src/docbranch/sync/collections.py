"""Collection-level change events.

Renames, metadata updates, creations and deletions of collections are
recorded as first-class events carrying the old and new name/metadata and
the branch they happened on.  Merge-time conflict detection compares the
unmerged events of both branches, so a rename on one branch and a
metadata edit on another are never silently lost.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from .database import BookkeepingDatabase, utc_now
from .models import CollectionChange, CollectionChangeKind, CollectionChangeStatus

logger = logging.getLogger(__name__)


def _dump(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def _load(value: str | None) -> dict[str, Any] | None:
    return json.loads(value) if value else None


def _row_to_change(row) -> CollectionChange:
    return CollectionChange(
        id=row["id"],
        kind=CollectionChangeKind(row["kind"]),
        old_name=row["old_name"],
        new_name=row["new_name"],
        old_metadata=_load(row["old_metadata"]),
        new_metadata=_load(row["new_metadata"]),
        branch=row["branch"],
        commit_hash=row["commit_hash"],
        status=CollectionChangeStatus(row["status"]),
        created_at=row["created_at"],
    )


class CollectionChangeTracker:
    """Persist and query collection change events.

    Args:
        db: Shared bookkeeping database.
    """

    def __init__(self, db: BookkeepingDatabase) -> None:
        self._db = db

    def record(
        self,
        repo: str,
        kind: CollectionChangeKind,
        old_name: str,
        branch: str,
        new_name: str | None = None,
        old_metadata: dict[str, Any] | None = None,
        new_metadata: dict[str, Any] | None = None,
    ) -> CollectionChange:
        now = utc_now()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO collection_changes
                (repo_path, kind, old_name, new_name, old_metadata, new_metadata,
                 branch, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                """,
                (
                    repo,
                    kind.value,
                    old_name,
                    new_name,
                    _dump(old_metadata),
                    _dump(new_metadata),
                    branch,
                    now,
                ),
            )
        change = CollectionChange(
            id=int(cursor.lastrowid),
            kind=kind,
            old_name=old_name,
            new_name=new_name,
            old_metadata=old_metadata,
            new_metadata=new_metadata,
            branch=branch,
            created_at=now,
        )
        logger.info(
            "Recorded collection %s %d: %s%s on %s",
            kind.value,
            change.id,
            old_name,
            f" -> {new_name}" if new_name else "",
            branch,
        )
        return change

    def pending(self, repo: str, branch: str | None = None) -> list[CollectionChange]:
        """Events not yet written to a Dolt commit, oldest first."""
        sql = "SELECT * FROM collection_changes WHERE repo_path = ? AND status = 'pending'"
        params: tuple = (repo,)
        if branch is not None:
            sql += " AND branch = ?"
            params += (branch,)
        return [_row_to_change(row) for row in self._db.fetch_all(sql + " ORDER BY id", params)]

    def unmerged(self, repo: str, branch: str) -> list[CollectionChange]:
        """Pending and committed events of *branch* not yet merged elsewhere."""
        rows = self._db.fetch_all(
            "SELECT * FROM collection_changes WHERE repo_path = ? AND branch = ? "
            "AND status IN ('pending', 'committed') ORDER BY id",
            (repo, branch),
        )
        return [_row_to_change(row) for row in rows]

    def mark_committed(self, change_ids: Iterable[int], commit_hash: str) -> int:
        return self._set_status(change_ids, CollectionChangeStatus.COMMITTED, commit_hash)

    def mark_merged(self, change_ids: Iterable[int]) -> int:
        return self._set_status(change_ids, CollectionChangeStatus.MERGED)

    def mark_discarded(self, change_ids: Iterable[int]) -> int:
        ids = list(change_ids)
        count = self._set_status(ids, CollectionChangeStatus.DISCARDED)
        if count:
            logger.info("Discarded collection changes %s", ids)
        return count

    def discard_pending(self, repo: str, branch: str) -> int:
        return self.mark_discarded(change.id for change in self.pending(repo, branch))

    def _set_status(
        self,
        change_ids: Iterable[int],
        status: CollectionChangeStatus,
        commit_hash: str | None = None,
    ) -> int:
        ids = list(change_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._db.transaction() as conn:
            if commit_hash is None:
                cursor = conn.execute(
                    f"UPDATE collection_changes SET status = ? WHERE id IN ({placeholders})",
                    (status.value, *ids),
                )
            else:
                cursor = conn.execute(
                    "UPDATE collection_changes SET status = ?, commit_hash = ? "
                    f"WHERE id IN ({placeholders})",
                    (status.value, commit_hash, *ids),
                )
        return cursor.rowcount


class CollectionPlan:
    """Net effect of pending collection events, oldest first.

    Tells the change detector which Dolt collection a live collection
    must be diffed against: a renamed collection is compared with the rows
    still stored under its old name, a deleted collection is not diffed,
    and a collection re-created after a delete starts from no rows.
    """

    def __init__(self, changes: Iterable[CollectionChange] = ()) -> None:
        self.renames: dict[str, str] = {}
        self.deleted: set[str] = set()
        self.created: set[str] = set()
        for change in changes:
            self._apply(change)

    def _apply(self, change: CollectionChange) -> None:
        match change.kind:
            case CollectionChangeKind.RENAME:
                origin = self.renames.pop(change.old_name, change.old_name)
                self.renames[change.final_name] = origin
                if change.old_name in self.created:
                    self.created.discard(change.old_name)
                    self.created.add(change.final_name)
            case CollectionChangeKind.DELETE:
                origin = self.renames.pop(change.old_name, change.old_name)
                self.deleted.add(origin)
                self.created.discard(change.old_name)
            case CollectionChangeKind.CREATE:
                self.created.add(change.old_name)
            case CollectionChangeKind.METADATA_UPDATE:
                pass

    def skip(self, name: str, live: bool) -> bool:
        """True if *name* must not be diffed at all."""
        if name in self.deleted and name not in self.created:
            return True
        # Old name of a rename that no longer exists in the store
        return not live and name in self.renames.values() and name not in self.renames

    def snapshot_name(self, name: str) -> str | None:
        """Dolt collection holding *name*'s last committed rows.

        ``None`` means the collection has no committed rows.
        """
        if name in self.created and name in self.deleted:
            return None
        return self.renames.get(name, name)


def project_collection_rows(
    changes: Iterable[CollectionChange],
    dolt_collections: dict[str, dict[str, Any]],
) -> dict[str, dict[str, Any]]:
    """``collections`` rows as they look once *changes* are written.

    Args:
        changes: Pending collection events, oldest first.
        dolt_collections: Rows at HEAD, name to metadata.
    """
    projected = dict(dolt_collections)
    for change in changes:
        match change.kind:
            case CollectionChangeKind.RENAME:
                projected[change.final_name] = projected.pop(
                    change.old_name, change.old_metadata or {}
                )
            case CollectionChangeKind.DELETE:
                projected.pop(change.old_name, None)
            case CollectionChangeKind.CREATE | CollectionChangeKind.METADATA_UPDATE:
                projected[change.old_name] = change.new_metadata or {}
    return projected
