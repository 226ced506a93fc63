"""Sync orchestrator: commit, merge, checkout, pull and reset protocols.

The ``SyncOrchestrator`` ties together the change detector, deletion
ledger, collection event tracker, sync state store and conflict resolver.
For a commit it:

1. Loads the branch's pending collection events.
2. Computes the local change set against Dolt HEAD.
3. Returns ``NO_CHANGES`` when there is nothing to write.
4. Applies codec-built statements (collection events first, then rows).
5. Runs ``dolt add`` and ``dolt commit``.
6. Marks consumed tombstones committed and stamps events with the hash.
7. Updates per-collection sync state and the manifest.

``preview_merge`` runs a trial merge and undoes it, reporting conflicts and
counts without touching the document store.  Merge, checkout, pull and
reset refuse to run over uncommitted local changes unless ``force`` is
set, then resynchronize the document store to the resulting Dolt
snapshot.  Every write operation holds the repository write lock and the
locks of the collections it touches.

Environment and command failures during an operation are returned as a
``FAILED`` result carrying the error code; invalid arguments raise
``ValidationError`` before anything runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from ..codec.hashing import normalize_metadata
from ..codec.sql import (
    DOCUMENTS_TABLE,
    SCHEMA_STATEMENTS,
    build_delete_collection,
    build_delete_document,
    build_insert_document,
    build_rename_collection,
    build_select_conflicted_tables,
    build_select_document_conflicts,
    build_update_document,
    build_upsert_collection,
)
from ..codec.values import extract_text
from ..core.document_store import DocumentStore
from ..core.dolt_cli import DoltCli
from ..errors import (
    CollectionNotFoundError,
    DocBranchError,
    DoltCommandError,
    ValidationError,
)
from ..state.manifest import update_dolt_commit
from ..validators import (
    ensure_valid,
    format_validation_error,
    validate_branch_name,
    validate_collection_name,
    validate_commit_message,
    validate_document_id,
    validate_remote_name,
)
from .collections import CollectionChangeTracker
from .database import BookkeepingDatabase
from .detector import ChangeDetector
from .ledger import DeletionLedger
from .locks import LockRegistry, default_registry
from .models import (
    Collection,
    CollectionChange,
    CollectionChangeKind,
    CollectionChangeStatus,
    DeletionRecord,
    DocumentConflict,
    LocalChanges,
    MergePreview,
    MergeResult,
    SyncResult,
    SyncStatus,
)
from .resolver import SKIP, create_resolver, detect_collection_conflicts
from .state import OperationLog, SyncStateStore

logger = logging.getLogger(__name__)

# Collection metadata by name, document hash by (collection, doc_id)
Snapshot = tuple[dict[str, dict[str, Any]], dict[tuple[str, str], str]]


class SyncOrchestrator:
    """Drive commit and merge protocols for one repository.

    Args:
        store: Live document store.
        dolt: CLI wrapper bound to the effective repository path.
        db: Shared bookkeeping database.
        locks: Lock registry; the process-wide registry by default.
        manifest_path: Manifest kept current after commits and merges.
        author: Optional ``Name <email>`` passed to ``dolt commit``.
    """

    def __init__(
        self,
        store: DocumentStore,
        dolt: DoltCli,
        db: BookkeepingDatabase,
        locks: LockRegistry | None = None,
        manifest_path: Path | None = None,
        author: str | None = None,
    ) -> None:
        self.store = store
        self.dolt = dolt
        self.repo = str(Path(dolt.repo_path).resolve())
        self.locks = locks or default_registry
        self.manifest_path = manifest_path
        self.author = author

        self.ledger = DeletionLedger(db)
        self.sync_state = SyncStateStore(db)
        self.events = CollectionChangeTracker(db)
        self.operations = OperationLog(db)
        self.detector = ChangeDetector(store, dolt, self.ledger, self.repo)

    # ------------------------------------------------------------------
    # Setup and read-only queries
    # ------------------------------------------------------------------

    def ensure_schema(self) -> str | None:
        """Create the ``collections`` and ``documents`` tables if missing.

        Returns:
            Hash of the schema commit, or ``None`` if nothing was created.
        """
        with self.locks.write(self.repo, "schema"):
            self.dolt.execute(SCHEMA_STATEMENTS)
            if not self.dolt.has_uncommitted_changes():
                return None
            self.dolt.add()
            result = self.dolt.commit("Initialize docbranch schema", author=self.author)
            if not result.success:
                raise DoltCommandError(["commit"], result.exit_code, result.stderr)
            commit_hash = self.dolt.head_commit_hash()
            logger.info("Created docbranch schema at %s", commit_hash)
            return commit_hash

    def get_local_changes(self) -> LocalChanges:
        """Compute uncommitted changes of the current branch (no lock)."""
        branch = self.dolt.current_branch()
        return self.detector.find_all_changes(
            branch, self.events.pending(self.repo, branch)
        )

    def get_status(self) -> dict[str, Any]:
        """Branch, HEAD and pending-change summary (no lock)."""
        branch = self.dolt.current_branch()
        local = self.detector.find_all_changes(
            branch, self.events.pending(self.repo, branch)
        )
        return {
            "branch": branch,
            "head_commit": self.dolt.head_commit_hash(),
            "has_local_changes": local.has_changes,
            "local_changes": local.summary(),
            "pending_collection_changes": len(local.collection_changes),
            "collections": [
                record.model_dump(mode="json")
                for record in self.sync_state.get_all(self.repo)
            ],
        }

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def process_commit(self, message: str) -> SyncResult:
        """Write pending local changes to Dolt and commit them.

        Args:
            message: Commit message.

        Returns:
            ``COMPLETED`` with counts and the new hash, ``NO_CHANGES`` when
            nothing differs from HEAD, or ``FAILED``.

        Raises:
            ValidationError: If *message* is empty or too long.
        """
        ensure_valid(validate_commit_message(message))
        with self.locks.write(self.repo, "commit"):
            with self.locks.collections(self.repo, self._known_collections()):
                return self._commit(message)

    def _commit(self, message: str) -> SyncResult:
        written = False
        branch = None
        try:
            branch = self.dolt.current_branch()
            events = self.events.pending(self.repo, branch)
            changes = self.detector.find_all_changes(branch, events)
            live = {c.name: c for c in self.store.list_collections()}
            head = self.dolt.head_commit_hash()
            stale_rows = changes.stale_collections

            if not changes.has_changes:
                logger.info("Nothing to commit on %s", branch)
                self.operations.record(self.repo, "commit", SyncStatus.NO_CHANGES.value, branch)
                return SyncResult(
                    status=SyncStatus.NO_CHANGES,
                    message=f"No changes to commit on {branch}",
                )

            statements = _collection_event_statements(events, head)
            statements += [
                build_upsert_collection(col.name, col.metadata, head) for col in stale_rows
            ]
            for change_set in changes.changes:
                name = change_set.collection
                for doc in change_set.new:
                    statements.append(
                        build_insert_document(
                            doc.doc_id, name, doc.content, doc.content_hash, doc.metadata, head
                        )
                    )
                for doc in change_set.modified:
                    statements.append(
                        build_update_document(
                            doc.doc_id, name, doc.content, doc.content_hash, doc.metadata, head
                        )
                    )
                for record in change_set.deleted:
                    statements.append(build_delete_document(name, record.doc_id))

            written = True
            self.dolt.execute(statements)
            self.dolt.add()
            result = self.dolt.commit(message, author=self.author)
            if not result.success:
                raise DoltCommandError(["commit"], result.exit_code, result.stderr)
            commit_hash = self.dolt.head_commit_hash()
        except DocBranchError as exc:
            if written:
                self._rollback_working_set()
            return self._failed(SyncResult, "commit", exc, branch)

        self.ledger.mark_committed(record.id for record in changes.deleted_documents)
        self.events.mark_committed((event.id for event in events), commit_hash)
        for event in events:
            if event.kind is CollectionChangeKind.RENAME and event.new_name:
                self.sync_state.rename(self.repo, event.old_name, event.new_name)
        for name in sorted(live):
            self.sync_state.upsert(
                self.repo,
                name,
                commit_hash,
                branch,
                document_count=len(self.store.get_documents(name)),
            )
        self._update_manifest(commit_hash, branch)

        added = len(changes.new_documents)
        modified = len(changes.modified_documents)
        deleted = len(changes.deleted_documents)
        collections_changed = len(events) + len(stale_rows)
        logger.info(
            "Committed %s on %s: %d added, %d modified, %d deleted, %d collection changes",
            commit_hash,
            branch,
            added,
            modified,
            deleted,
            collections_changed,
        )
        self.operations.record(
            self.repo,
            "commit",
            SyncStatus.COMPLETED.value,
            branch,
            commit_hash,
            f"{added} added, {modified} modified, {deleted} deleted",
        )
        return SyncResult(
            status=SyncStatus.COMPLETED,
            message=f"Committed {changes.total} changes",
            commit_hash=commit_hash,
            added=added,
            modified=modified,
            deleted=deleted,
            collections_changed=collections_changed,
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def process_merge(
        self,
        source_branch: str,
        force: bool = False,
        strategy: str | None = None,
    ) -> MergeResult:
        """Merge *source_branch* into the current branch.

        Args:
            source_branch: Branch to merge in.
            force: Merge even when uncommitted local changes exist; they
                are overwritten by the merged snapshot.
            strategy: ``None`` to report conflicts and abort, or
                ``"ours"``/``"theirs"`` to resolve them with that side.

        Raises:
            ValidationError: If the branch name is invalid.
            ValueError: If *strategy* is not recognised.
        """
        ensure_valid(validate_branch_name(source_branch))
        resolver = create_resolver(strategy)
        with self.locks.write(self.repo, "merge"):
            with self.locks.collections(self.repo, self._known_collections()):
                target = None
                try:
                    target = self.dolt.current_branch()
                    return self._merge(source_branch, target, force, strategy, resolver)
                except DocBranchError as exc:
                    return self._failed(
                        MergeResult,
                        "merge",
                        exc,
                        target,
                        source_branch=source_branch,
                        target_branch=target,
                        strategy=strategy,
                    )

    def _merge(self, source, target, force, strategy, resolver) -> MergeResult:
        self._check_merge_source(source, target)
        outcome = {"source_branch": source, "target_branch": target, "strategy": strategy}

        local = self._check_local_changes(target, force, "merge")
        if isinstance(local, LocalChanges):
            return MergeResult(
                status=SyncStatus.LOCAL_CHANGES_EXIST,
                message=f"{local.total} uncommitted local changes on {target}",
                local_changes=local,
                **outcome,
            )

        our_events = self._unmerged_events(target, source, include_pending=True)
        their_events = self._unmerged_events(source, target, include_pending=False)
        collection_conflicts = detect_collection_conflicts(our_events, their_events)
        if collection_conflicts:
            decisions = [resolver.resolve_collection(c) for c in collection_conflicts]
            if SKIP in decisions:
                self.operations.record(
                    self.repo, "merge", SyncStatus.CONFLICT.value, target,
                    detail=f"{len(collection_conflicts)} collection conflicts with {source}",
                )
                return MergeResult(
                    status=SyncStatus.CONFLICT,
                    message=(
                        f"{len(collection_conflicts)} collection-level conflicts "
                        f"between {target} and {source}"
                    ),
                    collection_conflicts=collection_conflicts,
                    **outcome,
                )
            logger.info(
                "Resolving %d collection conflicts with %s", len(collection_conflicts), strategy
            )

        head_before = self.dolt.head_commit_hash()
        result = self.dolt.merge(source)
        conflicted = self._conflicted_tables()
        resolved = 0
        if conflicted:
            conflicts = self._read_document_conflicts() if DOCUMENTS_TABLE in conflicted else []
            decisions = [resolver.resolve(c) for c in conflicts]
            if strategy is None or SKIP in decisions:
                self.dolt.merge_abort()
                logger.info(
                    "Merge of %s into %s aborted: %d conflicted rows", source, target, len(conflicts)
                )
                self.operations.record(
                    self.repo, "merge", SyncStatus.CONFLICT.value, target,
                    detail=f"{len(conflicts)} row conflicts with {source}",
                )
                return MergeResult(
                    status=SyncStatus.CONFLICT,
                    message=f"Merge of {source} into {target} has {len(conflicts)} conflicts",
                    conflicts=conflicts,
                    collection_conflicts=collection_conflicts,
                    **outcome,
                )
            resolved = sum(conflicted.values())
            self.dolt.conflicts_resolve(strategy, tables=sorted(conflicted))
            self.dolt.add(sorted(conflicted))
            commit = self.dolt.commit(
                f"Merge branch '{source}' into {target}", author=self.author
            )
            if not commit.success:
                raise DoltCommandError(["commit"], commit.exit_code, commit.stderr)
        elif not result.success:
            raise DoltCommandError(["merge", source], result.exit_code, result.stderr)

        commit_hash = self.dolt.head_commit_hash()
        if commit_hash == head_before and not resolved:
            self.operations.record(self.repo, "merge", SyncStatus.NO_CHANGES.value, target)
            return MergeResult(
                status=SyncStatus.NO_CHANGES,
                message=f"{target} is already up to date with {source}",
                commit_hash=commit_hash,
                **outcome,
            )

        if local is not None:
            self._discard_local_bookkeeping(target)
        added, modified, deleted, collections_changed = self._resync_store(commit_hash, target)
        self.events.mark_merged(event.id for event in their_events)
        self._update_manifest(commit_hash, target)
        self.operations.record(
            self.repo, "merge", SyncStatus.COMPLETED.value, target, commit_hash,
            f"merged {source}; {resolved} conflicts resolved with {strategy}",
        )
        logger.info("Merged %s into %s at %s", source, target, commit_hash)
        return MergeResult(
            status=SyncStatus.COMPLETED,
            message=f"Merged {source} into {target}",
            commit_hash=commit_hash,
            added=added,
            modified=modified,
            deleted=deleted,
            collections_changed=collections_changed,
            collection_conflicts=collection_conflicts,
            resolved_conflicts=resolved,
            **outcome,
        )

    def preview_merge(self, source_branch: str) -> MergePreview:
        """Report what merging *source_branch* would change, without merging.

        A trial merge runs against Dolt, its conflicts and the merged
        snapshot are read, and the merge is then aborted or the branch
        reset to its previous HEAD.  The document store is not touched.

        Raises:
            ValidationError: If the branch is invalid, missing or current.
            DocBranchError: If the Dolt working set has uncommitted
                writes, or a Dolt command fails.
        """
        ensure_valid(validate_branch_name(source_branch))
        with self.locks.write(self.repo, "preview_merge"):
            with self.locks.collections(self.repo, self._known_collections()):
                target = self.dolt.current_branch()
                self._check_merge_source(source_branch, target)
                if self.dolt.has_uncommitted_changes():
                    raise DocBranchError(
                        f"Cannot preview a merge into {target}: Dolt has uncommitted writes",
                        actions=["Commit", "Reset"],
                    )

                local = self.detector.find_all_changes(
                    target, self.events.pending(self.repo, target)
                )
                collection_conflicts = detect_collection_conflicts(
                    self._unmerged_events(target, source_branch, include_pending=True),
                    self._unmerged_events(source_branch, target, include_pending=False),
                )

                head_before = self.dolt.head_commit_hash()
                before = self._snapshot()
                conflicted: dict[str, int] = {}
                try:
                    result = self.dolt.merge(source_branch)
                    conflicted = self._conflicted_tables()
                    if not conflicted and not result.success:
                        raise DoltCommandError(
                            ["merge", source_branch], result.exit_code, result.stderr
                        )
                    conflicts = (
                        self._read_document_conflicts()
                        if DOCUMENTS_TABLE in conflicted
                        else []
                    )
                    up_to_date = not conflicted and self.dolt.head_commit_hash() == head_before
                    after = self._snapshot()
                finally:
                    self._undo_trial_merge(head_before, bool(conflicted))

        added, modified, deleted, collections_changed = _snapshot_delta(before, after)
        logger.info(
            "Merge preview %s -> %s: %d conflicts, %d collection conflicts",
            source_branch,
            target,
            len(conflicts),
            len(collection_conflicts),
        )
        return MergePreview(
            source_branch=source_branch,
            target_branch=target,
            up_to_date=up_to_date,
            added=added,
            modified=modified,
            deleted=deleted,
            collections_changed=collections_changed,
            conflicts=conflicts,
            collection_conflicts=collection_conflicts,
            local_changes=local if local.has_changes else None,
        )

    # ------------------------------------------------------------------
    # Checkout, pull, reset
    # ------------------------------------------------------------------

    def process_checkout(
        self, branch: str, create: bool = False, force: bool = False
    ) -> SyncResult:
        """Switch branches and load the branch's snapshot into the store."""
        ensure_valid(validate_branch_name(branch))
        with self.locks.write(self.repo, "checkout"):
            with self.locks.collections(self.repo, self._known_collections()):
                current = None
                try:
                    current = self.dolt.current_branch()
                    local = self._check_local_changes(current, force, "checkout")
                    if isinstance(local, LocalChanges):
                        return SyncResult(
                            status=SyncStatus.LOCAL_CHANGES_EXIST,
                            message=f"{local.total} uncommitted local changes on {current}",
                            local_changes=local,
                        )
                    if local is not None:
                        self.events.discard_pending(self.repo, current)
                    self.dolt.checkout(branch, create=create)
                    head = self.dolt.head_commit_hash()
                    counts = self._resync_store(head, branch)
                except DocBranchError as exc:
                    return self._failed(SyncResult, "checkout", exc, current)
                return self._completed("checkout", head, branch, counts, f"Switched to {branch}")

    def process_pull(
        self, remote: str, branch: str | None = None, force: bool = False
    ) -> SyncResult:
        """Pull *remote* into the current branch and resync the store."""
        ensure_valid(validate_remote_name(remote))
        if branch is not None:
            ensure_valid(validate_branch_name(branch))
        with self.locks.write(self.repo, "pull"):
            with self.locks.collections(self.repo, self._known_collections()):
                current = None
                try:
                    current = self.dolt.current_branch()
                    local = self._check_local_changes(current, force, "pull")
                    if isinstance(local, LocalChanges):
                        return SyncResult(
                            status=SyncStatus.LOCAL_CHANGES_EXIST,
                            message=f"{local.total} uncommitted local changes on {current}",
                            local_changes=local,
                        )
                    result = self.dolt.pull(remote, branch)
                    if not result.success:
                        conflicted = self._conflicted_tables()
                        if not conflicted:
                            raise DoltCommandError(["pull", remote], result.exit_code, result.stderr)
                        conflicts = (
                            self._read_document_conflicts()
                            if DOCUMENTS_TABLE in conflicted
                            else []
                        )
                        self.dolt.merge_abort()
                        self.operations.record(
                            self.repo, "pull", SyncStatus.CONFLICT.value, current,
                            detail=f"{len(conflicts)} row conflicts with {remote}",
                        )
                        return SyncResult(
                            status=SyncStatus.CONFLICT,
                            message=f"Pull from {remote} has {len(conflicts)} conflicts",
                            conflicts=conflicts,
                        )
                    if local is not None:
                        self._discard_local_bookkeeping(current)
                    head = self.dolt.head_commit_hash()
                    counts = self._resync_store(head, current)
                except DocBranchError as exc:
                    return self._failed(SyncResult, "pull", exc, current)
                return self._completed("pull", head, current, counts, f"Pulled {remote}")

    def process_reset(self, target: str = "HEAD", force: bool = False) -> SyncResult:
        """Hard-reset Dolt to *target* and rebuild bookkeeping from it.

        All sync state of the repository is cleared and recreated, and
        every pending tombstone and collection event of the branch is
        discarded.
        """
        with self.locks.write(self.repo, "reset"):
            with self.locks.collections(self.repo, self._known_collections()):
                branch = None
                try:
                    branch = self.dolt.current_branch()
                    local = self._check_local_changes(branch, force, "reset")
                    if isinstance(local, LocalChanges):
                        return SyncResult(
                            status=SyncStatus.LOCAL_CHANGES_EXIST,
                            message=f"{local.total} uncommitted local changes on {branch}",
                            local_changes=local,
                        )
                    self.dolt.reset(target, hard=True)
                    self._discard_local_bookkeeping(branch)
                    self.sync_state.clear(self.repo)
                    head = self.dolt.head_commit_hash()
                    counts = self._resync_store(head, branch)
                    self.ledger.cleanup_committed(self.repo)
                except DocBranchError as exc:
                    return self._failed(SyncResult, "reset", exc, branch)
                return self._completed("reset", head, branch, counts, f"Reset {branch} to {target}")

    # ------------------------------------------------------------------
    # Tracked document-store mutations
    # ------------------------------------------------------------------

    def create_collection(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> CollectionChange:
        ensure_valid(validate_collection_name(name))
        with self.locks.collections(self.repo, [name]):
            if self.store.get_collection(name) is not None:
                raise ValidationError(
                    format_validation_error("Collection name", f"'{name}' already exists")
                )
            branch = self.dolt.current_branch()
            self.store.create_collection(name, metadata or {})
            return self.events.record(
                self.repo, CollectionChangeKind.CREATE, name, branch, new_metadata=metadata or {}
            )

    def delete_documents(self, collection: str, ids: Sequence[str]) -> list[DeletionRecord]:
        """Delete documents from the store, writing a tombstone for each.

        Ids not present in the collection are logged and skipped.

        Raises:
            CollectionNotFoundError: If *collection* does not exist.
        """
        ensure_valid(validate_collection_name(collection))
        for doc_id in ids:
            ensure_valid(validate_document_id(doc_id))
        with self.locks.collections(self.repo, [collection]):
            if self.store.get_collection(collection) is None:
                raise CollectionNotFoundError(collection)
            branch = self.dolt.current_branch()
            base_commit = self.dolt.head_commit_hash()
            documents = self.store.get_documents(collection, ids=list(ids))
            found = {doc.doc_id for doc in documents}
            for doc_id in ids:
                if doc_id not in found:
                    logger.warning("Cannot delete %s/%s: not in the document store", collection, doc_id)
            records = [
                self.ledger.record_deletion(self.repo, doc, branch, base_commit)
                for doc in documents
            ]
            self.store.delete_documents(collection, [doc.doc_id for doc in documents])
            return records

    def rename_collection(self, old_name: str, new_name: str) -> CollectionChange:
        ensure_valid(validate_collection_name(old_name))
        ensure_valid(validate_collection_name(new_name))
        with self.locks.collections(self.repo, [old_name, new_name]):
            collection = self._require_collection(old_name)
            if self.store.get_collection(new_name) is not None:
                raise ValidationError(
                    format_validation_error("New collection name", f"'{new_name}' already exists")
                )
            branch = self.dolt.current_branch()
            self.store.modify_collection(old_name, new_name=new_name)
            self.ledger.rename_collection(self.repo, old_name, new_name)
            return self.events.record(
                self.repo,
                CollectionChangeKind.RENAME,
                old_name,
                branch,
                new_name=new_name,
                old_metadata=collection.metadata,
                new_metadata=collection.metadata,
            )

    def update_collection_metadata(
        self, name: str, metadata: dict[str, Any]
    ) -> CollectionChange:
        ensure_valid(validate_collection_name(name))
        if not isinstance(metadata, dict):
            raise ValidationError(format_validation_error("Metadata", "must be an object"))
        with self.locks.collections(self.repo, [name]):
            collection = self._require_collection(name)
            branch = self.dolt.current_branch()
            self.store.modify_collection(name, metadata=metadata)
            return self.events.record(
                self.repo,
                CollectionChangeKind.METADATA_UPDATE,
                name,
                branch,
                old_metadata=collection.metadata,
                new_metadata=metadata,
            )

    def delete_collection(self, name: str) -> CollectionChange:
        ensure_valid(validate_collection_name(name))
        with self.locks.collections(self.repo, [name]):
            collection = self._require_collection(name)
            branch = self.dolt.current_branch()
            self.store.delete_collection(name)
            # Row-level tombstones are superseded by the collection delete
            for record in self.ledger.get_pending_deletions(self.repo, name):
                self.ledger.discard_deletion(record.id, f"collection {name} deleted")
            return self.events.record(
                self.repo,
                CollectionChangeKind.DELETE,
                name,
                branch,
                old_metadata=collection.metadata,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_collection(self, name: str) -> Collection:
        collection = self.store.get_collection(name)
        if collection is None:
            raise CollectionNotFoundError(name)
        return collection

    def _known_collections(self) -> list[str]:
        """Live collection names, read without touching Dolt."""
        return [collection.name for collection in self.store.list_collections()]

    def _check_merge_source(self, source: str, target: str) -> None:
        if source == target:
            raise ValidationError(
                format_validation_error("Source branch", f"cannot be the current branch ({target})")
            )
        if source not in self.dolt.branches():
            raise ValidationError(
                format_validation_error("Source branch", f"'{source}' does not exist")
            )

    def _snapshot(self) -> Snapshot:
        """Collection metadata and document hashes of the Dolt working set."""
        collections = self.detector.dolt_collections()
        documents = {
            (name, doc_id): doc.content_hash
            for name in collections
            for doc_id, doc in self.detector.dolt_documents(name).items()
        }
        return collections, documents

    def _undo_trial_merge(self, head_before: str | None, conflicted: bool) -> None:
        if conflicted:
            self.dolt.merge_abort()
        elif head_before and self.dolt.head_commit_hash() != head_before:
            self.dolt.reset(head_before, hard=True)
            logger.debug("Reset trial merge back to %s", head_before)

    def _check_local_changes(
        self, branch: str, force: bool, operation: str
    ) -> LocalChanges | bool | None:
        """Return the blocking change set, ``True`` if forced over, or None.

        A ``LocalChanges`` return means the operation must stop.
        """
        local = self.detector.find_all_changes(
            branch, self.events.pending(self.repo, branch)
        )
        if not local.has_changes:
            return None
        if not force:
            logger.info(
                "%s blocked on %s: %d uncommitted local changes",
                operation.capitalize(),
                branch,
                local.total,
            )
            self.operations.record(
                self.repo,
                operation,
                SyncStatus.LOCAL_CHANGES_EXIST.value,
                branch,
                detail=str(local.summary()),
            )
            return local
        logger.warning(
            "Forcing %s on %s over %d uncommitted local changes",
            operation,
            branch,
            local.total,
        )
        return True

    def _discard_local_bookkeeping(self, branch: str) -> None:
        self.events.discard_pending(self.repo, branch)
        self.ledger.discard_pending_deletions_for_branch(self.repo, branch)

    def _unmerged_events(
        self, branch: str, other: str, include_pending: bool
    ) -> list[CollectionChange]:
        """Events of *branch* whose commit is not yet in *other*'s history."""
        events = []
        for event in self.events.unmerged(self.repo, branch):
            if event.status is CollectionChangeStatus.PENDING:
                if include_pending:
                    events.append(event)
                continue
            if event.commit_hash and self.dolt.commit_exists_on_branch(event.commit_hash, other):
                continue
            events.append(event)
        return events

    def _conflicted_tables(self) -> dict[str, int]:
        rows = self.dolt.query(build_select_conflicted_tables())
        tables = {}
        for row in rows:
            count = int(row.get("num_conflicts") or 0)
            if count:
                tables[extract_text(row.get("table"))] = count
        return tables

    def _read_document_conflicts(self) -> list[DocumentConflict]:
        conflicts = []
        for row in self.dolt.query(build_select_document_conflicts()):
            sides = {
                side: _conflict_side(row, side) for side in ("base", "our", "their")
            }
            present = next(
                (values for values in (sides["our"], sides["their"], sides["base"]) if values),
                None,
            )
            if present is None:
                continue
            if sides["our"] is None or sides["their"] is None:
                conflict_type = "delete_modify"
            elif sides["base"] is None:
                conflict_type = "add_add"
            else:
                conflict_type = "modify_modify"
            conflicts.append(
                DocumentConflict(
                    collection=present["collection_name"],
                    doc_id=present["doc_id"],
                    conflict_type=conflict_type,
                    our_values=sides["our"],
                    their_values=sides["their"],
                    base_values=sides["base"],
                )
            )
        return conflicts

    def _resync_store(self, commit_hash: str | None, branch: str) -> tuple[int, int, int, int]:
        """Make the document store match the Dolt snapshot at HEAD.

        Collections absent from the snapshot are only deleted from the
        store when the engine has synced them before.

        Returns:
            ``(added, modified, deleted, collections_changed)`` counts.
        """
        snapshot = self.detector.dolt_collections()
        tracked = self.sync_state.tracked_collections(self.repo)
        live = {collection.name: collection for collection in self.store.list_collections()}
        added = modified = deleted = collections_changed = 0

        for name, metadata in sorted(snapshot.items()):
            if name not in live:
                self.store.create_collection(name, metadata)
                collections_changed += 1
            elif normalize_metadata(live[name].metadata) != normalize_metadata(metadata):
                self.store.modify_collection(name, metadata=metadata)
                collections_changed += 1

            rows = self.detector.dolt_documents(name)
            current = {doc.doc_id: doc for doc in self.store.get_documents(name)}
            to_add = [doc for doc_id, doc in rows.items() if doc_id not in current]
            to_update = [
                doc
                for doc_id, doc in rows.items()
                if doc_id in current and current[doc_id].content_hash != doc.content_hash
            ]
            to_delete = sorted(set(current) - set(rows))
            self.store.add_documents(name, to_add)
            self.store.update_documents(name, to_update)
            self.store.delete_documents(name, to_delete)
            added += len(to_add)
            modified += len(to_update)
            deleted += len(to_delete)
            self.sync_state.upsert(
                self.repo, name, commit_hash, branch, document_count=len(rows)
            )

        for name in sorted(set(live) - set(snapshot)):
            if name in tracked:
                logger.info("Removing collection %s: not present at %s", name, commit_hash)
                self.store.delete_collection(name)
                collections_changed += 1
            else:
                logger.warning(
                    "Collection %s is not in Dolt and was never synced; leaving it in place",
                    name,
                )

        logger.debug(
            "Resynced store to %s: %d added, %d modified, %d deleted",
            commit_hash,
            added,
            modified,
            deleted,
        )
        return added, modified, deleted, collections_changed

    def _completed(
        self,
        operation: str,
        commit_hash: str | None,
        branch: str,
        counts: tuple[int, int, int, int],
        message: str,
    ) -> SyncResult:
        added, modified, deleted, collections_changed = counts
        self._update_manifest(commit_hash, branch)
        self.operations.record(
            self.repo, operation, SyncStatus.COMPLETED.value, branch, commit_hash,
            f"{added} added, {modified} modified, {deleted} deleted",
        )
        logger.info("%s completed on %s at %s", operation.capitalize(), branch, commit_hash)
        return SyncResult(
            status=SyncStatus.COMPLETED,
            message=message,
            commit_hash=commit_hash,
            added=added,
            modified=modified,
            deleted=deleted,
            collections_changed=collections_changed,
        )

    def _failed(self, result_type, operation: str, exc: DocBranchError, branch, **extra):
        logger.error("%s failed: %s", operation.capitalize(), exc.message)
        self.operations.record(
            self.repo, operation, SyncStatus.FAILED.value, branch, detail=exc.message
        )
        return result_type(
            status=SyncStatus.FAILED,
            message=exc.message,
            error=exc.code,
            **extra,
        )

    def _rollback_working_set(self) -> None:
        try:
            self.dolt.reset(hard=True)
        except DocBranchError as exc:
            logger.error("Could not roll back the Dolt working set: %s", exc.message)
        else:
            logger.warning("Rolled back uncommitted Dolt writes")

    def _update_manifest(self, commit_hash: str | None, branch: str) -> None:
        if self.manifest_path is not None and commit_hash:
            update_dolt_commit(self.manifest_path, commit_hash, branch)


# ----------------------------------------------------------------------
# Statement planning
# ----------------------------------------------------------------------


def _collection_event_statements(
    events: Sequence[CollectionChange], head: str | None
) -> list[str]:
    """Translate pending collection events into statements, oldest first."""
    statements: list[str] = []
    for event in events:
        match event.kind:
            case CollectionChangeKind.RENAME:
                statements += build_rename_collection(event.old_name, event.final_name)
            case CollectionChangeKind.DELETE:
                statements += build_delete_collection(event.old_name)
            case CollectionChangeKind.CREATE | CollectionChangeKind.METADATA_UPDATE:
                statements.append(
                    build_upsert_collection(event.old_name, event.new_metadata or {}, head)
                )
    return statements


def _snapshot_delta(before: Snapshot, after: Snapshot) -> tuple[int, int, int, int]:
    """``(added, modified, deleted, collections_changed)`` between snapshots."""
    before_cols, before_docs = before
    after_cols, after_docs = after
    added = len(after_docs.keys() - before_docs.keys())
    deleted = len(before_docs.keys() - after_docs.keys())
    modified = sum(
        1 for key in after_docs.keys() & before_docs.keys() if after_docs[key] != before_docs[key]
    )
    collections_changed = sum(
        1
        for name in before_cols.keys() | after_cols.keys()
        if name not in before_cols
        or name not in after_cols
        or normalize_metadata(before_cols[name]) != normalize_metadata(after_cols[name])
    )
    return added, modified, deleted, collections_changed


def _conflict_side(row: dict[str, Any], side: str) -> dict[str, Any] | None:
    doc_id = row.get(f"{side}_doc_id")
    if doc_id is None:
        return None
    return {
        "doc_id": extract_text(doc_id),
        "collection_name": extract_text(row.get(f"{side}_collection_name")),
        "content_hash": extract_text(row.get(f"{side}_content_hash")),
    }
