"""Change detection between the live document store and Dolt HEAD.

For each collection the live documents are diffed against the Dolt rows
of the same collection at HEAD:

* live only -> ``new``
* both, different content hash -> ``modified``
* Dolt only -> deletion candidate, reported only with a valid tombstone

Both sides are hashed with ``document_hash`` so a document that was
written to Dolt and read back is never reported as modified.  Change sets
are computed fresh on every call and never cached across branch switches.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Sequence

from ..codec.hashing import document_hash, normalize_metadata
from ..codec.sql import build_select_collections, build_select_documents
from ..codec.values import extract_metadata, extract_text
from .collections import CollectionPlan, project_collection_rows
from .models import ChangeSet, CollectionChange, DeletionRecord, Document, LocalChanges

if TYPE_CHECKING:
    from ..core.document_store import DocumentStore
    from ..core.dolt_cli import DoltCli
    from .ledger import DeletionLedger

logger = logging.getLogger(__name__)

# Sentinel: diff against the collection's own name
MISSING: Any = object()


def row_to_document(row: dict[str, Any]) -> Document:
    """Build a ``Document`` from a ``documents`` row.

    The hash is recomputed from content and decoded metadata; the stored
    ``content_hash`` column is only compared for diagnostics.
    """
    doc_id = extract_text(row.get("doc_id"))
    collection = extract_text(row.get("collection_name"))
    content = extract_text(row.get("content"))
    metadata = extract_metadata(row.get("metadata"), entity=f"{collection}/{doc_id}")
    computed = document_hash(content, metadata)
    stored = extract_text(row.get("content_hash"))
    if stored and stored != computed:
        logger.debug(
            "Stored hash for %s/%s differs from recomputed hash", collection, doc_id
        )
    return Document(
        doc_id=doc_id,
        collection=collection,
        content=content,
        metadata=metadata,
        content_hash=computed,
    )


class ChangeDetector:
    """Compute pending local changes for one repository.

    Args:
        store: Live document store.
        dolt: CLI wrapper bound to the effective repository path.
        ledger: Deletion ledger shared with the orchestrator.
        repo: Repository key used for ledger scoping.
    """

    def __init__(
        self,
        store: DocumentStore,
        dolt: DoltCli,
        ledger: DeletionLedger,
        repo: str,
    ) -> None:
        self.store = store
        self.dolt = dolt
        self.ledger = ledger
        self.repo = repo

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    def dolt_documents(self, collection: str) -> dict[str, Document]:
        rows = self.dolt.query(build_select_documents(collection))
        docs = (row_to_document(row) for row in rows)
        return {doc.doc_id: doc for doc in docs}

    def dolt_collections(self) -> dict[str, dict[str, Any]]:
        rows = self.dolt.query(build_select_collections())
        collections = {}
        for row in rows:
            name = extract_text(row.get("collection_name"))
            collections[name] = extract_metadata(row.get("metadata"), entity=name)
        return collections

    def tracked_collections(self) -> list[str]:
        """Union of document-store collections and Dolt ``collections`` rows."""
        live = {c.name for c in self.store.list_collections()}
        return sorted(live | set(self.dolt_collections()))

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def find_changes(
        self,
        collection: str,
        branch: str | None = None,
        snapshot_collection: str | None = MISSING,
    ) -> ChangeSet:
        """Diff one collection against Dolt HEAD.

        Args:
            collection: Collection name in the document store.
            branch: Current branch; read from Dolt when omitted.
            snapshot_collection: Dolt collection holding the committed rows
                (differs after an uncommitted rename); ``None`` diffs
                against no rows.
        """
        current_branch = branch or self.dolt.current_branch()
        if snapshot_collection is MISSING:
            snapshot_collection = collection
        snapshot = (
            self.dolt_documents(snapshot_collection)
            if snapshot_collection is not None
            else {}
        )
        live_collection = self.store.get_collection(collection)
        live = (
            {d.doc_id: d for d in self.store.get_documents(collection)}
            if live_collection is not None
            else {}
        )

        new: list[Document] = []
        modified: list[Document] = []
        for doc_id, doc in sorted(live.items()):
            stored = snapshot.get(doc_id)
            if stored is None:
                new.append(doc)
            elif stored.content_hash != doc.content_hash:
                modified.append(doc)

        candidates = {doc_id: doc for doc_id, doc in snapshot.items() if doc_id not in live}
        deleted = self._confirm_deletions(
            collection, candidates, snapshot, live, current_branch
        )

        changes = ChangeSet(collection=collection, new=new, modified=modified, deleted=deleted)
        if changes.has_changes:
            logger.debug(
                "%s: %d new, %d modified, %d deleted",
                collection,
                len(new),
                len(modified),
                len(deleted),
            )
        return changes

    def find_all_changes(
        self,
        branch: str | None = None,
        pending_events: Sequence[CollectionChange] = (),
    ) -> LocalChanges:
        """Diff every tracked collection.

        Args:
            branch: Current branch; read from Dolt when omitted.
            pending_events: Uncommitted collection events of the branch,
                oldest first.  Renamed collections are diffed against
                their old name and deleted ones are skipped.
        """
        current_branch = branch or self.dolt.current_branch()
        plan = CollectionPlan(pending_events)
        live = {c.name: c for c in self.store.list_collections()}
        live_names = set(live)
        dolt_rows = self.dolt_collections()
        change_sets = []
        for name in sorted(live_names | set(dolt_rows)):
            if plan.skip(name, live=name in live_names):
                continue
            change_sets.append(
                self.find_changes(name, current_branch, plan.snapshot_name(name))
            )
        projected = project_collection_rows(pending_events, dolt_rows)
        stale = [
            collection
            for name, collection in sorted(live.items())
            if name not in projected
            or normalize_metadata(projected[name]) != normalize_metadata(collection.metadata)
        ]
        if stale:
            logger.debug("Collection rows out of date: %s", ", ".join(c.name for c in stale))
        return LocalChanges(
            changes=[cs for cs in change_sets if cs.has_changes],
            collection_changes=list(pending_events),
            stale_collections=stale,
        )

    def _confirm_deletions(
        self,
        collection: str,
        candidates: dict[str, Document],
        snapshot: dict[str, Document],
        live: dict[str, Document],
        current_branch: str,
    ) -> list[DeletionRecord]:
        """Cross-reference deletion candidates with the ledger.

        Pending tombstones are discarded (through the ledger) when they
        belong to another branch, when their document is not in the Dolt
        snapshot, or when the document is back in the live store.  Candidates
        without a valid tombstone are logged and not reported.
        """
        confirmed: dict[str, DeletionRecord] = {}
        for record in self.ledger.get_pending_deletions(self.repo, collection):
            if record.branch_context is not None and record.branch_context != current_branch:
                self.ledger.discard_deletion(
                    record.id,
                    f"{collection}/{record.doc_id} belongs to branch "
                    f"{record.branch_context}, current is {current_branch}",
                )
                continue
            if record.doc_id not in snapshot:
                self.ledger.discard_deletion(
                    record.id,
                    f"{collection}/{record.doc_id} no longer exists in Dolt",
                )
                continue
            if record.doc_id in live:
                self.ledger.discard_deletion(
                    record.id,
                    f"{collection}/{record.doc_id} is present in the document store again",
                )
                continue
            confirmed.setdefault(record.doc_id, record)

        for doc_id in sorted(set(candidates) - set(confirmed)):
            logger.warning(
                "Untracked deletion of %s/%s ignored: no pending tombstone on %s",
                collection,
                doc_id,
                current_branch,
            )

        return [confirmed[doc_id] for doc_id in sorted(confirmed)]
