"""Pydantic models for the sync engine.

Defines the data contracts shared by the detector, ledger and orchestrator:

- ``Document`` / ``Collection``: document-store entities mirrored into Dolt.
- ``SyncStateRecord``: per-collection link to the last-synced Dolt commit.
- ``DeletionRecord``: tombstone for a deletion pending commit.
- ``ChangeSet`` / ``LocalChanges``: computed, never cached, change sets.
- ``CollectionChange`` / ``CollectionConflict``: collection-level events.
- ``SyncResult`` / ``MergeResult``: tagged outcomes of commit and merge.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..codec.hashing import document_hash


class SyncStatus(str, Enum):
    """Outcome tag of a commit, merge, checkout or pull."""

    COMPLETED = "completed"
    LOCAL_CHANGES_EXIST = "local_changes_exist"
    CONFLICT = "conflict"
    NO_CHANGES = "no_changes"
    FAILED = "failed"


class SyncStateStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class DeletionStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    DISCARDED = "discarded"


class CollectionChangeKind(str, Enum):
    CREATE = "create"
    RENAME = "rename"
    METADATA_UPDATE = "metadata_update"
    DELETE = "delete"


class CollectionChangeStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    MERGED = "merged"
    DISCARDED = "discarded"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Document(BaseModel):
    """A document in a collection.

    ``content_hash`` is derived from content and metadata when omitted.
    """

    doc_id: str
    collection: str
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    content_hash: str = ""

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _fill_content_hash(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("content_hash"):
            data = {
                **data,
                "content_hash": document_hash(
                    data.get("content"), data.get("metadata")
                ),
            }
        return data


class Collection(BaseModel):
    name: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class SyncStateRecord(BaseModel):
    """Per-collection sync bookkeeping.

    Attributes:
        collection: Collection name.
        last_synced_commit: Dolt commit the collection was last synced at.
        branch: Branch the commit belongs to.
        status: ``synced``, ``pending`` (needs re-validation) or ``error``.
        document_count: Documents in the collection after the sync.
        updated_at: ISO 8601 timestamp of the last update.
    """

    collection: str
    last_synced_commit: str | None = None
    branch: str
    status: SyncStateStatus = SyncStateStatus.SYNCED
    document_count: int = 0
    updated_at: str | None = None

    model_config = {"frozen": True}


class DeletionRecord(BaseModel):
    """Tombstone for a document removed from the document store.

    ``id`` is ``None`` for deletions found by diffing that were never
    recorded in the ledger.
    """

    id: int | None = None
    doc_id: str
    collection: str
    branch_context: str | None = None
    sync_status: DeletionStatus = DeletionStatus.PENDING
    original_content_hash: str | None = None
    original_metadata: dict[str, Any] = Field(default_factory=dict)
    base_commit: str | None = None
    created_at: str | None = None

    model_config = {"frozen": True}

    @property
    def is_tracked(self) -> bool:
        return self.id is not None


class SyncOperation(BaseModel):
    """Audit log entry for one engine operation."""

    id: int
    operation: str
    status: str
    branch: str | None = None
    commit_hash: str | None = None
    detail: str | None = None
    created_at: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Collection events and conflicts
# ---------------------------------------------------------------------------


class CollectionChange(BaseModel):
    """A first-class collection-level change event.

    Attributes:
        id: Row id in the bookkeeping database.
        kind: create, rename, metadata_update or delete.
        old_name: Collection name before the change.
        new_name: Name after a rename (``None`` otherwise).
        old_metadata: Metadata before the change.
        new_metadata: Metadata after the change.
        branch: Branch the change was made on.
        commit_hash: Dolt commit that recorded the change.
        status: pending, committed, merged or discarded.
    """

    id: int
    kind: CollectionChangeKind
    old_name: str
    new_name: str | None = None
    old_metadata: dict[str, Any] | None = None
    new_metadata: dict[str, Any] | None = None
    branch: str
    commit_hash: str | None = None
    status: CollectionChangeStatus = CollectionChangeStatus.PENDING
    created_at: str | None = None

    model_config = {"frozen": True}

    @property
    def final_name(self) -> str:
        return self.new_name or self.old_name


class CollectionConflict(BaseModel):
    collection: str
    ours: CollectionChange
    theirs: CollectionChange
    reason: str

    model_config = {"frozen": True}


class DocumentConflict(BaseModel):
    """A row Dolt could not merge automatically.

    ``*_values`` hold the conflicting row as seen by each side; ``None``
    means the row does not exist on that side.
    """

    collection: str
    doc_id: str
    conflict_type: str
    our_values: dict[str, Any] | None = None
    their_values: dict[str, Any] | None = None
    base_values: dict[str, Any] | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Change sets
# ---------------------------------------------------------------------------


class ChangeSet(BaseModel):
    """Pending changes of one collection."""

    collection: str
    new: list[Document] = Field(default_factory=list)
    modified: list[Document] = Field(default_factory=list)
    deleted: list[DeletionRecord] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        return len(self.new) + len(self.modified) + len(self.deleted)

    @property
    def has_changes(self) -> bool:
        return self.total > 0


class LocalChanges(BaseModel):
    """Pending changes across every tracked collection.

    ``collection_changes`` holds uncommitted collection-level events.
    ``stale_collections`` are live collections whose Dolt row is missing or
    carries other metadata once those events are applied.
    """

    changes: list[ChangeSet] = Field(default_factory=list)
    collection_changes: list[CollectionChange] = Field(default_factory=list)
    stale_collections: list[Collection] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def new_documents(self) -> list[Document]:
        return [doc for cs in self.changes for doc in cs.new]

    @property
    def modified_documents(self) -> list[Document]:
        return [doc for cs in self.changes for doc in cs.modified]

    @property
    def deleted_documents(self) -> list[DeletionRecord]:
        return [rec for cs in self.changes for rec in cs.deleted]

    @property
    def total(self) -> int:
        return (
            sum(cs.total for cs in self.changes)
            + len(self.collection_changes)
            + len(self.stale_collections)
        )

    @property
    def has_changes(self) -> bool:
        return self.total > 0

    def summary(self) -> dict[str, int]:
        """Counts keyed the way callers branch on them."""
        return {
            "new_documents": len(self.new_documents),
            "modified_documents": len(self.modified_documents),
            "deleted_documents": len(self.deleted_documents),
        }


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of a commit, checkout, pull or reset.

    Terminal: returned to the caller and never retried automatically.
    """

    status: SyncStatus
    message: str = ""
    commit_hash: str | None = None
    added: int = 0
    modified: int = 0
    deleted: int = 0
    collections_changed: int = 0
    local_changes: LocalChanges | None = None
    conflicts: list[DocumentConflict] = Field(default_factory=list)
    collection_conflicts: list[CollectionConflict] = Field(default_factory=list)
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.NO_CHANGES)


class MergeResult(SyncResult):
    source_branch: str
    target_branch: str | None = None
    strategy: str | None = None
    resolved_conflicts: int = 0


class MergePreview(BaseModel):
    """What merging *source_branch* into the current branch would do.

    Counts compare the merged snapshot with the target's HEAD.  Nothing
    is written: the trial merge is undone before the preview is returned.
    """

    source_branch: str
    target_branch: str
    up_to_date: bool = False
    added: int = 0
    modified: int = 0
    deleted: int = 0
    collections_changed: int = 0
    conflicts: list[DocumentConflict] = Field(default_factory=list)
    collection_conflicts: list[CollectionConflict] = Field(default_factory=list)
    local_changes: LocalChanges | None = None

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts or self.collection_conflicts)

    @property
    def can_auto_merge(self) -> bool:
        """True if ``process_merge`` would complete without a strategy."""
        return not self.has_conflicts and self.local_changes is None
