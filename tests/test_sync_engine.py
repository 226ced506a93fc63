"""Tests for the sync orchestrator (commit, merge, preview, checkout, pull, reset)."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from docbranch.codec.hashing import document_hash
from docbranch.codec.sql import build_upsert_collection
from docbranch.core.dolt_cli import DoltCli
from docbranch.errors import (
    COMMAND_FAILED,
    CollectionNotFoundError,
    DocBranchError,
    ValidationError,
)
from docbranch.state.manifest import Manifest, read_manifest, write_manifest
from docbranch.sync.engine import SyncOrchestrator
from docbranch.sync.locks import LockRegistry
from docbranch.sync.models import CollectionChangeKind, SyncStatus

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _seed(engine, store, docs=None, message="Seed notes"):
    """Put documents into the 'notes' collection and commit them."""
    for doc_id, content in (docs or {"doc1": "first", "doc2": "second"}).items():
        store.put("notes", doc_id, content)
    result = engine.process_commit(message)
    assert result.status is SyncStatus.COMPLETED
    return result


def _diverge(engine, store, main_text="main text", feature_text="feature text"):
    """Commit conflicting edits of notes/doc1 on main and feature."""
    _seed(engine, store, {"doc1": "base"})
    assert engine.process_checkout("feature", create=True).success
    store.put("notes", "doc1", feature_text)
    assert engine.process_commit("Edit on feature").status is SyncStatus.COMPLETED
    assert engine.process_checkout("main").success
    store.put("notes", "doc1", main_text)
    assert engine.process_commit("Edit on main").status is SyncStatus.COMPLETED


# ---------------------------------------------------------------------------
# Schema and status
# ---------------------------------------------------------------------------


class TestSchema:
    def test_ensure_schema_without_changes_returns_none(self, engine):
        """The fake already has the tables, so nothing is committed."""
        assert engine.ensure_schema() is None

    def test_status_reports_branch_and_pending_counts(self, engine, store):
        store.put("notes", "doc1", "hello")
        status = engine.get_status()
        assert status["branch"] == "main"
        assert status["has_local_changes"] is True
        assert status["local_changes"] == {
            "new_documents": 1,
            "modified_documents": 0,
            "deleted_documents": 0,
        }
        assert status["collections"] == []


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------


class TestCommit:
    def test_commit_writes_new_documents(self, engine, store, dolt):
        result = _seed(engine, store)

        assert result.added == 2
        assert result.modified == 0
        assert result.commit_hash == dolt.head_commit_hash()
        assert set(dolt.rows()) == {("notes", "doc1"), ("notes", "doc2")}
        # The collection row is created alongside its first documents
        assert result.collections_changed == 1

    def test_second_commit_without_changes_is_no_changes(self, engine, store, dolt):
        """Committing twice without edits is a no-op and leaves sync state alone."""
        first = _seed(engine, store)
        before = engine.sync_state.get(engine.repo, "notes")

        result = engine.process_commit("Nothing new")

        assert result.status is SyncStatus.NO_CHANGES
        assert dolt.head_commit_hash() == first.commit_hash
        assert engine.sync_state.get(engine.repo, "notes") == before

    def test_commit_updates_sync_state(self, engine, store):
        _seed(engine, store, {"doc1": "first"})
        store.put("notes", "doc2", "second")

        result = engine.process_commit("Add doc2")

        assert result.added == 1
        record = engine.sync_state.get(engine.repo, "notes")
        assert record.last_synced_commit == result.commit_hash
        assert record.branch == "main"
        assert record.document_count == 2

    def test_commit_modified_document(self, engine, store, dolt):
        _seed(engine, store)
        store.put("notes", "doc1", "first, edited")

        result = engine.process_commit("Edit doc1")

        assert result.modified == 1
        assert dolt.rows()[("notes", "doc1")]["content"] == "first, edited"

    def test_commit_tracked_deletion(self, engine, store, dolt):
        _seed(engine, store)
        records = engine.delete_documents("notes", ["doc1"])
        assert len(records) == 1

        result = engine.process_commit("Remove doc1")

        assert result.deleted == 1
        assert ("notes", "doc1") not in dolt.rows()
        assert engine.ledger.get_pending_deletions(engine.repo) == []

    def test_untracked_deletion_is_not_committed(self, engine, store, dolt):
        """A document removed behind the engine's back stays in Dolt."""
        _seed(engine, store)
        store.delete_documents("notes", ["doc1"])

        result = engine.process_commit("Try to remove doc1")

        assert result.status is SyncStatus.NO_CHANGES
        assert ("notes", "doc1") in dolt.rows()

    def test_commit_preserves_special_characters(self, engine, store, dolt):
        store.put("notes", "win", "C:\\temp\\new 'quoted'", path="C:\\data")

        engine.process_commit("Windows paths")

        row = dolt.rows()[("notes", "win")]
        assert row["content"] == "C:\\temp\\new 'quoted'"
        assert engine.process_commit("Again").status is SyncStatus.NO_CHANGES

    def test_commit_failure_rolls_back_and_returns_failed(self, engine, store, dolt):
        store.put("notes", "doc1", "hello")
        dolt.fail_commit = True

        result = engine.process_commit("Will fail")

        assert result.status is SyncStatus.FAILED
        assert result.error == COMMAND_FAILED
        assert not dolt.has_uncommitted_changes()
        assert engine.sync_state.get(engine.repo, "notes") is None

    def test_empty_message_raises(self, engine):
        with pytest.raises(ValidationError):
            engine.process_commit("   ")

    def test_operations_are_logged(self, engine, store):
        _seed(engine, store)
        engine.process_commit("No-op")
        ops = engine.operations.recent(engine.repo)
        assert [op.status for op in ops] == ["no_changes", "completed"]


# ---------------------------------------------------------------------------
# Deletion ledger across branches
# ---------------------------------------------------------------------------


class TestBranchScopedDeletions:
    def test_tombstone_from_feature_is_not_reported_on_main(self, engine, store, dolt):
        _seed(engine, store)
        assert engine.process_checkout("feature", create=True).success
        engine.delete_documents("notes", ["doc1"])

        # Branch switched outside the engine; the store still lacks doc1
        dolt.checkout("main")
        changes = engine.get_local_changes()

        assert changes.summary()["deleted_documents"] == 0
        assert engine.ledger.get_pending_deletions(engine.repo) == []

    def test_tombstone_records_branch_and_base_commit(self, engine, store, dolt):
        seed = _seed(engine, store)
        (record,) = engine.delete_documents("notes", ["doc2", "missing"])
        assert record.branch_context == "main"
        assert record.base_commit == seed.commit_hash
        assert record.original_content_hash == document_hash("second", {})

    def test_delete_from_unknown_collection_raises(self, engine):
        with pytest.raises(CollectionNotFoundError):
            engine.delete_documents("nowhere", ["doc1"])


# ---------------------------------------------------------------------------
# Collection events
# ---------------------------------------------------------------------------


class TestCollectionEvents:
    def test_rename_is_committed_as_rename(self, engine, store, dolt):
        _seed(engine, store)
        engine.rename_collection("notes", "journal")

        result = engine.process_commit("Rename notes")

        assert result.status is SyncStatus.COMPLETED
        # Rows moved, no document re-inserted
        assert result.added == 0
        assert set(dolt.rows()) == {("journal", "doc1"), ("journal", "doc2")}
        assert engine.sync_state.get(engine.repo, "journal") is not None
        assert engine.sync_state.get(engine.repo, "notes") is None

    def test_create_and_metadata_update(self, engine, store, dolt):
        change = engine.create_collection("papers", {"topic": "dolt"})
        assert change.kind is CollectionChangeKind.CREATE
        engine.update_collection_metadata("papers", {"topic": "chroma"})

        result = engine.process_commit("Add papers")

        assert result.status is SyncStatus.COMPLETED
        assert dolt.head.tables["collections"]["papers"] == {"topic": "chroma"}
        assert engine.events.pending(engine.repo) == []

    def test_create_existing_collection_raises(self, engine, store):
        store.create_collection("notes")
        with pytest.raises(ValidationError, match="already exists"):
            engine.create_collection("notes")

    def test_delete_collection_supersedes_tombstones(self, engine, store, dolt):
        _seed(engine, store)
        engine.delete_documents("notes", ["doc1"])
        engine.delete_collection("notes")
        assert engine.ledger.get_pending_deletions(engine.repo) == []

        result = engine.process_commit("Drop notes")

        assert result.status is SyncStatus.COMPLETED
        assert dolt.rows() == {}
        assert "notes" not in dolt.head.tables["collections"]


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMerge:
    def test_local_changes_block_merge(self, engine, store, dolt):
        _seed(engine, store)
        assert engine.process_checkout("feature", create=True).success
        assert engine.process_checkout("main").success
        store.put("notes", "doc1", "staged edit")

        with patch.object(dolt, "merge", wraps=dolt.merge) as merge_spy:
            result = engine.process_merge("feature")

        assert result.status is SyncStatus.LOCAL_CHANGES_EXIST
        assert result.local_changes.summary() == {
            "new_documents": 0,
            "modified_documents": 1,
            "deleted_documents": 0,
        }
        merge_spy.assert_not_called()

    def test_collection_metadata_edit_blocks_merge(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc3", "from feature")
        engine.process_commit("Add doc3")
        engine.process_checkout("main")
        store.collections["notes"] = {"owner": "alice"}

        assert engine.get_local_changes().has_changes
        with patch.object(dolt, "merge", wraps=dolt.merge) as merge_spy:
            result = engine.process_merge("feature")

        assert result.status is SyncStatus.LOCAL_CHANGES_EXIST
        assert [c.name for c in result.local_changes.stale_collections] == ["notes"]
        assert store.collections["notes"] == {"owner": "alice"}
        merge_spy.assert_not_called()

        assert engine.process_commit("Set owner").status is SyncStatus.COMPLETED
        assert dolt.head.tables["collections"]["notes"] == {"owner": "alice"}
        assert engine.process_merge("feature").status is SyncStatus.COMPLETED
        assert store.collections["notes"] == {"owner": "alice"}

    def test_fast_forward_merge_loads_documents(self, engine, store):
        _seed(engine, store, {"doc1": "base"})
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc3", "from feature")
        engine.process_commit("Add doc3")
        engine.process_checkout("main")
        assert store.content("notes", "doc3") is None

        result = engine.process_merge("feature")

        assert result.status is SyncStatus.COMPLETED
        assert result.added == 1
        assert store.content("notes", "doc3") == "from feature"

    def test_merge_up_to_date_is_no_changes(self, engine, store):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.process_checkout("main")
        assert engine.process_merge("feature").status is SyncStatus.NO_CHANGES

    def test_conflict_without_strategy_aborts(self, engine, store, dolt):
        _diverge(engine, store)
        head = dolt.head_commit_hash()

        result = engine.process_merge("feature")

        assert result.status is SyncStatus.CONFLICT
        assert [(c.doc_id, c.conflict_type) for c in result.conflicts] == [
            ("doc1", "modify_modify")
        ]
        assert dolt.head_commit_hash() == head
        assert dolt.conflicts == []
        assert store.content("notes", "doc1") == "main text"

    def test_conflict_resolved_with_ours(self, engine, store):
        _diverge(engine, store)

        result = engine.process_merge("feature", strategy="ours")

        assert result.status is SyncStatus.COMPLETED
        assert result.resolved_conflicts == 1
        assert store.content("notes", "doc1") == "main text"

    def test_conflict_resolved_with_theirs(self, engine, store):
        _diverge(engine, store)

        result = engine.process_merge("feature", strategy="theirs")

        assert result.status is SyncStatus.COMPLETED
        assert result.modified == 1
        assert store.content("notes", "doc1") == "feature text"

    def test_collection_conflict_reported_before_merge(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.update_collection_metadata("notes", {"owner": "a"})
        engine.process_commit("Feature metadata")
        engine.process_checkout("main")
        engine.update_collection_metadata("notes", {"owner": "b"})
        engine.process_commit("Main metadata")

        with patch.object(dolt, "merge", wraps=dolt.merge) as merge_spy:
            result = engine.process_merge("feature")

        assert result.status is SyncStatus.CONFLICT
        assert len(result.collection_conflicts) == 1
        assert result.collection_conflicts[0].collection == "notes"
        merge_spy.assert_not_called()

    def test_merge_marks_their_events_merged(self, engine, store):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.update_collection_metadata("notes", {"owner": "a"})
        engine.process_commit("Feature metadata")
        engine.process_checkout("main")

        result = engine.process_merge("feature")

        assert result.status is SyncStatus.COMPLETED
        assert store.get_collection("notes").metadata == {"owner": "a"}
        assert engine.events.unmerged(engine.repo, "feature") == []

    def test_merge_self_fails(self, engine, store):
        result = engine.process_merge("main")
        assert result.status is SyncStatus.FAILED
        assert "current branch" in result.message

    def test_merge_unknown_branch_fails(self, engine):
        result = engine.process_merge("nope")
        assert result.status is SyncStatus.FAILED
        assert "does not exist" in result.message

    def test_unknown_strategy_raises(self, engine):
        with pytest.raises(ValueError, match="Unknown conflict strategy"):
            engine.process_merge("feature", strategy="newest")


# ---------------------------------------------------------------------------
# Checkout, pull, reset
# ---------------------------------------------------------------------------


class TestPreviewMerge:
    def test_clean_preview_counts_changes_and_leaves_branch(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc1", "edited on feature")
        store.put("notes", "doc3", "new on feature")
        engine.process_commit("Feature edits")
        engine.process_checkout("main")
        head = dolt.head_commit_hash()

        preview = engine.preview_merge("feature")

        assert (preview.added, preview.modified, preview.deleted) == (1, 1, 0)
        assert preview.can_auto_merge
        assert not preview.up_to_date
        assert dolt.head_commit_hash() == head
        assert not dolt.has_uncommitted_changes()
        assert store.content("notes", "doc3") is None

    def test_preview_of_diverged_branches_is_undone(self, engine, store, dolt):
        _seed(engine, store, {"doc1": "base", "doc2": "base"})
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc2", "feature")
        engine.process_commit("Edit doc2")
        engine.process_checkout("main")
        store.put("notes", "doc1", "main")
        engine.process_commit("Edit doc1")
        commits = len(dolt.history["main"])

        preview = engine.preview_merge("feature")

        assert preview.modified == 1
        assert preview.conflicts == []
        assert len(dolt.history["main"]) == commits
        assert dolt.rows()[("notes", "doc2")]["content"] == "base"

    def test_conflicts_reported_and_merge_aborted(self, engine, store, dolt):
        _diverge(engine, store)
        head = dolt.head_commit_hash()

        preview = engine.preview_merge("feature")

        assert [(c.doc_id, c.conflict_type) for c in preview.conflicts] == [
            ("doc1", "modify_modify")
        ]
        assert not preview.can_auto_merge
        assert dolt.conflicts == []
        assert dolt.head_commit_hash() == head
        assert engine.process_merge("feature").status is SyncStatus.CONFLICT

    def test_collection_conflicts_reported(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.update_collection_metadata("notes", {"owner": "a"})
        engine.process_commit("Feature metadata")
        engine.process_checkout("main")
        engine.update_collection_metadata("notes", {"owner": "b"})
        engine.process_commit("Main metadata")
        head = dolt.head_commit_hash()

        preview = engine.preview_merge("feature")

        assert [c.collection for c in preview.collection_conflicts] == ["notes"]
        assert preview.has_conflicts
        assert dolt.head_commit_hash() == head

    def test_up_to_date(self, engine, store):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.process_checkout("main")

        preview = engine.preview_merge("feature")

        assert preview.up_to_date
        assert (preview.added, preview.modified, preview.deleted) == (0, 0, 0)

    def test_local_changes_prevent_auto_merge(self, engine, store):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.process_checkout("main")
        store.put("notes", "doc1", "staged edit")

        preview = engine.preview_merge("feature")

        assert preview.local_changes.summary()["modified_documents"] == 1
        assert not preview.can_auto_merge
        assert store.content("notes", "doc1") == "staged edit"

    def test_unknown_branch_raises(self, engine):
        with pytest.raises(ValidationError, match="does not exist"):
            engine.preview_merge("ghost")

    def test_uncommitted_dolt_writes_raise(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        engine.process_checkout("main")
        dolt.execute(build_upsert_collection("stray", {}, None))

        with pytest.raises(DocBranchError, match="uncommitted writes"):
            engine.preview_merge("feature")


class TestCheckout:
    def test_checkout_loads_branch_snapshot(self, engine, store):
        _seed(engine, store, {"doc1": "base"})
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc1", "changed")
        engine.process_commit("Change doc1")

        result = engine.process_checkout("main")

        assert result.status is SyncStatus.COMPLETED
        assert result.modified == 1
        assert store.content("notes", "doc1") == "base"

    def test_checkout_blocked_by_local_changes(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc9", "unsaved")

        result = engine.process_checkout("main")

        assert result.status is SyncStatus.LOCAL_CHANGES_EXIST
        assert dolt.current_branch() == "feature"

    def test_forced_checkout_discards_local_changes(self, engine, store, dolt):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        store.put("notes", "doc9", "unsaved")

        result = engine.process_checkout("main", force=True)

        assert result.status is SyncStatus.COMPLETED
        assert dolt.current_branch() == "main"
        assert store.content("notes", "doc9") is None

    def test_untracked_collection_survives_checkout(self, engine, store):
        _seed(engine, store)
        engine.process_checkout("feature", create=True)
        store.create_collection("scratch")

        engine.process_checkout("main", force=True)

        assert store.get_collection("scratch") is not None

    def test_checkout_missing_branch_fails(self, engine):
        result = engine.process_checkout("ghost")
        assert result.status is SyncStatus.FAILED
        assert result.error == COMMAND_FAILED


class TestPullAndReset:
    def test_pull_applies_remote_commits(self, engine, store, dolt):
        _seed(engine, store, {"doc1": "base"})
        remote = list(dolt.history["main"])
        tables = {
            "collections": dict(dolt.head.tables["collections"]),
            "documents": dict(dolt.head.tables["documents"]),
        }
        row = dict(tables["documents"][("notes", "doc1")])
        row["content"] = "from remote"
        row["content_hash"] = ""
        tables["documents"][("notes", "doc1")] = row
        remote.append(dolt._new_commit("Remote edit", tables))
        dolt.remote_history[("origin", "main")] = remote

        result = engine.process_pull("origin")

        assert result.status is SyncStatus.COMPLETED
        assert store.content("notes", "doc1") == "from remote"

    def test_pull_unknown_remote_fails(self, engine):
        result = engine.process_pull("origin")
        assert result.status is SyncStatus.FAILED

    def test_reset_requires_force_over_local_changes(self, engine, store):
        _seed(engine, store)
        store.put("notes", "doc1", "dirty")

        blocked = engine.process_reset()
        forced = engine.process_reset(force=True)

        assert blocked.status is SyncStatus.LOCAL_CHANGES_EXIST
        assert forced.status is SyncStatus.COMPLETED
        assert store.content("notes", "doc1") == "first"
        assert engine.sync_state.get(engine.repo, "notes").document_count == 2


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class TestManifestUpdates:
    def test_commit_records_head_in_manifest(self, store, dolt, db, tmp_path):
        path = tmp_path / ".docbranch" / "state.json"
        write_manifest(path, Manifest())
        engine = SyncOrchestrator(store, dolt, db, locks=LockRegistry(), manifest_path=path)

        result = _seed(engine, store)

        manifest = read_manifest(path)
        assert manifest.dolt.current_commit == result.commit_hash
        assert manifest.dolt.current_branch == "main"


@pytest.mark.live
class TestLiveRoundTrip:
    """Commit, branch, preview and merge against a real dolt binary (run with --run-live)."""

    def test_commit_branch_and_merge(self, tmp_path, store, db):
        dolt = DoltCli(tmp_path / "live")
        dolt.init()
        engine = SyncOrchestrator(store, dolt, db, locks=LockRegistry())
        engine.ensure_schema()

        store.put("notes", "doc1", "it's in C:\\temp", tag="x")
        first = engine.process_commit("Add doc1")
        assert first.status is SyncStatus.COMPLETED
        assert engine.process_commit("Again").status is SyncStatus.NO_CHANGES

        assert engine.process_checkout("feature", create=True).success
        store.put("notes", "doc2", "from feature")
        assert engine.process_commit("Add doc2").status is SyncStatus.COMPLETED
        assert engine.process_checkout("main").success
        assert store.content("notes", "doc2") is None

        preview = engine.preview_merge("feature")
        assert preview.added == 1
        assert preview.can_auto_merge
        assert dolt.head_commit_hash() == first.commit_hash

        result = engine.process_merge("feature")

        assert result.status is SyncStatus.COMPLETED
        assert store.content("notes", "doc2") == "from feature"
        assert store.content("notes", "doc1") == "it's in C:\\temp"
        assert not engine.get_local_changes().has_changes
