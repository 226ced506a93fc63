"""Shared pytest fixtures for docbranch tests."""

from __future__ import annotations

import copy
import json
import re
from pathlib import Path
from typing import Any, Sequence

import pytest
from dotenv import load_dotenv

from docbranch.codec.sql import unescape_embedded
from docbranch.core.dolt_cli import DoltCli, DoltCommandResult, RemoteInfo
from docbranch.errors import DoltCommandError
from docbranch.sync.database import BookkeepingDatabase
from docbranch.sync.engine import SyncOrchestrator
from docbranch.sync.locks import LockRegistry
from docbranch.sync.models import Collection, Document

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a real dolt binary and chromadb",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a real dolt binary and chromadb"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        # --run-live given: do not skip live tests
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory document store
# ---------------------------------------------------------------------------


class InMemoryDocumentStore:
    """``DocumentStore`` keeping collections in plain dicts."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Any]] = {}
        self.documents: dict[str, dict[str, Document]] = {}

    def list_collections(self) -> list[Collection]:
        return [
            Collection(name=name, metadata=dict(meta))
            for name, meta in sorted(self.collections.items())
        ]

    def get_collection(self, name: str) -> Collection | None:
        if name not in self.collections:
            return None
        return Collection(name=name, metadata=dict(self.collections[name]))

    def get_documents(
        self,
        collection: str,
        ids: Sequence[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> list[Document]:
        docs = self.documents[collection]
        selected = [docs[i] for i in ids if i in docs] if ids is not None else list(docs.values())
        if where:
            selected = [
                d for d in selected
                if all(d.metadata.get(k) == v for k, v in where.items())
            ]
        return sorted(selected, key=lambda d: d.doc_id)

    def add_documents(self, collection: str, documents: Sequence[Document]) -> None:
        for doc in documents:
            if doc.doc_id in self.documents[collection]:
                raise ValueError(f"duplicate id {doc.doc_id}")
            self.documents[collection][doc.doc_id] = _in(collection, doc)

    def update_documents(self, collection: str, documents: Sequence[Document]) -> None:
        for doc in documents:
            self.documents[collection][doc.doc_id] = _in(collection, doc)

    def delete_documents(self, collection: str, ids: Sequence[str]) -> None:
        for doc_id in ids:
            self.documents[collection].pop(doc_id, None)

    def create_collection(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> Collection:
        if name in self.collections:
            raise ValueError(f"collection {name} exists")
        self.collections[name] = dict(metadata or {})
        self.documents[name] = {}
        return Collection(name=name, metadata=dict(metadata or {}))

    def modify_collection(
        self,
        name: str,
        new_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if metadata is not None:
            self.collections[name] = dict(metadata)
        if new_name and new_name != name:
            self.collections[new_name] = self.collections.pop(name)
            self.documents[new_name] = {
                doc_id: _in(new_name, doc)
                for doc_id, doc in self.documents.pop(name).items()
            }

    def delete_collection(self, name: str) -> None:
        self.collections.pop(name)
        self.documents.pop(name)

    # Test helpers bypassing the engine, like a user editing the store directly

    def put(self, collection: str, doc_id: str, content: str, **metadata: Any) -> Document:
        if collection not in self.collections:
            self.create_collection(collection)
        doc = Document(doc_id=doc_id, collection=collection, content=content, metadata=metadata)
        self.documents[collection][doc_id] = doc
        return doc

    def content(self, collection: str, doc_id: str) -> str | None:
        doc = self.documents.get(collection, {}).get(doc_id)
        return doc.content if doc else None


def _in(collection: str, doc: Document) -> Document:
    return Document(
        doc_id=doc.doc_id,
        collection=collection,
        content=doc.content,
        metadata=dict(doc.metadata),
    )


# ---------------------------------------------------------------------------
# Fake Dolt
# ---------------------------------------------------------------------------

# Literals as emitted by docbranch.codec.sql
_LITERAL = re.compile(r"'(?:[^'\\]|\\.|'')*'|NULL|TRUE|FALSE|-?\d+(?:\.\d+)?")


def _literals(statement: str) -> list[Any]:
    values: list[Any] = []
    for token in _LITERAL.findall(statement):
        if token.startswith("'"):
            values.append(unescape_embedded(token[1:-1]))
        elif token == "NULL":
            values.append(None)
        elif token in ("TRUE", "FALSE"):
            values.append(token == "TRUE")
        else:
            values.append(float(token) if "." in token else int(token))
    return values


def _empty_tables() -> dict[str, dict]:
    return {"collections": {}, "documents": {}}


class FakeCommit:
    def __init__(self, commit_hash: str, message: str, tables: dict[str, dict]) -> None:
        self.hash = commit_hash
        self.message = message
        self.tables = tables


class FakeDoltCli(DoltCli):
    """In-memory Dolt with branches, a working set and three-way merges.

    Every branch is a list of commits; a commit holds a full copy of the
    ``collections`` and ``documents`` tables.  ``documents`` rows are keyed
    by ``(collection_name, doc_id)``.  Only the statements built by
    ``docbranch.codec.sql`` are understood.
    """

    def __init__(self, repo_path: Path, branch: str = "main") -> None:
        super().__init__(repo_path)
        self._counter = 0
        self.active = branch
        self.history: dict[str, list[FakeCommit]] = {
            branch: [self._new_commit("Initialize data repository", _empty_tables())]
        }
        self.working = copy.deepcopy(self.head.tables)
        self.conflicts: list[dict[str, Any]] = []
        self.remote_history: dict[tuple[str, str], list[FakeCommit]] = {}
        self.remotes: list[RemoteInfo] = []
        self.fail_commit = False
        self._merging: list[FakeCommit] | None = None

    def _new_commit(self, message: str, tables: dict[str, dict]) -> FakeCommit:
        self._counter += 1
        return FakeCommit(f"{self._counter:032x}", message, copy.deepcopy(tables))

    def _run(self, *args, **kwargs):
        raise AssertionError(f"FakeDoltCli must not run processes: {args}")

    def at(self, repo_path: Path) -> FakeDoltCli:
        return self

    @property
    def head(self) -> FakeCommit:
        return self.history[self.active][-1]

    # -- inspection --------------------------------------------------------

    def current_branch(self) -> str:
        return self.active

    def head_commit_hash(self) -> str | None:
        return self.head.hash

    def branches(self) -> list[str]:
        return sorted(self.history)

    def has_uncommitted_changes(self) -> bool:
        return self.working != self.head.tables

    def commit_exists_on_branch(self, commit_hash: str, branch: str) -> bool:
        return any(c.hash == commit_hash for c in self.history.get(branch, []))

    def remote_list(self) -> list[RemoteInfo]:
        return list(self.remotes)

    def query(self, sql: str) -> list[dict[str, Any]]:
        if sql.startswith("SELECT doc_id, collection_name"):
            values = _literals(sql)
            collection = values[0]
            wanted = set(values[1:]) if "doc_id IN" in sql else None
            if sql.endswith("1 = 0"):
                wanted = set()
            rows = [
                dict(row)
                for (name, doc_id), row in self.working["documents"].items()
                if name == collection and (wanted is None or doc_id in wanted)
            ]
            return sorted(rows, key=lambda r: r["doc_id"])
        if sql.startswith("SELECT collection_name, metadata"):
            return [
                {"collection_name": name, "metadata": meta, "sync_status": "synced",
                 "dolt_commit": None}
                for name, meta in sorted(self.working["collections"].items())
            ]
        if sql.startswith("SELECT `table`, num_conflicts"):
            if not self.conflicts:
                return []
            return [{"table": "documents", "num_conflicts": len(self.conflicts)}]
        if sql.startswith("SELECT base_doc_id"):
            return [dict(row) for row in self.conflicts]
        raise AssertionError(f"Unexpected query: {sql}")

    # -- writes ------------------------------------------------------------

    def execute(self, statements) -> DoltCommandResult:
        if isinstance(statements, str):
            statements = [statements]
        for statement in statements:
            self._apply(statement)
        return DoltCommandResult(True, "", "", 0)

    def _apply(self, statement: str) -> None:
        docs = self.working["documents"]
        cols = self.working["collections"]
        values = _literals(statement)
        if statement.startswith("CREATE TABLE"):
            return
        if statement.startswith("INSERT INTO documents"):
            doc_id, collection, content, content_hash, metadata, commit = values
            docs[(collection, doc_id)] = {
                "doc_id": doc_id,
                "collection_name": collection,
                "content": content,
                "content_hash": content_hash,
                "metadata": metadata,
                "dolt_commit": commit,
            }
        elif statement.startswith("UPDATE documents SET content"):
            content, content_hash, metadata, commit, doc_id, collection = values
            docs[(collection, doc_id)].update(
                content=content, content_hash=content_hash, metadata=metadata,
                dolt_commit=commit,
            )
        elif statement.startswith("DELETE FROM documents WHERE doc_id"):
            doc_id, collection = values
            docs.pop((collection, doc_id), None)
        elif statement.startswith("INSERT INTO collections"):
            # the ON DUPLICATE KEY clause repeats the status literal
            name, metadata, _status, _commit = values[:4]
            cols[name] = json.loads(metadata)
        elif statement.startswith("UPDATE collections SET collection_name"):
            new, old = values
            if old in cols:
                cols[new] = cols.pop(old)
        elif statement.startswith("UPDATE documents SET collection_name"):
            new, old = values
            for key in [k for k in docs if k[0] == old]:
                row = docs.pop(key)
                row["collection_name"] = new
                docs[(new, key[1])] = row
        elif statement.startswith("DELETE FROM documents WHERE collection_name"):
            for key in [k for k in docs if k[0] == values[0]]:
                del docs[key]
        elif statement.startswith("DELETE FROM collections"):
            cols.pop(values[0], None)
        else:
            raise AssertionError(f"Unexpected statement: {statement}")

    def add(self, tables=()) -> DoltCommandResult:
        return DoltCommandResult(True, "", "", 0)

    def commit(self, message: str, author: str | None = None) -> DoltCommandResult:
        if self.fail_commit:
            return DoltCommandResult(False, "", "commit failed", 1)
        if not self.has_uncommitted_changes() and self._merging is None:
            return DoltCommandResult(False, "", "nothing to commit", 1)
        if self._merging is not None:
            known = {c.hash for c in self.history[self.active]}
            self.history[self.active] += [c for c in self._merging if c.hash not in known]
            self._merging = None
        self.history[self.active].append(self._new_commit(message, self.working))
        return DoltCommandResult(True, "", "", 0)

    def checkout(self, ref: str, create: bool = False) -> DoltCommandResult:
        if create:
            self.history[ref] = list(self.history[self.active])
        elif ref not in self.history:
            raise DoltCommandError(["checkout", ref], 1, f"branch not found: {ref}")
        self.active = ref
        self.working = copy.deepcopy(self.head.tables)
        return DoltCommandResult(True, "", "", 0)

    def reset(self, target: str | None = None, hard: bool = False) -> DoltCommandResult:
        commits = self.history[self.active]
        if target not in (None, "HEAD"):
            index = next(i for i, c in enumerate(commits) if c.hash == target)
            del commits[index + 1:]
        self.working = copy.deepcopy(self.head.tables)
        return DoltCommandResult(True, "", "", 0)

    def merge(self, branch: str) -> DoltCommandResult:
        return self._merge_history(self.history[branch], f"Merge branch '{branch}'")

    def pull(self, remote: str, branch: str | None = None) -> DoltCommandResult:
        theirs = self.remote_history.get((remote, branch or self.active))
        if theirs is None:
            return DoltCommandResult(False, "", f"remote {remote} not found", 1)
        return self._merge_history(theirs, f"Merge {remote}/{branch or self.active}")

    def merge_abort(self) -> DoltCommandResult:
        self.conflicts = []
        self._merging = None
        self.working = copy.deepcopy(self.head.tables)
        return DoltCommandResult(True, "", "", 0)

    def conflicts_resolve(self, strategy: str, tables=("documents",)) -> DoltCommandResult:
        for row in self.conflicts:
            side = "our" if strategy == "ours" else "their"
            key = row["_key"]
            if row[f"{side}_doc_id"] is None:
                self.working["documents"].pop(key, None)
            else:
                self.working["documents"][key] = copy.deepcopy(row[f"_{side}_row"])
        self.conflicts = []
        return DoltCommandResult(True, "", "", 0)

    # -- merge machinery ---------------------------------------------------

    def _merge_history(self, theirs: list[FakeCommit], message: str) -> DoltCommandResult:
        ours = self.history[self.active]
        our_hashes = [c.hash for c in ours]
        their_hashes = [c.hash for c in theirs]
        if their_hashes[-1] in our_hashes:
            return DoltCommandResult(True, "Already up to date.", "", 0)
        if our_hashes[-1] in their_hashes:
            self.history[self.active] = list(theirs)
            self.working = copy.deepcopy(self.head.tables)
            return DoltCommandResult(True, "Fast-forward", "", 0)

        base = _empty_tables()
        for commit in reversed(theirs):
            if commit.hash in our_hashes:
                base = commit.tables
                break

        merged = copy.deepcopy(self.head.tables)
        cols = _three_way(base["collections"], merged["collections"], theirs[-1].tables["collections"])
        merged["collections"] = cols[0]
        docs, conflicted = _three_way(
            base["documents"], merged["documents"], theirs[-1].tables["documents"]
        )
        merged["documents"] = docs
        self.working = merged
        self._merging = list(theirs)
        if conflicted:
            self.conflicts = [
                _conflict_row(key, base["documents"], self.head.tables["documents"],
                              theirs[-1].tables["documents"])
                for key in sorted(conflicted)
            ]
            return DoltCommandResult(False, "", "CONFLICT (content): merge conflict in documents", 1)
        self.commit(message)
        return DoltCommandResult(True, "", "", 0)

    # -- test helpers ------------------------------------------------------

    def rows(self, branch: str | None = None) -> dict:
        return self.history[branch or self.active][-1].tables["documents"]


def _three_way(base: dict, ours: dict, theirs: dict) -> tuple[dict, set]:
    """Merge two dicts against a base; ours wins conflicting keys."""
    merged = dict(ours)
    conflicted = set()
    for key in set(base) | set(ours) | set(theirs):
        b, o, t = base.get(key), ours.get(key), theirs.get(key)
        if o == t or t == b:
            continue
        if o == b:
            if t is None:
                merged.pop(key, None)
            else:
                merged[key] = copy.deepcopy(t)
            continue
        conflicted.add(key)
    return merged, conflicted


def _conflict_row(key, base: dict, ours: dict, theirs: dict) -> dict[str, Any]:
    row: dict[str, Any] = {"_key": key}
    for side, table in (("base", base), ("our", ours), ("their", theirs)):
        values = table.get(key)
        row[f"{side}_doc_id"] = values["doc_id"] if values else None
        row[f"{side}_collection_name"] = values["collection_name"] if values else None
        row[f"{side}_content_hash"] = values["content_hash"] if values else None
        row[f"_{side}_row"] = values
    return row


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db():
    """In-memory bookkeeping database."""
    database = BookkeepingDatabase(":memory:")
    yield database
    database.close()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def dolt(tmp_path):
    return FakeDoltCli(tmp_path / "repo")


@pytest.fixture
def engine(store, dolt, db):
    """Orchestrator over the in-memory store and fake Dolt."""
    return SyncOrchestrator(store, dolt, db, locks=LockRegistry())
