"""Document store collaborator interface and its chromadb adapter.

The sync engine only talks to the ``DocumentStore`` protocol.
``ChromaDocumentStore`` implements it on top of a persistent chromadb
client; chromadb is an optional dependency (``pip install docbranch[chroma]``)
and is imported only when the adapter is constructed without a client.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

from ..file_handler import remove_tree_with_retry
from ..sync.models import Collection, Document

logger = logging.getLogger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Collection-oriented document storage without native versioning."""

    def list_collections(self) -> list[Collection]: ...

    def get_collection(self, name: str) -> Collection | None: ...

    def get_documents(
        self,
        collection: str,
        ids: Sequence[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> list[Document]: ...

    def add_documents(self, collection: str, documents: Sequence[Document]) -> None: ...

    def update_documents(self, collection: str, documents: Sequence[Document]) -> None: ...

    def delete_documents(self, collection: str, ids: Sequence[str]) -> None: ...

    def create_collection(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> Collection: ...

    def modify_collection(
        self,
        name: str,
        new_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def delete_collection(self, name: str) -> None: ...


def _open_client(data_path: Path) -> Any:
    import chromadb
    from chromadb.config import Settings

    return chromadb.PersistentClient(
        path=str(data_path),
        settings=Settings(anonymized_telemetry=False),
    )


class ChromaDocumentStore:
    """``DocumentStore`` backed by a persistent chromadb directory.

    Args:
        data_path: Chroma persistence directory.
        client: Pre-built chromadb client (tests, shared clients).
    """

    def __init__(self, data_path: Path, client: Any = None) -> None:
        self.data_path = Path(data_path)
        self._client = client if client is not None else _open_client(self.data_path)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _collection_names(self) -> list[str]:
        # chromadb < 0.6 returns Collection objects, later versions names
        return sorted(
            getattr(item, "name", item) for item in self._client.list_collections()
        )

    def list_collections(self) -> list[Collection]:
        collections = []
        for name in self._collection_names():
            col = self._client.get_collection(name=name)
            collections.append(Collection(name=name, metadata=dict(col.metadata or {})))
        return collections

    def get_collection(self, name: str) -> Collection | None:
        if name not in self._collection_names():
            return None
        col = self._client.get_collection(name=name)
        return Collection(name=name, metadata=dict(col.metadata or {}))

    def create_collection(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> Collection:
        self._client.create_collection(name=name, metadata=metadata or None)
        logger.debug("Created collection %s", name)
        return Collection(name=name, metadata=dict(metadata or {}))

    def modify_collection(
        self,
        name: str,
        new_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        col = self._client.get_collection(name=name)
        col.modify(name=new_name, metadata=metadata)

    def delete_collection(self, name: str) -> None:
        self._client.delete_collection(name=name)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def get_documents(
        self,
        collection: str,
        ids: Sequence[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> list[Document]:
        col = self._client.get_collection(name=collection)
        result = col.get(
            ids=list(ids) if ids is not None else None,
            where=where,
            include=["documents", "metadatas"],
        )
        documents = result.get("documents") or []
        metadatas = result.get("metadatas") or []
        docs = []
        for index, doc_id in enumerate(result.get("ids") or []):
            docs.append(
                Document(
                    doc_id=doc_id,
                    collection=collection,
                    content=(documents[index] if index < len(documents) else None) or "",
                    metadata=dict(
                        (metadatas[index] if index < len(metadatas) else None) or {}
                    ),
                )
            )
        return docs

    def add_documents(self, collection: str, documents: Sequence[Document]) -> None:
        if not documents:
            return
        col = self._client.get_collection(name=collection)
        col.add(
            ids=[d.doc_id for d in documents],
            documents=[d.content for d in documents],
            metadatas=[d.metadata or None for d in documents],
        )

    def update_documents(self, collection: str, documents: Sequence[Document]) -> None:
        if not documents:
            return
        col = self._client.get_collection(name=collection)
        col.update(
            ids=[d.doc_id for d in documents],
            documents=[d.content for d in documents],
            metadatas=[d.metadata or None for d in documents],
        )

    def delete_documents(self, collection: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        col = self._client.get_collection(name=collection)
        col.delete(ids=list(ids))

    # ------------------------------------------------------------------
    # Read-only inspection
    # ------------------------------------------------------------------

    @staticmethod
    def count_collections(data_path: Path, cleanup_attempts: int = 5) -> int:
        """Count collections in *data_path* without opening it in place.

        The directory is copied to a scratch location so a running
        client's file locks are never taken; the copy is removed with
        retries afterwards.
        """
        scratch = Path(tempfile.mkdtemp(prefix="docbranch-chroma-"))
        copy_path = scratch / "data"
        try:
            shutil.copytree(data_path, copy_path)
            client = _open_client(copy_path)
            count = len(client.list_collections())
            logger.debug("Counted %d collections in %s", count, data_path)
            return count
        finally:
            remove_tree_with_retry(scratch, attempts=cleanup_attempts)
