"""Collaborators: the Dolt CLI wrapper and the document store interface."""

from .dolt_cli import CommitInfo, DoltCli, DoltCommandResult, RemoteInfo, is_valid_dolt_dir
from .document_store import ChromaDocumentStore, DocumentStore

__all__ = [
    "ChromaDocumentStore",
    "CommitInfo",
    "DocumentStore",
    "DoltCli",
    "DoltCommandResult",
    "RemoteInfo",
    "is_valid_dolt_dir",
]
