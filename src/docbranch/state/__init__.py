"""Repository bootstrap state detection and manifest handling."""

from .initializers import ManifestInitializer, RepositoryInitializer, run_startup
from .manifest import Manifest, find_manifest, read_manifest, update_dolt_commit, write_manifest
from .models import RepositoryState, RepositoryStateAnalysis
from .resolver import StateResolver

__all__ = [
    "Manifest",
    "ManifestInitializer",
    "RepositoryInitializer",
    "RepositoryState",
    "RepositoryStateAnalysis",
    "StateResolver",
    "find_manifest",
    "read_manifest",
    "run_startup",
    "update_dolt_commit",
    "write_manifest",
]
