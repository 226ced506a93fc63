"""Project state manifest: discovery, reading and atomic updates.

The manifest (``.docbranch/state.json``) records the Dolt remote, default
branch and the last commit/branch the engine synced, so a fresh checkout
of the project knows which repository state it expects.

Discovery searches a fixed, ordered list of candidates; the first file
that exists wins and every candidate is reported for diagnostics.
Malformed manifests are logged and treated as absent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ..file_handler import read_json, write_json_atomic

logger = logging.getLogger(__name__)

MANIFEST_DIR = ".docbranch"
LEGACY_MANIFEST_DIR = ".docsync"
MANIFEST_FILE = "state.json"
MANIFEST_VERSION = 1


class DoltManifest(BaseModel):
    remote_url: str | None = None
    default_branch: str = "main"
    current_commit: str | None = None
    current_branch: str | None = None


class Manifest(BaseModel):
    """Contents of ``state.json``."""

    version: int = MANIFEST_VERSION
    dolt: DoltManifest = Field(default_factory=DoltManifest)
    updated_at: str | None = None


@dataclass
class ManifestDiscovery:
    """Outcome of a manifest search.

    ``path`` is the first existing candidate, or ``None``.
    """

    path: Path | None
    candidates: list[Path] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.path is not None


def manifest_candidates(project_root: Path, data_path: Path | None = None) -> list[Path]:
    """Ordered manifest locations, highest priority first."""
    candidates = [project_root / MANIFEST_DIR / MANIFEST_FILE]
    if data_path is not None:
        candidates.append(data_path / MANIFEST_DIR / MANIFEST_FILE)
    candidates.append(project_root / LEGACY_MANIFEST_DIR / MANIFEST_FILE)

    unique: list[Path] = []
    for candidate in candidates:
        if candidate not in unique:
            unique.append(candidate)
    return unique


def find_manifest(project_root: Path, data_path: Path | None = None) -> ManifestDiscovery:
    candidates = manifest_candidates(project_root, data_path)
    for candidate in candidates:
        if candidate.is_file():
            logger.debug("Found manifest at %s", candidate)
            return ManifestDiscovery(path=candidate, candidates=candidates)
    logger.debug("No manifest found; searched %s", ", ".join(map(str, candidates)))
    return ManifestDiscovery(path=None, candidates=candidates)


def read_manifest(path: Path) -> Manifest | None:
    """Load and validate a manifest file.

    Returns:
        The manifest, or ``None`` when the file is missing, empty or
        malformed (logged).
    """
    try:
        data = read_json(path)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring malformed manifest %s: %s", path, exc)
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring manifest %s: top level is not an object", path)
        return None
    try:
        return Manifest.model_validate(data)
    except ValidationError as exc:
        logger.warning("Ignoring invalid manifest %s: %s", path, exc)
        return None


def write_manifest(path: Path, manifest: Manifest) -> Manifest:
    """Persist *manifest* atomically with a fresh ``updated_at``."""
    stamped = manifest.model_copy(
        update={"updated_at": datetime.now(timezone.utc).isoformat()}
    )
    write_json_atomic(path, stamped.model_dump(mode="json"))
    logger.info("Wrote manifest %s", path)
    return stamped


def update_dolt_commit(path: Path, commit_hash: str, branch: str) -> Manifest | None:
    """Record the last synced commit and branch in an existing manifest.

    A missing or malformed manifest is left alone.
    """
    manifest = read_manifest(path)
    if manifest is None:
        logger.debug("No valid manifest at %s; commit %s not recorded", path, commit_hash)
        return None
    dolt = manifest.dolt.model_copy(
        update={"current_commit": commit_hash, "current_branch": branch}
    )
    return write_manifest(path, manifest.model_copy(update={"dolt": dolt}))
