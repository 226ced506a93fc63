"""Repository state resolution.

``StateResolver.analyze_state`` inspects the project on disk and reports
which of the bootstrap states it is in, together with the actions that
move it towards ``READY``.  It also resolves the *effective* repository
path: when the configured directory holds no valid repository but exactly
one immediate subdirectory does (a ``dolt clone`` into the configured
directory), that subdirectory is used for every later CLI call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..core.dolt_cli import DoltCli, is_valid_dolt_dir
from ..errors import DocBranchError
from .manifest import find_manifest, read_manifest
from .models import (
    ChromaInfo,
    DoltInfo,
    ManifestInfo,
    PathIssue,
    RepositoryState,
    RepositoryStateAnalysis,
)

logger = logging.getLogger(__name__)

CollectionCounter = Callable[[Path], int]

# (description, available actions, recommended action)
_GUIDANCE: dict[RepositoryState, tuple[str, list[str], str]] = {
    RepositoryState.READY: (
        "Repository is fully initialized and operational.",
        ["Status", "Commit", "Checkout", "Merge", "Pull", "Push"],
        "Proceed with normal operations",
    ),
    RepositoryState.UNINITIALIZED: (
        "No manifest, Dolt repository or document store data found.",
        ["Clone", "Init", "InitManifest"],
        "Clone(remote_url) to clone an existing repository, or Init to create one",
    ),
    RepositoryState.INFRASTRUCTURE_ONLY_NEEDS_MANIFEST: (
        "Dolt and/or document store data exist but there is no manifest.",
        ["InitManifest"],
        "InitManifest to record the current repository state",
    ),
    RepositoryState.MANIFEST_ONLY_NEEDS_FULL_BOOTSTRAP: (
        "Manifest found{remote} but the Dolt repository and document store are missing.",
        ["BootstrapRepository", "Clone"],
        "BootstrapRepository to initialize everything from the manifest",
    ),
    RepositoryState.MANIFEST_ONLY_NEEDS_DOLT_BOOTSTRAP: (
        "Manifest found{remote} but the Dolt repository is missing.",
        ["BootstrapRepository", "Clone"],
        "BootstrapRepository to clone the Dolt repository named in the manifest",
    ),
    RepositoryState.MANIFEST_ONLY_NEEDS_CHROMA_BOOTSTRAP: (
        "Manifest and Dolt repository exist but the document store is empty.",
        ["BootstrapRepository", "Checkout"],
        "BootstrapRepository to load the document store from Dolt",
    ),
    RepositoryState.INCONSISTENT: (
        "Repository state could not be determined: {error}",
        ["Status"],
        "Check the logs and configuration, then analyze again",
    ),
}


@dataclass
class RepositoryLocation:
    """Where (if anywhere) a valid repository lives under the configured path."""

    configured_path: Path
    path: Path | None = None
    is_nested: bool = False
    is_incomplete: bool = False
    all_locations: list[Path] = field(default_factory=list)

    @property
    def is_ambiguous(self) -> bool:
        return self.path is None and len(self.all_locations) > 1


class StateResolver:
    """Determine bootstrap state and the effective repository path.

    Args:
        repository_path: Configured Dolt repository directory.
        chroma_data_path: Document store persistence directory.
        data_path: Engine data directory (second manifest location).
        dolt: CLI wrapper used to read branch and HEAD; rebound to the
            effective path with ``DoltCli.at``.
        collection_counter: Optional callable returning the number of
            collections stored under a data path.
    """

    def __init__(
        self,
        repository_path: Path,
        chroma_data_path: Path,
        data_path: Path | None = None,
        dolt: DoltCli | None = None,
        collection_counter: CollectionCounter | None = None,
    ) -> None:
        self.repository_path = Path(repository_path).resolve()
        self.chroma_data_path = Path(chroma_data_path).resolve()
        self.data_path = Path(data_path).resolve() if data_path is not None else None
        self.dolt = dolt
        self.collection_counter = collection_counter

    # ------------------------------------------------------------------
    # Repository location
    # ------------------------------------------------------------------

    def find_repository(self) -> RepositoryLocation:
        configured = self.repository_path
        location = RepositoryLocation(configured_path=configured)
        if is_valid_dolt_dir(configured):
            location.path = configured
            location.all_locations = [configured]
            return location

        if (configured / ".dolt").is_dir():
            location.is_incomplete = True
            logger.warning(
                "Incomplete .dolt at %s (no %s); treating as absent",
                configured,
                " or ".join(("noms/", "chunks/")),
            )

        if configured.is_dir():
            nested = sorted(
                child for child in configured.iterdir()
                if child.is_dir() and is_valid_dolt_dir(child)
            )
            location.all_locations = nested
            if len(nested) == 1:
                location.path = nested[0]
                location.is_nested = True
                logger.info("Using nested repository %s as effective path", nested[0])
            elif nested:
                logger.warning(
                    "Found %d repositories under %s; cannot pick one: %s",
                    len(nested),
                    configured,
                    ", ".join(map(str, nested)),
                )
        return location

    def effective_dolt_path(self) -> Path | None:
        """Directory every CLI call must run in, or ``None`` if unresolved."""
        return self.find_repository().path

    def detect_rogue_dolt(self, project_root: Path) -> Path | None:
        """Return a ``.dolt`` at *project_root* that is not the configured one."""
        rogue = Path(project_root).resolve() / ".dolt"
        if not rogue.is_dir():
            return None
        legitimate = {self.repository_path / ".dolt"}
        effective = self.effective_dolt_path()
        if effective is not None:
            legitimate.add(effective / ".dolt")
        if rogue in legitimate:
            return None
        logger.warning("Rogue .dolt directory at project root: %s", rogue)
        return rogue

    # ------------------------------------------------------------------
    # Document store presence
    # ------------------------------------------------------------------

    def chroma_data_exists(self) -> bool:
        path = self.chroma_data_path
        if not path.is_dir():
            return False
        return any(candidate.is_file() for candidate in path.rglob("*.sqlite*"))

    def _count_collections(self) -> int:
        if self.collection_counter is None:
            return 0
        try:
            return self.collection_counter(self.chroma_data_path)
        except (OSError, DocBranchError) as exc:
            logger.debug("Could not count collections in %s: %s", self.chroma_data_path, exc)
            return 0

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_state(self, project_root: Path) -> RepositoryStateAnalysis:
        """Inspect *project_root* and report its bootstrap state."""
        project_root = Path(project_root).resolve()
        logger.debug("Analyzing repository state for %s", project_root)
        try:
            return self._analyze(project_root)
        except (OSError, DocBranchError) as exc:
            logger.error("Repository state analysis failed for %s: %s", project_root, exc)
            description, actions, recommended = _GUIDANCE[RepositoryState.INCONSISTENT]
            return RepositoryStateAnalysis(
                state=RepositoryState.INCONSISTENT,
                description=description.format(error=exc),
                available_actions=list(actions),
                recommended_action=recommended,
            )

    def _analyze(self, project_root: Path) -> RepositoryStateAnalysis:
        discovery = find_manifest(project_root, self.data_path)
        searched = [str(candidate) for candidate in discovery.candidates]
        manifest_info = ManifestInfo(searched_locations=searched)
        has_manifest = False
        if discovery.path is not None:
            manifest = read_manifest(discovery.path)
            if manifest is not None:
                has_manifest = True
                manifest_info = ManifestInfo(
                    path=str(discovery.path),
                    remote_url=manifest.dolt.remote_url,
                    current_commit=manifest.dolt.current_commit,
                    current_branch=manifest.dolt.current_branch,
                    default_branch=manifest.dolt.default_branch,
                    searched_locations=searched,
                )

        location = self.find_repository()
        rogue = self.detect_rogue_dolt(project_root)
        dolt_info = self._dolt_info(location)
        path_issue = _path_issue(location, rogue)

        chroma_exists = self.chroma_data_exists()
        chroma_info = ChromaInfo(
            path=str(self.chroma_data_path),
            exists=chroma_exists,
            collection_count=self._count_collections() if chroma_exists else 0,
        )

        dolt_exists = dolt_info is not None and dolt_info.is_valid
        state = _determine_state(has_manifest, dolt_exists, chroma_exists)
        description, actions, recommended = _GUIDANCE[state]
        remote = f" with remote '{manifest_info.remote_url}'" if manifest_info.remote_url else ""
        logger.info("Repository state for %s: %s", project_root, state.value)
        return RepositoryStateAnalysis(
            state=state,
            description=description.format(remote=remote),
            available_actions=list(actions),
            recommended_action=recommended,
            manifest=manifest_info,
            dolt_info=dolt_info,
            chroma_info=chroma_info,
            path_issue=path_issue,
        )

    def _dolt_info(self, location: RepositoryLocation) -> DoltInfo | None:
        if location.path is None:
            return None
        branch = commit = None
        if self.dolt is not None:
            cli = self.dolt.at(location.path)
            try:
                branch = cli.current_branch() or None
                commit = cli.head_commit_hash()
            except DocBranchError as exc:
                logger.debug("Could not read Dolt state at %s: %s", location.path, exc.message)
        return DoltInfo(
            path=str(location.path),
            is_valid=True,
            is_nested=location.is_nested,
            current_branch=branch,
            current_commit=commit,
        )


def _determine_state(
    has_manifest: bool, dolt_exists: bool, chroma_exists: bool
) -> RepositoryState:
    if not has_manifest:
        if not dolt_exists and not chroma_exists:
            return RepositoryState.UNINITIALIZED
        return RepositoryState.INFRASTRUCTURE_ONLY_NEEDS_MANIFEST
    if not dolt_exists and not chroma_exists:
        return RepositoryState.MANIFEST_ONLY_NEEDS_FULL_BOOTSTRAP
    if not dolt_exists:
        return RepositoryState.MANIFEST_ONLY_NEEDS_DOLT_BOOTSTRAP
    if not chroma_exists:
        return RepositoryState.MANIFEST_ONLY_NEEDS_CHROMA_BOOTSTRAP
    return RepositoryState.READY


def _path_issue(location: RepositoryLocation, rogue: Path | None) -> PathIssue | None:
    configured = str(location.configured_path)
    if location.is_ambiguous:
        return PathIssue(
            configured_path=configured,
            suggested_fix=(
                "Several repositories found under the configured path; set "
                "DOLT_REPOSITORY_PATH to the one to use"
            ),
            rogue_dolt_path=str(rogue) if rogue else None,
            is_dolt_incomplete=location.is_incomplete,
            all_locations=[str(path) for path in location.all_locations],
        )
    if location.is_nested:
        return PathIssue(
            configured_path=configured,
            actual_path=str(location.path),
            suggested_fix=(
                f"Move the contents of '{location.path}' to '{configured}', or set "
                f"DOLT_REPOSITORY_PATH to '{location.path}'"
            ),
            rogue_dolt_path=str(rogue) if rogue else None,
            is_dolt_incomplete=location.is_incomplete,
            all_locations=[str(location.path)],
        )
    if location.is_incomplete:
        return PathIssue(
            configured_path=configured,
            suggested_fix=(
                f"The .dolt directory in '{configured}' is incomplete; remove it "
                "and clone or init again"
            ),
            rogue_dolt_path=str(rogue) if rogue else None,
            is_dolt_incomplete=True,
        )
    if rogue is not None:
        return PathIssue(
            configured_path=configured,
            actual_path=str(location.path) if location.path else None,
            suggested_fix=f"Remove the .dolt directory at '{rogue}'; it is not the configured repository",
            rogue_dolt_path=str(rogue),
        )
    return None
