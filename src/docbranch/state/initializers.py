"""Startup initializers consulted while the repository is not ready.

An initializer declares which states it can move forward and performs
that step; ``run_startup`` re-analyzes after each one.  The manifest and
repository bootstrap flows plug in here.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Protocol

from ..core.dolt_cli import DoltCli
from .manifest import MANIFEST_DIR, MANIFEST_FILE, DoltManifest, Manifest, write_manifest
from .models import RepositoryState, RepositoryStateAnalysis
from .resolver import StateResolver

logger = logging.getLogger(__name__)


class RepositoryInitializer(Protocol):
    """Protocol for pluggable startup steps."""

    name: str

    def can_handle(self, analysis: RepositoryStateAnalysis) -> bool:
        ...  # pragma: no cover

    def initialize(self, analysis: RepositoryStateAnalysis, project_root: Path) -> None:
        ...  # pragma: no cover


class ManifestInitializer:
    """Write a manifest describing an existing repository (``InitManifest``).

    Args:
        dolt: CLI wrapper; rebound to the analysed repository path.
        default_branch: Branch recorded when Dolt reports none.
    """

    name = "init-manifest"

    def __init__(self, dolt: DoltCli, default_branch: str = "main") -> None:
        self.dolt = dolt
        self.default_branch = default_branch

    def can_handle(self, analysis: RepositoryStateAnalysis) -> bool:
        return (
            analysis.state is RepositoryState.INFRASTRUCTURE_ONLY_NEEDS_MANIFEST
            and analysis.dolt_info is not None
        )

    def initialize(self, analysis: RepositoryStateAnalysis, project_root: Path) -> None:
        info = analysis.dolt_info
        remotes = self.dolt.at(Path(info.path)).remote_list()
        origin = next((r for r in remotes if r.name == "origin"), remotes[0] if remotes else None)
        manifest = Manifest(
            dolt=DoltManifest(
                remote_url=origin.url if origin else None,
                default_branch=info.current_branch or self.default_branch,
                current_commit=info.current_commit,
                current_branch=info.current_branch,
            )
        )
        write_manifest(Path(project_root) / MANIFEST_DIR / MANIFEST_FILE, manifest)


def run_startup(
    resolver: StateResolver,
    project_root: Path,
    initializers: Iterable[RepositoryInitializer] = (),
) -> RepositoryStateAnalysis:
    """Analyze the project, letting initializers advance it towards ready.

    Each initializer runs at most once, in order, and only when it claims
    the current state.

    Returns:
        The analysis after the last initializer ran.
    """
    analysis = resolver.analyze_state(project_root)
    for initializer in initializers:
        if analysis.is_ready:
            break
        if not initializer.can_handle(analysis):
            continue
        logger.info(
            "Running initializer %s for state %s", initializer.name, analysis.state.value
        )
        initializer.initialize(analysis, project_root)
        analysis = resolver.analyze_state(project_root)

    if not analysis.is_ready:
        logger.warning(
            "Repository at %s is %s: %s",
            project_root,
            analysis.state.value,
            analysis.recommended_action,
        )
    return analysis
