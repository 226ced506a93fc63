"""Pydantic models describing a project's repository bootstrap state."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class RepositoryState(str, Enum):
    """Bootstrap state of a project; only ``READY`` is terminal."""

    UNINITIALIZED = "uninitialized"
    INFRASTRUCTURE_ONLY_NEEDS_MANIFEST = "infrastructure_only_needs_manifest"
    MANIFEST_ONLY_NEEDS_FULL_BOOTSTRAP = "manifest_only_needs_full_bootstrap"
    MANIFEST_ONLY_NEEDS_DOLT_BOOTSTRAP = "manifest_only_needs_dolt_bootstrap"
    MANIFEST_ONLY_NEEDS_CHROMA_BOOTSTRAP = "manifest_only_needs_chroma_bootstrap"
    READY = "ready"
    INCONSISTENT = "inconsistent"


class ManifestInfo(BaseModel):
    """Manifest summary; ``searched_locations`` is filled even when absent."""

    path: str | None = None
    remote_url: str | None = None
    current_commit: str | None = None
    current_branch: str | None = None
    default_branch: str | None = None
    searched_locations: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class DoltInfo(BaseModel):
    path: str
    is_valid: bool = False
    is_nested: bool = False
    current_branch: str | None = None
    current_commit: str | None = None

    model_config = {"frozen": True}


class ChromaInfo(BaseModel):
    path: str
    exists: bool = False
    collection_count: int = 0

    model_config = {"frozen": True}


class PathIssue(BaseModel):
    """A repository path problem found during analysis.

    Attributes:
        configured_path: Repository path from configuration.
        actual_path: Where a valid ``.dolt`` was found, if elsewhere.
        suggested_fix: Human-readable remediation.
        rogue_dolt_path: ``.dolt`` at the project root that is not the
            configured repository.
        is_dolt_incomplete: The configured ``.dolt`` has no storage.
        all_locations: Every valid repository found under the configured
            path when the layout is ambiguous.
    """

    configured_path: str
    actual_path: str | None = None
    suggested_fix: str = ""
    rogue_dolt_path: str | None = None
    is_dolt_incomplete: bool = False
    all_locations: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def rogue_dolt_detected(self) -> bool:
        return bool(self.rogue_dolt_path)


class RepositoryStateAnalysis(BaseModel):
    """Result of ``StateResolver.analyze_state`` with actionable guidance."""

    state: RepositoryState
    description: str = ""
    available_actions: list[str] = Field(default_factory=list)
    recommended_action: str = ""
    manifest: ManifestInfo | None = None
    dolt_info: DoltInfo | None = None
    chroma_info: ChromaInfo | None = None
    path_issue: PathIssue | None = None

    model_config = {"frozen": True}

    @property
    def is_ready(self) -> bool:
        return self.state is RepositoryState.READY
