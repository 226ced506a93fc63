"""Unified configuration schema for docbranch.

Defines Pydantic models for the YAML config structure with dedicated
sections for the Dolt repository, the Chroma data directory, sync
behaviour and logging, plus an adapter that flattens them into the
fallback dict consumed by ``load_config()``.

Usage:
    from docbranch.config_schema import UnifiedConfig, build_config, to_fallbacks

    loaded = load_project_config(project_root)
    unified = build_config(loaded.data)
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class DoltConfig(BaseModel):
    """Dolt repository and CLI settings.

    All fields are optional to support zero-config: env vars and
    explicit arguments can supply them at runtime instead.
    """

    executable: str | None = Field(
        default=None, description="Path to the dolt binary"
    )
    repository_path: str | None = Field(
        default=None, description="Dolt repository directory"
    )
    default_branch: str = Field(
        default="main", description="Branch created by init/clone"
    )
    command_timeout: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="Seconds before a local dolt command is killed",
    )
    network_timeout: float = Field(
        default=300.0,
        gt=0,
        le=86400,
        description="Seconds before clone/push/pull/fetch is killed",
    )

    model_config = {"frozen": True}


class ChromaConfig(BaseModel):
    """Document store location."""

    data_path: str | None = Field(
        default=None, description="Persistent Chroma directory"
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine behaviour.

    Attributes:
        data_path: Directory for the bookkeeping database and manifest.
        merge_strategy: Default conflict strategy for merges. ``None``
            means conflicts are reported and the merge is aborted.
        cleanup_attempts: Retries when removing locked temporary copies.
    """

    data_path: str | None = Field(
        default=None, description="Bookkeeping directory"
    )
    merge_strategy: Literal["ours", "theirs"] | None = Field(
        default=None, description="Default merge conflict strategy"
    )
    cleanup_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Retries for transient file-lock errors (1-20)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log record format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    project_root: str | None = Field(default=None)
    dolt: DoltConfig = Field(default_factory=DoltConfig)
    chroma: ChromaConfig = Field(default_factory=ChromaConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_project_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten a ``UnifiedConfig`` into ``load_config(yaml_fallbacks=...)``.

    ``None`` values are dropped so they never shadow built-in defaults.
    """
    flat: dict[str, Any] = {
        "project_root": unified.project_root,
        "data_path": unified.sync.data_path,
        "repository_path": unified.dolt.repository_path,
        "chroma_data_path": unified.chroma.data_path,
        "executable": unified.dolt.executable,
        "command_timeout": unified.dolt.command_timeout,
        "network_timeout": unified.dolt.network_timeout,
        "default_branch": unified.dolt.default_branch,
    }
    return {k: v for k, v in flat.items() if v is not None}
