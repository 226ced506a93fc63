"""Startup and shutdown wiring for the sync engine.

``build_context`` loads configuration, analyzes the repository state,
opens the bookkeeping database and the document store, and returns an
``EngineContext`` holding a ready ``SyncOrchestrator``.  Use it as a
context manager so the bookkeeping database is closed on exit::

    with build_context() as ctx:
        result = ctx.orchestrator.process_commit("Add notes")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import load_project_config
from .config_schema import LoggingConfig, build_config, to_fallbacks
from .core.document_store import ChromaDocumentStore, DocumentStore
from .core.dolt_cli import DoltCli
from .logger import configure_logging
from .state import ManifestInitializer, RepositoryInitializer, StateResolver, run_startup
from .state.models import RepositoryStateAnalysis
from .sync.database import BookkeepingDatabase
from .sync.engine import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    """Everything an operation needs, bound to one project."""

    config: Config
    analysis: RepositoryStateAnalysis
    dolt: DoltCli
    store: DocumentStore
    db: BookkeepingDatabase
    orchestrator: SyncOrchestrator
    merge_strategy: str | None = None

    def close(self) -> None:
        self.db.close()
        logger.info("Engine context for %s closed", self.config.project_root)

    def __enter__(self) -> EngineContext:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _anchor_log_file(settings: LoggingConfig, config: Config) -> LoggingConfig:
    """Resolve a relative log file against the project root."""
    if not settings.file or Path(settings.file).expanduser().is_absolute():
        return settings
    return settings.model_copy(
        update={"file": str(config.project_root / settings.file)}
    )


def _resolve_config(
    project_root: str | Path | None,
    repository_path: str | Path | None,
    debug: bool,
) -> tuple[Config, dict[str, Any]]:
    """Merge explicit args, env vars, .env and YAML into a ``Config``.

    Returns:
        The config and the raw ``sync`` section of the YAML file(s).
    """
    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        root = Path(project_root) if project_root is not None else None
        yaml_fallbacks: dict[str, Any] | None = None
        sync_section: dict[str, Any] = {}
        sources = []

        loaded = load_project_config(root)
        unified = build_config(loaded.data)
        if loaded.sources:
            yaml_fallbacks = to_fallbacks(unified)
            sync_section = unified.sync.model_dump()
            sources.append(
                "config files: " + ", ".join(str(p) for p in loaded.sources)
            )

        config = load_config(
            project_root=project_root,
            repository_path=repository_path,
            debug=debug,
            yaml_fallbacks=yaml_fallbacks,
        )

        if debug or loaded.has_section("logging"):
            configure_logging(_anchor_log_file(unified.logging, config), debug=debug)

        if project_root is not None or repository_path is not None:
            sources.append("explicit arguments")
        sources.append("environment variables")
        logger.info("Configuration loaded from: %s", ", ".join(sources))
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(f"Configuration error: {e}") from e

    return config, sync_section


def build_context(
    project_root: str | Path | None = None,
    repository_path: str | Path | None = None,
    debug: bool = False,
    store: DocumentStore | None = None,
    dolt: DoltCli | None = None,
    initializers: Iterable[RepositoryInitializer] | None = None,
) -> EngineContext:
    """Create an ``EngineContext`` for the project at *project_root*.

    Args:
        project_root: Project directory; env/YAML/CWD when omitted.
        repository_path: Override for the Dolt repository directory.
        debug: Enable debug configuration.
        store: Pre-built document store; a ``ChromaDocumentStore`` on the
            configured data path otherwise.
        dolt: Pre-built CLI wrapper; rebound to the effective path.
        initializers: Startup initializers; by default a manifest is
            written when the repository exists without one.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    config, sync_section = _resolve_config(project_root, repository_path, debug)

    if dolt is None:
        dolt = DoltCli(
            config.repository_path,
            executable=config.dolt_executable,
            command_timeout=config.command_timeout,
            network_timeout=config.network_timeout,
        )

    cleanup_attempts = int(sync_section.get("cleanup_attempts") or 5)
    resolver = StateResolver(
        config.repository_path,
        config.chroma_data_path,
        data_path=config.data_path,
        dolt=dolt,
        collection_counter=lambda path: ChromaDocumentStore.count_collections(
            path, cleanup_attempts=cleanup_attempts
        ),
    )
    if initializers is None:
        initializers = [ManifestInitializer(dolt, default_branch=config.default_branch)]
    analysis = run_startup(resolver, config.project_root, initializers)
    logger.info("Repository state: %s", analysis.state.value)

    effective = resolver.effective_dolt_path()
    if effective is not None and effective != Path(dolt.repo_path).resolve():
        logger.info("Binding Dolt commands to %s", effective)
        dolt = dolt.at(effective)

    db = BookkeepingDatabase(config.bookkeeping_path)
    if store is None:
        store = ChromaDocumentStore(config.chroma_data_path)

    manifest_path = None
    if analysis.manifest is not None and analysis.manifest.path:
        manifest_path = Path(analysis.manifest.path)

    orchestrator = SyncOrchestrator(store, dolt, db, manifest_path=manifest_path)
    return EngineContext(
        config=config,
        analysis=analysis,
        dolt=dolt,
        store=store,
        db=db,
        orchestrator=orchestrator,
        merge_strategy=sync_section.get("merge_strategy"),
    )
