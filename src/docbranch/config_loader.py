"""
YAML configuration layers for a docbranch project.

A project keeps its settings in ``<project_root>/.docbranch/config.yml``,
next to the bookkeeping data.  Three layers are read, lowest precedence
first:

    1. the user file, ``$XDG_CONFIG_HOME/docbranch/config.yml``
       (``~/.config/docbranch/config.yml`` when XDG_CONFIG_HOME is unset)
    2. the project file, ``.docbranch/config.yml`` (or ``config.yaml``)
    3. the file named by ``DOCBRANCH_CONFIG``

Sections are merged key by key, so a project file that only sets
``dolt.repository_path`` keeps the user's ``dolt.executable``.  String
values may reference ``${VAR}`` or ``${VAR:-default}``.

Usage:
    from docbranch.config_loader import load_project_config

    loaded = load_project_config(project_root)
    unified = build_config(loaded.data)
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config_schema import UnifiedConfig

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".docbranch"
CONFIG_FILE_NAMES = ("config.yml", "config.yaml")
KNOWN_KEYS = frozenset(UnifiedConfig.model_fields)


@dataclass
class LoadedConfig:
    """Merged raw config and the files it came from (lowest first)."""

    data: dict[str, Any] = field(default_factory=dict)
    sources: list[Path] = field(default_factory=list)

    def has_section(self, name: str) -> bool:
        return name in self.data


# ---------------------------------------------------------------------------
# Env var expansion
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def expand_env(value: Any) -> Any:
    """Expand env references in every string inside *value*.

    An unset or empty variable takes the default, or ``""`` without one.
    Text that is not a well-formed reference is left alone.
    """
    match value:
        case str():
            return _ENV_REF.sub(
                lambda m: os.environ.get(m["name"]) or (m["default"] or ""), value
            )
        case dict():
            return {key: expand_env(item) for key, item in value.items()}
        case list():
            return [expand_env(item) for item in value]
        case _:
            return value


# ---------------------------------------------------------------------------
# Layer discovery
# ---------------------------------------------------------------------------


def user_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / "docbranch" / CONFIG_FILE_NAMES[0]


def project_config_path(project_root: Path | None = None) -> Path:
    """The project's config file; the ``.yml`` name when neither exists."""
    config_dir = (project_root or Path.cwd()) / CONFIG_DIR_NAME
    for name in CONFIG_FILE_NAMES:
        candidate = config_dir / name
        if candidate.is_file():
            return candidate
    return config_dir / CONFIG_FILE_NAMES[0]


def config_layers(project_root: Path | None = None) -> list[Path]:
    """Existing config files for *project_root*, lowest precedence first.

    Raises:
        ValueError: If ``DOCBRANCH_CONFIG`` names a missing file.
    """
    layers = [user_config_path(), project_config_path(project_root)]
    found = [path for path in layers if path.is_file()]

    explicit = os.environ.get("DOCBRANCH_CONFIG")
    if explicit:
        path = Path(explicit).expanduser().resolve()
        if not path.is_file():
            raise ValueError(f"DOCBRANCH_CONFIG points to a missing file: {path}")
        if path not in [p.resolve() for p in found]:
            found.append(path)
    return found


# ---------------------------------------------------------------------------
# Reading and merging
# ---------------------------------------------------------------------------


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse one config file into a mapping of sections.

    Unknown top-level keys are logged and dropped.

    Raises:
        ValueError: On invalid YAML, a non-mapping document, or a
            section that is not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"{path} must contain a mapping of sections, got {type(data).__name__}"
        )

    sections: dict[str, Any] = {}
    for key, value in data.items():
        if key not in KNOWN_KEYS:
            logger.warning("Ignoring unknown config key %r in %s", key, path)
            continue
        if key == "project_root":
            sections[key] = value
            continue
        if value is not None and not isinstance(value, dict):
            raise ValueError(f"Section {key!r} in {path} must be a mapping")
        sections[key] = value or {}
    return sections


def merge_layers(layers: list[dict[str, Any]]) -> dict[str, Any]:
    """Merge section mappings; later layers win per key."""
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = {**current, **value}
            else:
                merged[key] = value
    return merged


def load_project_config(project_root: Path | None = None) -> LoadedConfig:
    """Read and merge every config layer for *project_root*.

    Returns an empty ``LoadedConfig`` when no file exists (zero-config).
    """
    sources = config_layers(project_root)
    if not sources:
        logger.debug("No config files found, using zero-config defaults")
        return LoadedConfig()

    for path in sources:
        logger.debug("Loading config layer: %s", path)
    data = merge_layers([read_config_file(path) for path in sources])
    return LoadedConfig(data=expand_env(data), sources=sources)


# ---------------------------------------------------------------------------
# Starter file
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# docbranch configuration
#
# Relative paths are resolved against the project root.  Environment
# variables override these values:
#   DOLT_EXECUTABLE_PATH, DOLT_REPOSITORY_PATH, DOLT_COMMAND_TIMEOUT,
#   DOLT_NETWORK_TIMEOUT, CHROMA_DATA_PATH, DOCBRANCH_DATA_PATH
#
# dolt:
#   executable: dolt
#   repository_path: .docbranch/dolt
#   default_branch: main
#
# chroma:
#   data_path: .docbranch/chroma
#
# sync:
#   data_path: .docbranch
#   merge_strategy: null
#
# logging:
#   level: INFO
#   file: .docbranch/docbranch.log
#   format: text
"""


def ensure_config(project_root: Path | None = None) -> Path:
    """Write a commented starter project file unless one exists.

    Returns:
        Path to the project config file.
    """
    path = project_config_path(project_root)
    if path.is_file():
        logger.debug("Config file already exists: %s", path)
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path
