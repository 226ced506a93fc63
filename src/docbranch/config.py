"""Runtime configuration for the sync engine.

Reads Dolt/Chroma locations and timeouts from explicit arguments,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    Explicit args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    DOCBRANCH_PROJECT_ROOT: Project root directory (optional, default: CWD)
    DOCBRANCH_DATA_PATH: Directory for bookkeeping data (optional, default: <root>/.docbranch)
    DOLT_EXECUTABLE_PATH: Path to the dolt binary (optional, default: dolt)
    DOLT_REPOSITORY_PATH: Dolt repository directory (optional, default: <data>/dolt)
    DOLT_COMMAND_TIMEOUT: Seconds before a local dolt command is killed (default: 30)
    DOLT_NETWORK_TIMEOUT: Seconds before clone/push/pull/fetch is killed (default: 300)
    CHROMA_DATA_PATH: Persistent Chroma directory (optional, default: <data>/chroma)
    DOCBRANCH_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Config:
    project_root: Path
    data_path: Path
    repository_path: Path
    chroma_data_path: Path
    dolt_executable: str = "dolt"
    command_timeout: float = 30.0
    network_timeout: float = 300.0
    default_branch: str = "main"
    debug: bool = False

    @property
    def bookkeeping_path(self) -> Path:
        """SQLite file holding sync state, ledger and audit log."""
        return self.data_path / "docbranch.db"


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a timeout is out of range or a path is unusable.
    """
    if not config.dolt_executable.strip():
        raise ValueError(
            "Dolt executable cannot be empty. Set DOLT_EXECUTABLE_PATH."
        )

    if not (0 < config.command_timeout <= 3600):
        raise ValueError(
            f"Invalid command timeout '{config.command_timeout}': "
            "must be between 0 and 3600 seconds"
        )

    if not (0 < config.network_timeout <= 86400):
        raise ValueError(
            f"Invalid network timeout '{config.network_timeout}': "
            "must be between 0 and 86400 seconds"
        )

    if config.project_root.exists() and not config.project_root.is_dir():
        raise ValueError(
            f"Project root '{config.project_root}' is not a directory"
        )

    if not config.default_branch.strip():
        raise ValueError("Default branch cannot be empty")


def _get_float_env(key: str, fallback: float) -> float:
    raw = os.getenv(key)
    if raw is None:
        return fallback
    try:
        return float(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number of seconds"
        ) from None


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    project_root: str | Path | None = None,
    repository_path: str | Path | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        explicit arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        project_root: Override project root directory.
        repository_path: Override Dolt repository directory.
        debug: Enable debug logging.
        yaml_fallbacks: Flat dict of values from the YAML config file
            (keys: project_root, data_path, repository_path,
            chroma_data_path, executable, command_timeout,
            network_timeout, default_branch, debug).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value cannot be parsed or fails validation.
    """
    fb = yaml_fallbacks or {}

    root = Path(
        project_root
        or os.getenv("DOCBRANCH_PROJECT_ROOT")
        or fb.get("project_root")
        or Path.cwd()
    ).expanduser().resolve()

    # Relative paths in config are anchored at the project root
    def _anchor(value: str | Path) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else (root / path).resolve()

    data_path = _anchor(
        os.getenv("DOCBRANCH_DATA_PATH")
        or fb.get("data_path")
        or ".docbranch"
    )
    repo_path = _anchor(
        repository_path
        or os.getenv("DOLT_REPOSITORY_PATH")
        or fb.get("repository_path")
        or data_path / "dolt"
    )
    chroma_path = _anchor(
        os.getenv("CHROMA_DATA_PATH")
        or fb.get("chroma_data_path")
        or data_path / "chroma"
    )

    executable = (
        os.getenv("DOLT_EXECUTABLE_PATH") or fb.get("executable") or "dolt"
    ).strip()

    command_timeout = _get_float_env(
        "DOLT_COMMAND_TIMEOUT", float(fb.get("command_timeout", 30.0))
    )
    network_timeout = _get_float_env(
        "DOLT_NETWORK_TIMEOUT", float(fb.get("network_timeout", 300.0))
    )

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("DOCBRANCH_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    config = Config(
        project_root=root,
        data_path=data_path,
        repository_path=repo_path,
        chroma_data_path=chroma_path,
        dolt_executable=executable,
        command_timeout=command_timeout,
        network_timeout=network_timeout,
        default_branch=str(fb.get("default_branch") or "main"),
        debug=final_debug,
    )

    validate_config(config)

    logger.debug(
        "Config: root=%s repo=%s chroma=%s",
        config.project_root,
        config.repository_path,
        config.chroma_data_path,
    )
    return config
