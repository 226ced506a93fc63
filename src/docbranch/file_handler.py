"""File handler module: atomic JSON persistence and resilient tree removal.

Temporary copies of the document store's persistent directory can stay
locked for a short while after their client closes (SQLite WAL files,
antivirus scanners on Windows).  ``remove_tree_with_retry`` absorbs that
contention; every other helper here is plain file I/O.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

_TRANSIENT_ERRNOS = frozenset({errno.EBUSY, errno.EACCES, errno.EPERM, errno.ENOTEMPTY})

# =============================================================================
# JSON Read/Write
# =============================================================================


def read_json(path: Path) -> Any:
    """Read and decode a UTF-8 JSON file (BOM tolerated)."""
    with open(path, encoding="utf-8-sig") as fh:
        return json.load(fh)


def write_json_atomic(path: Path, data: Any) -> None:
    """Persist *data* as JSON, atomically replacing *path*.

    Writes to a temporary file in the same directory then calls
    ``os.replace()`` so readers never see partial data.  Creates the
    parent directory if needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# =============================================================================
# Tree removal
# =============================================================================


def _is_transient(exc: OSError) -> bool:
    return isinstance(exc, PermissionError) or exc.errno in _TRANSIENT_ERRNOS


def remove_tree_with_retry(
    path: Path,
    attempts: int = 5,
    base_delay: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Remove a directory tree, retrying transient file-lock errors.

    Waits ``base_delay * 2**n`` seconds between attempts.  When every
    attempt fails the error is logged as a warning and ``False`` is
    returned; this never raises for lock contention.

    Args:
        path: Directory to remove.  A missing path counts as removed.
        attempts: Maximum number of removal attempts.
        base_delay: Initial backoff in seconds.
        sleep: Sleep function (injectable for tests).

    Returns:
        ``True`` if the tree is gone, ``False`` if retries were exhausted.

    Raises:
        OSError: For non-transient failures (e.g. ``ENAMETOOLONG``).
    """
    for attempt in range(1, attempts + 1):
        if not path.exists():
            return True
        try:
            shutil.rmtree(path)
            return True
        except FileNotFoundError:
            return True
        except OSError as exc:
            if not _is_transient(exc):
                raise
            if attempt == attempts:
                logger.warning(
                    "Giving up removing %s after %d attempts: %s",
                    path,
                    attempts,
                    exc,
                )
                return False
            delay = base_delay * (2 ** (attempt - 1))
            logger.debug(
                "Removing %s failed (attempt %d/%d), retrying in %.2fs: %s",
                path,
                attempt,
                attempts,
                delay,
                exc,
            )
            sleep(delay)
    return not path.exists()
