"""Process-wide locks serializing writes per repository and collection.

Dolt is a single-writer, file-locked resource: at most one commit, merge,
checkout, pull or reset may run against a repository at a time, and
concurrent callers block until it finishes.  Document-store mutations
take the lock of each collection they touch so they cannot interleave
with an in-flight write on the same collection.  Read-only calls
(status, log) take no lock.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)


class LockRegistry:
    """Hands out one re-entrant lock per repository and per collection."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._repo_locks: dict[str, threading.RLock] = {}
        self._collection_locks: dict[tuple[str, str], threading.RLock] = {}

    @staticmethod
    def _key(repo_path: Path | str) -> str:
        return str(Path(repo_path).resolve())

    def repository_lock(self, repo_path: Path | str) -> threading.RLock:
        key = self._key(repo_path)
        with self._guard:
            return self._repo_locks.setdefault(key, threading.RLock())

    def collection_lock(self, repo_path: Path | str, collection: str) -> threading.RLock:
        key = (self._key(repo_path), collection)
        with self._guard:
            return self._collection_locks.setdefault(key, threading.RLock())

    @contextmanager
    def write(self, repo_path: Path | str, operation: str = "write") -> Iterator[None]:
        """Hold the repository's write lock for the duration of the block."""
        lock = self.repository_lock(repo_path)
        if not lock.acquire(blocking=False):
            logger.debug("Waiting for %s lock on %s", operation, repo_path)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def collections(
        self, repo_path: Path | str, names: Iterable[str]
    ) -> Iterator[None]:
        """Hold several collection locks, acquired in sorted order."""
        with ExitStack() as stack:
            for name in sorted(set(names)):
                stack.enter_context(self.collection_lock(repo_path, name))
            yield


# Shared by every engine in the process so two engines on one repo serialize
default_registry = LockRegistry()
