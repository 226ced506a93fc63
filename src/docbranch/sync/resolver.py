"""Conflict detection and resolution strategies for merges.

Collection-level conflicts are detected from the bookkeeping change
events of both branches before Dolt is asked to merge.  Row-level
conflicts are reported by Dolt itself and resolved (or not) through a
``ConflictResolver``:

- ``ReportOnlyResolver``: never picks a side; every conflict is returned
  to the caller and the merge is aborted.
- ``OursResolver``: keeps the current branch's values.
- ``TheirsResolver``: takes the merged-in branch's values.

The ``create_resolver()`` factory maps strategy strings to resolvers.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .models import (
    CollectionChange,
    CollectionChangeKind,
    CollectionConflict,
    DocumentConflict,
)

logger = logging.getLogger(__name__)

SKIP = "skip"
OURS = "ours"
THEIRS = "theirs"


# ---------------------------------------------------------------------------
# Collection conflict detection
# ---------------------------------------------------------------------------


def _conflict_reason(ours: CollectionChange, theirs: CollectionChange) -> str | None:
    """Return why two events on the same collection conflict, or None."""
    kinds = {ours.kind, theirs.kind}
    rename = CollectionChangeKind.RENAME
    update = CollectionChangeKind.METADATA_UPDATE
    delete = CollectionChangeKind.DELETE

    if kinds == {rename}:
        if ours.new_name != theirs.new_name:
            return (
                f"renamed to '{ours.new_name}' on {ours.branch} "
                f"and to '{theirs.new_name}' on {theirs.branch}"
            )
        return None
    if kinds == {rename, update}:
        return "renamed on one branch while its metadata was updated on the other"
    if kinds == {update}:
        if ours.new_metadata != theirs.new_metadata:
            return "metadata updated differently on both branches"
        return None
    if delete in kinds and kinds != {delete}:
        return "deleted on one branch while modified on the other"
    return None


def detect_collection_conflicts(
    ours: list[CollectionChange],
    theirs: list[CollectionChange],
) -> list[CollectionConflict]:
    """Pair up unmerged events of two branches that touch the same collection.

    Args:
        ours: Unmerged events of the branch being merged into.
        theirs: Unmerged events of the branch being merged in.

    Returns:
        One ``CollectionConflict`` per conflicting pair.
    """
    conflicts: list[CollectionConflict] = []
    for our_change in ours:
        for their_change in theirs:
            if our_change.old_name != their_change.old_name:
                continue
            reason = _conflict_reason(our_change, their_change)
            if reason is None:
                continue
            logger.info(
                "Collection conflict on %s: %s (changes %d/%d)",
                our_change.old_name,
                reason,
                our_change.id,
                their_change.id,
            )
            conflicts.append(
                CollectionConflict(
                    collection=our_change.old_name,
                    ours=our_change,
                    theirs=their_change,
                    reason=reason,
                )
            )
    return conflicts


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, conflict: DocumentConflict) -> str:
        """Return ``"ours"``, ``"theirs"`` or ``"skip"`` for a row conflict."""
        ...  # pragma: no cover

    def resolve_collection(self, conflict: CollectionConflict) -> str:
        """Return ``"ours"``, ``"theirs"`` or ``"skip"`` for a collection conflict."""
        ...  # pragma: no cover


class ReportOnlyResolver:
    """Leave every conflict to the caller.

    Conflicts seen are accumulated in ``pending_conflicts`` and
    ``pending_collection_conflicts``.
    """

    def __init__(self) -> None:
        self.pending_conflicts: list[DocumentConflict] = []
        self.pending_collection_conflicts: list[CollectionConflict] = []

    def resolve(self, conflict: DocumentConflict) -> str:
        self.pending_conflicts.append(conflict)
        return SKIP

    def resolve_collection(self, conflict: CollectionConflict) -> str:
        self.pending_collection_conflicts.append(conflict)
        return SKIP


class OursResolver:
    """Always keep the current branch's side."""

    def resolve(self, conflict: DocumentConflict) -> str:
        return OURS

    def resolve_collection(self, conflict: CollectionConflict) -> str:
        return OURS


class TheirsResolver:
    """Always take the merged-in branch's side."""

    def resolve(self, conflict: DocumentConflict) -> str:
        return THEIRS

    def resolve_collection(self, conflict: CollectionConflict) -> str:
        return THEIRS


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str | None, type] = {
    None: ReportOnlyResolver,
    OURS: OursResolver,
    THEIRS: TheirsResolver,
}


def create_resolver(strategy: str | None) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: ``None`` (report only), ``"ours"`` or ``"theirs"``.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. "
            f"Valid strategies: {[OURS, THEIRS]} or none"
        )
    return cls()  # type: ignore[return-value]
