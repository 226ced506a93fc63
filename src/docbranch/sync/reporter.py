"""Result formatting for sync operations.

Provides human-readable and machine-readable output:

- ``format_sync_result`` -- post-operation summary.
- ``format_local_changes`` -- pending changes grouped by collection.
- ``format_conflicts`` -- row and collection conflicts for manual review.
- ``format_merge_preview`` and ``preview_to_response`` -- merge previews.
- ``result_to_response`` -- structured dict with ``success``, a stable
  ``error`` code and operation payload.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import (
    COLLECTION_CONFLICT,
    LOCAL_CHANGES_EXIST,
    MERGE_CONFLICT,
    NO_CHANGES,
    OPERATION_FAILED,
    build_error_response,
)
from .models import MergeResult, SyncStatus

if TYPE_CHECKING:
    from .models import (
        CollectionConflict,
        DocumentConflict,
        LocalChanges,
        MergePreview,
        SyncResult,
    )

# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_local_changes(changes: LocalChanges) -> str:
    """Format pending changes grouped by collection.

    Collections without changes are omitted.
    """
    if not changes.has_changes:
        return "No local changes."

    summary = changes.summary()
    lines = [
        f"{changes.total} local changes: "
        f"{summary['new_documents']} new, "
        f"{summary['modified_documents']} modified, "
        f"{summary['deleted_documents']} deleted"
    ]
    for change_set in changes.changes:
        lines.append(f"  {change_set.collection}:")
        for doc in change_set.new:
            lines.append(f"    + {doc.doc_id}")
        for doc in change_set.modified:
            lines.append(f"    ~ {doc.doc_id}")
        for record in change_set.deleted:
            lines.append(f"    - {record.doc_id}")
    if changes.collection_changes:
        lines.append("  collection changes:")
        for event in changes.collection_changes:
            target = f" -> {event.new_name}" if event.new_name else ""
            lines.append(f"    {event.kind.value} {event.old_name}{target}")
    if changes.stale_collections:
        lines.append("  collection rows:")
        for collection in changes.stale_collections:
            lines.append(f"    ~ {collection.name}")
    return "\n".join(lines)


def format_conflicts(
    conflicts: list[DocumentConflict],
    collection_conflicts: list[CollectionConflict] | None = None,
) -> str:
    lines: list[str] = []
    for conflict in collection_conflicts or []:
        lines.append(f"Collection {conflict.collection}: {conflict.reason}")
    for conflict in conflicts:
        lines.append(
            f"{conflict.collection}/{conflict.doc_id}: {conflict.conflict_type}"
        )
    return "\n".join(lines) if lines else "No conflicts."


def format_merge_preview(preview: MergePreview) -> str:
    lines = [f"Merge preview: {preview.source_branch} -> {preview.target_branch}"]
    if preview.up_to_date:
        lines.append("Already up to date.")
    else:
        lines.append(
            f"{preview.added} added, {preview.modified} modified, {preview.deleted} deleted"
        )
    if preview.collections_changed:
        lines.append(f"{preview.collections_changed} collection changes")
    if preview.has_conflicts:
        lines.append(format_conflicts(preview.conflicts, preview.collection_conflicts))
    if preview.local_changes is not None:
        lines.append(
            f"{preview.local_changes.total} uncommitted local changes block the merge"
        )
    return "\n".join(lines)


def format_sync_result(result: SyncResult) -> str:
    """Format a commit, merge, checkout, pull or reset outcome.

    Args:
        result: The operation result.

    Returns:
        Multi-line formatted string.
    """
    lines = [f"[{result.status.value.upper()}] {result.message}".rstrip()]

    match result.status:
        case SyncStatus.COMPLETED:
            if result.commit_hash:
                lines.append(f"Commit: {result.commit_hash}")
            lines.append(
                f"{result.added} added, {result.modified} modified, "
                f"{result.deleted} deleted"
            )
            if result.collections_changed:
                lines.append(f"{result.collections_changed} collection changes")
            if isinstance(result, MergeResult) and result.resolved_conflicts:
                lines.append(
                    f"{result.resolved_conflicts} conflicts resolved with "
                    f"'{result.strategy}'"
                )
        case SyncStatus.LOCAL_CHANGES_EXIST:
            if result.local_changes is not None:
                lines.append(format_local_changes(result.local_changes))
            lines.append("Commit the changes or pass force=True.")
        case SyncStatus.CONFLICT:
            lines.append(format_conflicts(result.conflicts, result.collection_conflicts))
        case SyncStatus.FAILED:
            if result.error:
                lines.append(f"Error code: {result.error}")
        case SyncStatus.NO_CHANGES:
            pass

    return "\n".join(lines)


# ------------------------------------------------------------------
# Structured output
# ------------------------------------------------------------------


def _counts(result: SyncResult) -> dict[str, int]:
    return {
        "added": result.added,
        "modified": result.modified,
        "deleted": result.deleted,
        "collections_changed": result.collections_changed,
    }


def _merge_fields(result: SyncResult) -> dict[str, Any]:
    if not isinstance(result, MergeResult):
        return {}
    return {
        "source_branch": result.source_branch,
        "target_branch": result.target_branch,
        "strategy": result.strategy,
    }


def result_to_response(result: SyncResult) -> dict[str, Any]:
    """Convert a result into a structured dict for the caller.

    Failures carry a stable ``error`` code: ``NO_CHANGES``,
    ``LOCAL_CHANGES_EXIST``, ``MERGE_CONFLICT``, ``COLLECTION_CONFLICT``
    or the code of the error that stopped the operation.

    Args:
        result: The operation result.

    Returns:
        Dict with ``success``, ``message`` and operation payload.
    """
    extra = _merge_fields(result)

    match result.status:
        case SyncStatus.COMPLETED:
            response: dict[str, Any] = {
                "success": True,
                "message": result.message,
                "commit_hash": result.commit_hash,
                **_counts(result),
                **extra,
            }
            if isinstance(result, MergeResult):
                response["resolved_conflicts"] = result.resolved_conflicts
            return response
        case SyncStatus.NO_CHANGES:
            return build_error_response(
                NO_CHANGES,
                result.message or "No changes to commit",
                **extra,
            )
        case SyncStatus.LOCAL_CHANGES_EXIST:
            local = result.local_changes
            total = local.total if local is not None else 0
            return build_error_response(
                LOCAL_CHANGES_EXIST,
                f"Cannot proceed: {total} uncommitted local changes",
                "Commit them with dolt_commit first, or retry with force=True "
                "to discard them.",
                local_changes=local.summary() if local is not None else {},
                **extra,
            )
        case SyncStatus.CONFLICT if result.collection_conflicts and not result.conflicts:
            return build_error_response(
                COLLECTION_CONFLICT,
                result.message,
                "Retry with strategy='ours' or strategy='theirs'.",
                collection_conflicts=[
                    {
                        "collection": c.collection,
                        "reason": c.reason,
                        "ours": c.ours.kind.value,
                        "theirs": c.theirs.kind.value,
                    }
                    for c in result.collection_conflicts
                ],
                **extra,
            )
        case SyncStatus.CONFLICT:
            return build_error_response(
                MERGE_CONFLICT,
                result.message,
                "Resolve manually or retry with strategy='ours' or strategy='theirs'.",
                conflicts=[
                    {
                        "collection": c.collection,
                        "doc_id": c.doc_id,
                        "conflict_type": c.conflict_type,
                    }
                    for c in result.conflicts
                ],
                **extra,
            )
        case _:
            return build_error_response(
                result.error or OPERATION_FAILED,
                result.message or "Operation failed",
                **extra,
            )


def preview_to_response(preview: MergePreview) -> dict[str, Any]:
    """Structured merge preview; ``success`` means the preview itself ran."""
    local = preview.local_changes
    return {
        "success": True,
        "can_auto_merge": preview.can_auto_merge,
        "source_branch": preview.source_branch,
        "target_branch": preview.target_branch,
        "up_to_date": preview.up_to_date,
        "has_conflicts": preview.has_conflicts,
        "total_conflicts": len(preview.conflicts) + len(preview.collection_conflicts),
        "affected_collections": sorted(
            {c.collection for c in preview.conflicts}
            | {c.collection for c in preview.collection_conflicts}
        ),
        "changes_preview": {
            "added": preview.added,
            "modified": preview.modified,
            "deleted": preview.deleted,
            "collections_changed": preview.collections_changed,
        },
        "conflicts": [
            {
                "collection": c.collection,
                "doc_id": c.doc_id,
                "conflict_type": c.conflict_type,
            }
            for c in preview.conflicts
        ],
        "local_changes": local.summary() if local is not None else {},
    }
