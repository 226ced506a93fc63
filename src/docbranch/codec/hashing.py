"""Content hashing shared by both sides of change detection.

Live documents and Dolt rows are hashed through the same normalisation so
that a document written to Dolt and read back never looks modified.
"""

from __future__ import annotations

import hashlib
import math
from typing import Any

from .values import canonical_json

# Keys the engine writes into metadata itself; they never count as edits
ENGINE_METADATA_KEYS = frozenset({"content_hash", "dolt_commit", "synced_at"})


def normalize_content(content: str | None) -> str:
    """Strip a leading BOM and convert CRLF line endings to LF."""
    if not content:
        return ""
    return content.lstrip("\ufeff").replace("\r\n", "\n")


def _normalize_value(value: Any) -> Any:
    # JSON columns may hand back 1.0 as 1
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def normalize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Drop engine-written keys and normalise numbers for hashing."""
    if not metadata:
        return {}
    return {
        str(key): _normalize_value(value)
        for key, value in metadata.items()
        if key not in ENGINE_METADATA_KEYS
    }


def document_hash(content: str | None, metadata: dict[str, Any] | None = None) -> str:
    """SHA-256 hex digest of a document's normalised content and metadata.

    The digest covers canonical JSON of ``{"content", "metadata"}`` so key
    order, BOMs and line endings never influence the result.
    """
    payload = {
        "content": normalize_content(content),
        "metadata": normalize_metadata(metadata),
    }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
