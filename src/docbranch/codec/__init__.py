"""Translation between document-store values and Dolt's textual forms."""

from .hashing import document_hash, normalize_content
from .sql import escape_for_embedding, json_literal, sql_literal, unescape_embedded
from .terminal import strip_control_sequences
from .values import canonical_json, extract_metadata, extract_typed_value

__all__ = [
    "canonical_json",
    "document_hash",
    "escape_for_embedding",
    "extract_metadata",
    "extract_typed_value",
    "json_literal",
    "normalize_content",
    "sql_literal",
    "strip_control_sequences",
    "unescape_embedded",
]
