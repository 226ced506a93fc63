"""SQL literal escaping and statement builders for the Dolt tables.

Every statement the engine sends to Dolt is built here.  Values are never
concatenated into SQL anywhere else.

JSON payloads are embedded in MySQL single-quoted literals, so they pass
through two parsers: the SQL lexer first, then the JSON parser.  The SQL
layer's escape character (backslash) must be escaped before quoting, or a
JSON ``\\\\`` written for a Windows path reaches the JSON parser as ``\\``
and corrupts the value.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

from .values import canonical_json

DOCUMENTS_TABLE = "documents"
COLLECTIONS_TABLE = "collections"

# Outer-layer escapes recognised by the MySQL string lexer
_MYSQL_ESCAPES = {
    "0": "\x00",
    "'": "'",
    '"': '"',
    "b": "\b",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "Z": "\x1a",
    "\\": "\\",
}

SCHEMA_STATEMENTS: tuple[str, ...] = (
    f"""CREATE TABLE IF NOT EXISTS {COLLECTIONS_TABLE} (
    collection_name VARCHAR(255) NOT NULL PRIMARY KEY,
    metadata JSON,
    sync_status VARCHAR(32) NOT NULL DEFAULT 'synced',
    dolt_commit VARCHAR(64),
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
)""",
    f"""CREATE TABLE IF NOT EXISTS {DOCUMENTS_TABLE} (
    doc_id VARCHAR(512) NOT NULL,
    collection_name VARCHAR(255) NOT NULL,
    content LONGTEXT,
    content_hash CHAR(64) NOT NULL,
    metadata JSON,
    dolt_commit VARCHAR(64),
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (doc_id, collection_name)
)""",
)


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------


def escape_for_embedding(text: str) -> str:
    """Escape *text* for the body of a MySQL single-quoted literal.

    Backslashes are doubled first so that escapes produced by an inner
    serializer (JSON ``\\\\``, ``\\"``, ``\\uXXXX``) survive the SQL lexer
    intact.  Single quotes are doubled and NUL becomes ``\\0``.
    """
    if not text:
        return text
    return (
        text.replace("\\", "\\\\")
        .replace("'", "''")
        .replace("\x00", "\\0")
    )


def unescape_embedded(text: str) -> str:
    """Undo the SQL lexer layer: parse the body of a single-quoted literal.

    Understands doubled quotes and the MySQL backslash escapes.  ``\\%``
    and ``\\_`` keep their backslash, as MySQL does; any other escaped
    character stands for itself.
    """
    if "\\" not in text and "''" not in text:
        return text

    out: list[str] = []
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch == "\\" and i + 1 < length:
            nxt = text[i + 1]
            if nxt in ("%", "_"):
                out.append("\\" + nxt)
            else:
                out.append(_MYSQL_ESCAPES.get(nxt, nxt))
            i += 2
        elif ch == "'" and i + 1 < length and text[i + 1] == "'":
            out.append("'")
            i += 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def quote_identifier(name: str) -> str:
    """Quote a table or column identifier with backticks."""
    return "`" + name.replace("`", "``") + "`"


def sql_literal(value: Any) -> str:
    """Render a Python value as a SQL literal.

    Raises:
        ValueError: For non-finite floats.
        TypeError: For values with no SQL representation.
    """
    match value:
        case None:
            return "NULL"
        case bool():
            return "TRUE" if value else "FALSE"
        case int():
            return str(value)
        case float():
            if not math.isfinite(value):
                raise ValueError(f"Cannot store non-finite number {value!r}")
            return repr(value)
        case str():
            return f"'{escape_for_embedding(value)}'"
        case dict() | list() | tuple():
            return json_literal(value)
        case _:
            raise TypeError(
                f"No SQL literal for {type(value).__name__}"
            )


def json_literal(value: Any) -> str:
    """Serialize *value* as canonical JSON inside a SQL string literal."""
    return f"'{escape_for_embedding(canonical_json(value))}'"


def _in_list(values: Iterable[Any]) -> str:
    return ", ".join(sql_literal(v) for v in values)


# ---------------------------------------------------------------------------
# Document statements
# ---------------------------------------------------------------------------


def build_insert_document(
    doc_id: str,
    collection: str,
    content: str,
    content_hash: str,
    metadata: dict[str, Any],
    dolt_commit: str | None,
) -> str:
    return (
        f"INSERT INTO {DOCUMENTS_TABLE} "
        "(doc_id, collection_name, content, content_hash, metadata, dolt_commit) "
        f"VALUES ({sql_literal(doc_id)}, {sql_literal(collection)}, "
        f"{sql_literal(content)}, {sql_literal(content_hash)}, "
        f"{json_literal(metadata)}, {sql_literal(dolt_commit)})"
    )


def build_update_document(
    doc_id: str,
    collection: str,
    content: str,
    content_hash: str,
    metadata: dict[str, Any],
    dolt_commit: str | None,
) -> str:
    return (
        f"UPDATE {DOCUMENTS_TABLE} SET "
        f"content = {sql_literal(content)}, "
        f"content_hash = {sql_literal(content_hash)}, "
        f"metadata = {json_literal(metadata)}, "
        f"dolt_commit = {sql_literal(dolt_commit)}, "
        "updated_at = CURRENT_TIMESTAMP "
        f"WHERE doc_id = {sql_literal(doc_id)} "
        f"AND collection_name = {sql_literal(collection)}"
    )


def build_delete_document(collection: str, doc_id: str) -> str:
    return (
        f"DELETE FROM {DOCUMENTS_TABLE} "
        f"WHERE doc_id = {sql_literal(doc_id)} "
        f"AND collection_name = {sql_literal(collection)}"
    )


def build_select_documents(
    collection: str, doc_ids: Iterable[str] | None = None
) -> str:
    sql = (
        "SELECT doc_id, collection_name, content, content_hash, metadata, "
        f"dolt_commit FROM {DOCUMENTS_TABLE} "
        f"WHERE collection_name = {sql_literal(collection)}"
    )
    if doc_ids is not None:
        ids = list(doc_ids)
        if not ids:
            return sql + " AND 1 = 0"
        sql += f" AND doc_id IN ({_in_list(ids)})"
    return sql + " ORDER BY doc_id"


# ---------------------------------------------------------------------------
# Collection statements
# ---------------------------------------------------------------------------


def build_select_collections() -> str:
    return (
        "SELECT collection_name, metadata, sync_status, dolt_commit "
        f"FROM {COLLECTIONS_TABLE} ORDER BY collection_name"
    )


def build_upsert_collection(
    name: str, metadata: dict[str, Any], dolt_commit: str | None
) -> str:
    return (
        f"INSERT INTO {COLLECTIONS_TABLE} "
        "(collection_name, metadata, sync_status, dolt_commit) "
        f"VALUES ({sql_literal(name)}, {json_literal(metadata)}, 'synced', "
        f"{sql_literal(dolt_commit)}) "
        "ON DUPLICATE KEY UPDATE metadata = VALUES(metadata), "
        "sync_status = 'synced', dolt_commit = VALUES(dolt_commit), "
        "updated_at = CURRENT_TIMESTAMP"
    )


def build_rename_collection(old_name: str, new_name: str) -> list[str]:
    """Statements moving a collection row and its documents to *new_name*."""
    return [
        f"UPDATE {COLLECTIONS_TABLE} SET collection_name = {sql_literal(new_name)} "
        f"WHERE collection_name = {sql_literal(old_name)}",
        f"UPDATE {DOCUMENTS_TABLE} SET collection_name = {sql_literal(new_name)} "
        f"WHERE collection_name = {sql_literal(old_name)}",
    ]


def build_delete_collection(name: str) -> list[str]:
    return [
        f"DELETE FROM {DOCUMENTS_TABLE} WHERE collection_name = {sql_literal(name)}",
        f"DELETE FROM {COLLECTIONS_TABLE} WHERE collection_name = {sql_literal(name)}",
    ]


# ---------------------------------------------------------------------------
# Conflict statements
# ---------------------------------------------------------------------------


def build_select_document_conflicts() -> str:
    return (
        "SELECT base_doc_id, base_collection_name, base_content_hash, "
        "our_doc_id, our_collection_name, our_content_hash, "
        "their_doc_id, their_collection_name, their_content_hash "
        f"FROM dolt_conflicts_{DOCUMENTS_TABLE}"
    )


def build_select_conflicted_tables() -> str:
    return "SELECT `table`, num_conflicts FROM dolt_conflicts"
