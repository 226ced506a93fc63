"""Tests for SQL literal escaping and statement builders."""

import json
import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from docbranch.codec.sql import (
    SCHEMA_STATEMENTS,
    build_delete_collection,
    build_delete_document,
    build_insert_document,
    build_rename_collection,
    build_select_documents,
    build_update_document,
    build_upsert_collection,
    escape_for_embedding,
    json_literal,
    quote_identifier,
    sql_literal,
    unescape_embedded,
)

# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------


class TestEscapeForEmbedding:
    def test_plain_text_unchanged(self):
        assert escape_for_embedding("hello world") == "hello world"

    def test_empty(self):
        assert escape_for_embedding("") == ""

    def test_quotes_doubled(self):
        assert escape_for_embedding("it's") == "it''s"

    def test_backslash_doubled(self):
        assert escape_for_embedding("C:\\temp") == "C:\\\\temp"

    def test_nul_escaped(self):
        assert escape_for_embedding("a\x00b") == "a\\0b"

    def test_json_windows_path_survives_both_layers(self):
        """A JSON-escaped backslash must reach the JSON parser intact."""
        payload = json.dumps({"path": "C:\\Users\\me"})
        assert payload == '{"path": "C:\\\\Users\\\\me"}'

        through_sql = unescape_embedded(escape_for_embedding(payload))

        assert through_sql == payload
        assert json.loads(through_sql) == {"path": "C:\\Users\\me"}

    def test_unescaped_backslashes_would_corrupt(self):
        """Without the outer escape the SQL lexer halves the backslashes."""
        payload = json.dumps({"path": "C:\\new"})
        corrupted = unescape_embedded(payload.replace("'", "''"))
        assert json.loads(corrupted) != {"path": "C:\\new"}


class TestUnescapeEmbedded:
    @pytest.mark.parametrize(
        "body,expected",
        [
            ("a\\nb", "a\nb"),
            ("tab\\there", "tab\there"),
            ("q\\'s", "q's"),
            ("q''s", "q's"),
            ("nul\\0", "nul\x00"),
            ("\\Z", "\x1a"),
            ("\\x", "x"),
            ("100\\%", "100\\%"),
            ("snake\\_case", "snake\\_case"),
            ("trailing\\", "trailing\\"),
        ],
    )
    def test_mysql_escapes(self, body, expected):
        assert unescape_embedded(body) == expected

    @given(st.text())
    def test_inverts_escape(self, text):
        assert unescape_embedded(escape_for_embedding(text)) == text

    @given(
        st.recursive(
            st.none() | st.booleans() | st.integers() | st.text(),
            lambda children: st.lists(children) | st.dictionaries(st.text(), children),
            max_leaves=20,
        )
    )
    def test_json_payloads_survive(self, value):
        payload = json.dumps(value)
        assert json.loads(unescape_embedded(escape_for_embedding(payload))) == value


# ---------------------------------------------------------------------------
# Literals
# ---------------------------------------------------------------------------


class TestSqlLiteral:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, "NULL"),
            (True, "TRUE"),
            (False, "FALSE"),
            (42, "42"),
            (-1.5, "-1.5"),
            ("it's", "'it''s'"),
        ],
    )
    def test_scalars(self, value, expected):
        assert sql_literal(value) == expected

    def test_dict_becomes_canonical_json(self):
        assert sql_literal({"b": 1, "a": "x"}) == '\'{"a":"x","b":1}\''

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValueError, match="non-finite"):
            sql_literal(value)

    def test_unsupported_type(self):
        with pytest.raises(TypeError, match="No SQL literal for object"):
            sql_literal(object())

    def test_json_literal_escapes_quotes_in_values(self):
        assert json_literal({"title": "Bob's"}) == '\'{"title":"Bob\'\'s"}\''

    def test_quote_identifier(self):
        assert quote_identifier("table") == "`table`"
        assert quote_identifier("we`ird") == "`we``ird`"


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


class TestStatements:
    def test_schema_creates_both_tables(self):
        assert len(SCHEMA_STATEMENTS) == 2
        assert "CREATE TABLE IF NOT EXISTS collections" in SCHEMA_STATEMENTS[0]
        assert "PRIMARY KEY (doc_id, collection_name)" in SCHEMA_STATEMENTS[1]

    def test_insert_document(self):
        sql = build_insert_document("d1", "notes", "it's", "h" * 64, {"k": 1}, None)
        assert sql.startswith("INSERT INTO documents")
        assert "'d1', 'notes', 'it''s'" in sql
        assert sql.endswith('\'{"k":1}\', NULL)')

    def test_update_document_targets_one_row(self):
        sql = build_update_document("d1", "notes", "x", "h", {}, "abc")
        assert "WHERE doc_id = 'd1' AND collection_name = 'notes'" in sql
        assert "dolt_commit = 'abc'" in sql

    def test_delete_document(self):
        assert build_delete_document("notes", "d1") == (
            "DELETE FROM documents WHERE doc_id = 'd1' AND collection_name = 'notes'"
        )

    def test_select_documents_variants(self):
        assert build_select_documents("notes").endswith(
            "WHERE collection_name = 'notes' ORDER BY doc_id"
        )
        assert "doc_id IN ('a', 'b')" in build_select_documents("notes", ["a", "b"])
        assert "AND 1 = 0" in build_select_documents("notes", [])

    def test_upsert_collection(self):
        sql = build_upsert_collection("notes", {"topic": "x"}, "abc")
        assert "ON DUPLICATE KEY UPDATE" in sql
        assert '\'{"topic":"x"}\'' in sql

    def test_rename_moves_collection_and_documents(self):
        first, second = build_rename_collection("old", "new")
        assert first.startswith("UPDATE collections SET collection_name = 'new'")
        assert second.startswith("UPDATE documents SET collection_name = 'new'")
        assert first.endswith("WHERE collection_name = 'old'")

    def test_delete_collection_removes_documents_first(self):
        docs, cols = build_delete_collection("notes")
        assert docs.startswith("DELETE FROM documents")
        assert cols.startswith("DELETE FROM collections")
