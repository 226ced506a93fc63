"""Typed decoding of ``dolt sql -r json`` result fields.

Dolt returns JSON columns either as flat strings or as nested objects
depending on version and column type, so every field is decoded by
switching on its runtime shape instead of assuming a string.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

Scalar = str | int | float | bool | None


def canonical_json(value: Any) -> str:
    """Serialize *value* deterministically (sorted keys, compact, UTF-8)."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def extract_typed_value(raw: Any) -> Scalar:
    """Decode one result field into a scalar.

    Scalars pass through unchanged; objects and arrays are re-serialized
    as canonical JSON text.

    Raises:
        TypeError: For values that cannot come out of a JSON decoder.
    """
    match raw:
        case None:
            return None
        case bool():
            return raw
        case int() | float():
            return raw
        case str():
            return raw
        case dict() | list():
            return canonical_json(raw)
        case _:
            raise TypeError(
                f"Unsupported result field type: {type(raw).__name__}"
            )


def extract_text(raw: Any) -> str:
    """Decode a field the caller expects to be text.

    ``None`` becomes ``""``, booleans become ``true``/``false`` and
    composites are re-serialized.
    """
    value = extract_typed_value(raw)
    match value:
        case None:
            return ""
        case bool():
            return "true" if value else "false"
        case str():
            return value
        case _:
            return str(value)


def extract_metadata(raw: Any, entity: str = "") -> dict[str, Any]:
    """Decode a metadata column that may arrive as an object or as text.

    Malformed or non-object payloads are logged with *entity* and
    decoded as ``{}``.
    """
    match raw:
        case None | "":
            return {}
        case dict():
            return dict(raw)
        case str():
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError as exc:
                logger.warning(
                    "Malformed metadata JSON for %s, using empty metadata: %s",
                    entity or "<unknown>",
                    exc,
                )
                return {}
            if isinstance(decoded, dict):
                return decoded
            if decoded is None:
                return {}
            logger.warning(
                "Metadata for %s is a JSON %s, not an object; ignoring",
                entity or "<unknown>",
                type(decoded).__name__,
            )
            return {}
        case _:
            logger.warning(
                "Unexpected metadata shape %s for %s; ignoring",
                type(raw).__name__,
                entity or "<unknown>",
            )
            return {}


def parse_result_rows(output: str) -> list[dict[str, Any]]:
    """Parse the ``{"rows": [...]}`` document printed by ``dolt sql -r json``.

    Empty output (statements without a result set) yields ``[]``.

    Raises:
        ValueError: If the output is not a JSON result document.
    """
    text = output.strip()
    if not text:
        return []
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Unparseable query output: {exc}") from exc

    match decoded:
        case {"rows": list() as rows}:
            return [row for row in rows if isinstance(row, dict)]
        case {}:
            return []
        case _:
            raise ValueError(
                f"Unexpected query output shape: {type(decoded).__name__}"
            )
