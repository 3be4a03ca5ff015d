"""Row normalization: JSON columns are always handed back as text.

asyncpg decodes json/jsonb into Python objects (see the codecs installed in
``deepsales_db.db.pool``); SQLite hands back whatever text was stored.
Application code expects one shape regardless of backend, so the known
JSON columns are serialized to compact JSON text on every read.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deepsales_db.db.backend import RawRow

logger = logging.getLogger(__name__)

JSON_COLUMNS: frozenset[str] = frozenset(
    {
        "segments",
        "criteria_scores",
        "category_scores",
        "objections",
        "mistakes",
        "mood",
    }
)


def to_json_text(value: Any) -> str:
    """Serialize to the canonical compact form, e.g. ``{"a":1}``."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def normalize_row(row: RawRow | None) -> dict[str, Any] | None:
    """Return a plain dict copy of ``row`` with JSON columns as text."""
    if row is None:
        return None
    return _normalize(row)


def normalize_rows(rows: list[Any]) -> list[dict[str, Any]]:
    """Normalize each row independently."""
    return [_normalize(row) for row in rows]


def _normalize(row: RawRow) -> dict[str, Any]:
    converted = {key: row[key] for key in row.keys()}
    for column in JSON_COLUMNS.intersection(converted):
        value = converted[column]
        if value is None or isinstance(value, str):
            continue
        try:
            converted[column] = to_json_text(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Could not serialize JSON column %s: %s", column, exc)
    return converted


def parse_json_field(value: Any, default: Any = None) -> Any:
    """Read a JSON column value that may be text, already decoded, or missing.

    Unparseable text yields ``default`` (logged) rather than an exception.
    """
    if value is None or value == "null":
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON in column value: %.50r", value)
        return default


def dump_json_field(value: Any) -> str | None:
    """Prepare a value for a JSON column.

    Valid JSON text is kept as-is; other text and objects are serialized.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            json.loads(value)
        except json.JSONDecodeError:
            return to_json_text(value)
        return value
    try:
        return to_json_text(value)
    except (TypeError, ValueError) as exc:
        logger.warning("Could not serialize value for JSON column: %s", exc)
        return None
