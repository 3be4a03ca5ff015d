"""Statement inspection and rewriting shared by the backends."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any

from deepsales_db.db.errors import GeneratedIdError

logger = logging.getLogger(__name__)

GENERATED_ID_COLUMN = "id"

_TRAILING_TERMINATOR_RE = re.compile(r";?\s*$")
_RETURNING_RE = re.compile(r"\bRETURNING\b", re.IGNORECASE)
_CONTROL_RE = re.compile(
    r"^\s*(BEGIN|COMMIT|ROLLBACK|END)(\s+(TRANSACTION|WORK))?\s*$",
    re.IGNORECASE,
)


def is_insert(sql: str) -> bool:
    """Return True if the statement's leading keyword is INSERT."""
    return sql.lstrip().upper().startswith("INSERT")


def with_returning_id(sql: str) -> str:
    """Append ``RETURNING id`` to an INSERT that does not already return something."""
    if _RETURNING_RE.search(sql):
        return sql
    return _TRAILING_TERMINATOR_RE.sub("", sql, count=1) + f" RETURNING {GENERATED_ID_COLUMN}"


def parse_generated_id(value: Any) -> int | None:
    """Coerce a returned ``id`` to int.

    Non-integer keys (UUIDs, composite keys, free text) raise
    GeneratedIdError instead of producing a wrong id.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise GeneratedIdError(f"Generated id is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    raise GeneratedIdError(f"Generated id is not an integer: {value!r}")


def last_generated_id(rows: Sequence[Any]) -> int | None:
    """Return the ``id`` of the last returned row, if the rows carry one."""
    if not rows:
        return None
    last = rows[-1]
    if GENERATED_ID_COLUMN not in last.keys():
        return None
    return parse_generated_id(last[GENERATED_ID_COLUMN])


def parse_rowcount(status: str | None) -> int:
    """Parse the affected row count from a PostgreSQL command tag.

    Examples: "INSERT 0 1" → 1, "UPDATE 3" → 3, "DELETE 0" → 0,
    "CREATE TABLE" → 0.
    """
    if not status:
        return 0
    parts = status.split()
    if len(parts) >= 2:
        try:
            return int(parts[-1])
        except ValueError:
            pass
    return 0


def is_control_statement(sql: str) -> bool:
    """Return True for bare BEGIN/COMMIT/ROLLBACK/END statements."""
    return _CONTROL_RE.match(sql) is not None


def split_script(script: str | Iterable[str]) -> list[str]:
    """Split a script into the statements a wrapping transaction should run.

    A string is split on ``;``. That is only safe for trusted, static
    scripts: a ``;`` inside a string literal or a function body splits the
    statement. Prefer passing a list of statements.

    Empty statements and transaction control statements are dropped; the
    caller owns the transaction boundaries.
    """
    pieces = script.split(";") if isinstance(script, str) else list(script)
    statements = []
    for piece in pieces:
        statement = piece.strip()
        if not statement:
            continue
        if is_control_statement(statement):
            logger.debug("Skipping transaction control statement in script: %s", statement)
            continue
        statements.append(statement)
    return statements
