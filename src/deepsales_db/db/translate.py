"""Positional ``?`` placeholders to asyncpg's ``$N`` form."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any, NamedTuple

from deepsales_db.db.errors import ParameterMismatchError

PLACEHOLDER = "?"

# Pre-compiled regex for placeholder translation
_PLACEHOLDER_RE = re.compile(r"\?")

_QUERY_PREVIEW_CHARS = 100


class TranslatedQuery(NamedTuple):
    """A query rewritten for the driver, with its arguments in bind order."""

    sql: str
    args: tuple[Any, ...]


def count_placeholders(sql: str) -> int:
    """Count ``?`` placeholders, including any inside string literals."""
    return sql.count(PLACEHOLDER)


def check_arity(sql: str, args: Sequence[Any]) -> None:
    """Raise ParameterMismatchError unless every ``?`` has exactly one argument."""
    expected = count_placeholders(sql)
    if expected != len(args):
        raise ParameterMismatchError(
            expected=expected,
            actual=len(args),
            query=_preview(sql),
            args=json.dumps(list(args), default=str, ensure_ascii=False),
        )


def translate_query(sql: str, args: Sequence[Any] = ()) -> TranslatedQuery:
    """Convert ``?`` placeholders to ``$1, $2, ...`` for asyncpg.

    The Nth ``?`` in source order binds to ``args[N-1]``.
    """
    check_arity(sql, args)
    counter = 0

    def _replace(_match: re.Match[str]) -> str:
        nonlocal counter
        counter += 1
        return f"${counter}"

    return TranslatedQuery(_PLACEHOLDER_RE.sub(_replace, sql), tuple(args))


def _preview(sql: str) -> str:
    if len(sql) > _QUERY_PREVIEW_CHARS:
        return sql[:_QUERY_PREVIEW_CHARS] + "..."
    return sql
