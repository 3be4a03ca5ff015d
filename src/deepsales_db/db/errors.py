"""Errors raised by the database layer itself.

Driver errors (``asyncpg.PostgresError``, ``asyncpg.InterfaceError``,
``OSError``, ``TimeoutError``, ``sqlite3.Error``) are never wrapped; they
reach the caller exactly as the driver raised them.
"""

from __future__ import annotations


class DatabaseLayerError(Exception):
    """Base class for errors detected by this package before or after I/O."""


class ParameterMismatchError(DatabaseLayerError, ValueError):
    """Placeholder count in a query differs from the number of arguments."""

    def __init__(self, expected: int, actual: int, query: str, args: str) -> None:
        """Record the counts, a truncated query and the serialized arguments."""
        self.expected = expected
        self.actual = actual
        self.query = query
        self.args_repr = args
        super().__init__(
            f"Parameter count mismatch: query has {expected} placeholders (?) "
            f"but {actual} parameters provided. Query: {query}, Params: {args}"
        )


class GeneratedIdError(DatabaseLayerError):
    """An INSERT reported an ``id`` that is not an integer."""


class InvalidDatabaseNameError(DatabaseLayerError, ValueError):
    """A database name is not a safe PostgreSQL identifier."""


class TenantNotFoundError(DatabaseLayerError):
    """A tenant database does not exist or cannot be reached."""


class TransactionFinishedError(DatabaseLayerError):
    """A statement was issued on a transaction that was already committed or rolled back."""
