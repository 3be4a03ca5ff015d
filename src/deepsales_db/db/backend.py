"""Database backend protocol: the SQLite-style call contract.

Application code programs against these protocols. Each backend (Postgres,
SQLite, ...) provides a concrete implementation. All application SQL uses
``?`` placeholders; dialect differences (``$N`` markers, ``RETURNING id``)
are handled inside the backend, not in application code.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from deepsales_db.models.result import MutationResult

Row = dict[str, Any]


@runtime_checkable
class RawRow(Protocol):
    """A driver row supporting named access (asyncpg.Record, sqlite3.Row)."""

    def __getitem__(self, key: Any) -> Any:
        """Get a column value by name."""
        ...

    def keys(self) -> Any:
        """Return column names."""
        ...


@runtime_checkable
class Executor(Protocol):
    """Statement execution shared by databases and transactions."""

    async def fetch_one(self, sql: str, *args: Any) -> Row | None:
        """Return the first row, or None if the query produced no rows."""
        ...

    async def fetch_all(self, sql: str, *args: Any) -> list[Row]:
        """Return every row; an empty result is an empty list."""
        ...

    async def execute(self, sql: str, *args: Any) -> MutationResult:
        """Run a mutation and report the generated id and affected rows."""
        ...


@runtime_checkable
class Transaction(Executor, Protocol):
    """A unit of work bound to one exclusively held connection."""

    async def commit(self) -> None:
        """Commit and give the connection back."""
        ...

    async def rollback(self) -> None:
        """Roll back and give the connection back."""
        ...


@runtime_checkable
class Database(Executor, Protocol):
    """Async database handle.

    Every top-level call borrows a connection for the duration of that call
    only. Use ``begin()`` when several statements must be atomic.
    """

    async def execute_script(self, script: str | Sequence[str]) -> None:
        """Run several statements atomically (DDL, seed data)."""
        ...

    async def begin(self) -> Transaction:
        """Start a transaction on a dedicated connection."""
        ...

    async def ping(self) -> bool:
        """Run a trivial query and report whether it succeeded."""
        ...
