"""PostgreSQL implementation of the Database protocol.

Uses asyncpg. All application SQL uses ``?`` placeholders; this backend
translates them to ``$N`` at execute time, appends ``RETURNING id`` to
inserts so callers get a SQLite-style last inserted id, and turns JSON
columns back into text on every read.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from deepsales_db.db.backend import Row
from deepsales_db.db.errors import GeneratedIdError, TransactionFinishedError
from deepsales_db.db.normalize import normalize_row, normalize_rows
from deepsales_db.db.statements import (
    GENERATED_ID_COLUMN,
    is_insert,
    last_generated_id,
    parse_rowcount,
    split_script,
    with_returning_id,
)
from deepsales_db.db.translate import TranslatedQuery, translate_query
from deepsales_db.models.result import MutationResult

logger = logging.getLogger(__name__)

# Errors that mean "the database could not be reached or answered badly".
CONNECTIVITY_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
)

# Column types accepted for a generated ``id``
_INTEGER_TYPES = frozenset({"int2", "int4", "int8"})


async def _fetch_one(conn: asyncpg.Connection, query: TranslatedQuery) -> Row | None:
    return normalize_row(await conn.fetchrow(query.sql, *query.args))


async def _fetch_all(conn: asyncpg.Connection, query: TranslatedQuery) -> list[Row]:
    return normalize_rows(await conn.fetch(query.sql, *query.args))


def _check_generated_id_type(stmt: asyncpg.prepared_stmt.PreparedStatement) -> None:
    """Refuse an insert whose ``id`` column is not an integer, before it runs."""
    for attribute in stmt.get_attributes():
        if attribute.name == GENERATED_ID_COLUMN and attribute.type.name not in _INTEGER_TYPES:
            raise GeneratedIdError(
                f"Generated id column has type {attribute.type.name}, expected an integer"
            )


async def _execute(conn: asyncpg.Connection, query: TranslatedQuery) -> MutationResult:
    """Run a mutation on ``conn``.

    Inserts go through a prepared statement so both the returned ``id`` and
    the command tag ("INSERT 0 1") are available. A non-integer ``id``
    column is rejected at prepare time, so nothing is written.
    """
    if is_insert(query.sql):
        stmt = await conn.prepare(with_returning_id(query.sql))
        _check_generated_id_type(stmt)
        rows = await stmt.fetch(*query.args)
        return MutationResult(
            last_inserted_id=last_generated_id(rows),
            rows_affected=parse_rowcount(stmt.get_statusmsg()),
        )
    status = await conn.execute(query.sql, *query.args)
    return MutationResult(last_inserted_id=None, rows_affected=parse_rowcount(status))


class PostgresTransaction:
    """A transaction holding one pooled connection until commit or rollback.

    ``BEGIN`` has already run by the time a handle exists. The connection
    goes back to the pool when the handle is finalized, whether or not
    ``COMMIT``/``ROLLBACK`` itself succeeded.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        conn: asyncpg.Connection,
        transaction: asyncpg.transaction.Transaction,
    ) -> None:
        """Initialize with the pool, the held connection and its started transaction."""
        self._pool = pool
        self._conn: asyncpg.Connection | None = conn
        self._transaction = transaction

    @classmethod
    async def start(cls, pool: asyncpg.Pool) -> PostgresTransaction:
        """Acquire a connection from ``pool`` and issue BEGIN on it."""
        conn = await pool.acquire()
        try:
            transaction = conn.transaction()
            await transaction.start()
        except BaseException:
            await pool.release(conn)
            raise
        return cls(pool, conn, transaction)

    @property
    def finished(self) -> bool:
        """True once commit or rollback has run."""
        return self._conn is None

    def _connection(self) -> asyncpg.Connection:
        if self._conn is None:
            raise TransactionFinishedError("Transaction already committed or rolled back")
        return self._conn

    async def fetch_one(self, sql: str, *args: Any) -> Row | None:
        """Return the first row, or None, inside this transaction."""
        return await _fetch_one(self._connection(), translate_query(sql, args))

    async def fetch_all(self, sql: str, *args: Any) -> list[Row]:
        """Return every row inside this transaction."""
        return await _fetch_all(self._connection(), translate_query(sql, args))

    async def execute(self, sql: str, *args: Any) -> MutationResult:
        """Run a mutation inside this transaction."""
        return await _execute(self._connection(), translate_query(sql, args))

    async def commit(self) -> None:
        """Issue COMMIT, then release the connection."""
        try:
            await self._transaction.commit()
        finally:
            await self._release()

    async def rollback(self) -> None:
        """Issue ROLLBACK, then release the connection."""
        try:
            await self._transaction.rollback()
        finally:
            await self._release()

    async def _release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await self._pool.release(conn)

    async def __aenter__(self) -> PostgresTransaction:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self.finished:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class PostgresDatabase:
    """PostgreSQL implementation of the Database protocol.

    Each top-level call acquires a connection from the pool, translates
    ``?`` → ``$N`` placeholders, and releases the connection after.
    Argument-count mismatches are raised before a connection is acquired.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Initialize with an asyncpg connection pool."""
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        """The pool statements are run on."""
        return self._pool

    async def fetch_one(self, sql: str, *args: Any) -> Row | None:
        """Execute a query and return its first row, or None."""
        query = translate_query(sql, args)
        async with self._pool.acquire() as conn:
            return await _fetch_one(conn, query)

    async def fetch_all(self, sql: str, *args: Any) -> list[Row]:
        """Execute a query and return all rows."""
        query = translate_query(sql, args)
        async with self._pool.acquire() as conn:
            return await _fetch_all(conn, query)

    async def execute(self, sql: str, *args: Any) -> MutationResult:
        """Execute an INSERT/UPDATE/DELETE.

        Inserts report ``last_inserted_id`` (via ``RETURNING id``); every
        mutation reports ``rows_affected``.
        """
        query = translate_query(sql, args)
        async with self._pool.acquire() as conn:
            return await _execute(conn, query)

    async def execute_script(self, script: str | Sequence[str]) -> None:
        """Execute several statements in one transaction.

        Embedded BEGIN/COMMIT/ROLLBACK statements are skipped; this method
        owns the transaction. If any statement fails, everything is rolled
        back and the original error is raised.
        """
        statements = split_script(script)
        async with self._pool.acquire() as conn:
            transaction = conn.transaction()
            await transaction.start()
            try:
                for statement in statements:
                    await conn.execute(statement)
            except BaseException:
                try:
                    await transaction.rollback()
                except CONNECTIVITY_ERRORS:
                    logger.warning("Rollback after failed script also failed", exc_info=True)
                raise
            await transaction.commit()

    async def begin(self) -> PostgresTransaction:
        """Start a transaction on a connection held until commit/rollback."""
        return await PostgresTransaction.start(self._pool)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        """Commit on normal exit, roll back if the block raises."""
        async with await self.begin() as tx:
            yield tx

    async def ping(self) -> bool:
        """Run ``SELECT NOW()``; True if the database answered."""
        try:
            async with self._pool.acquire() as conn:
                now = await conn.fetchval("SELECT NOW()")
        except CONNECTIVITY_ERRORS as exc:
            logger.warning("PostgreSQL connection test failed: %s", exc)
            return False
        logger.info("PostgreSQL connection test successful: %s", now)
        return True
