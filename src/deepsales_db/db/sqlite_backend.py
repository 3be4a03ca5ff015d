"""SQLite implementation of the Database protocol.

Thin wrapper around aiosqlite.Connection. No SQL translation is needed
since application code already uses SQLite-flavored SQL. Used for local
development and tests.

There is a single connection, so an ``asyncio.Lock`` stands in for the
pool: every top-level call holds it for one statement, and a transaction
holds it from BEGIN until COMMIT/ROLLBACK.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from types import TracebackType
from typing import Any

import aiosqlite

from deepsales_db.db.backend import Row
from deepsales_db.db.errors import TransactionFinishedError
from deepsales_db.db.normalize import normalize_row, normalize_rows
from deepsales_db.db.statements import is_insert, split_script
from deepsales_db.db.translate import check_arity
from deepsales_db.models.result import MutationResult

logger = logging.getLogger(__name__)


async def _fetch_one(conn: aiosqlite.Connection, sql: str, args: Sequence[Any]) -> Row | None:
    async with conn.execute(sql, args) as cursor:
        return normalize_row(await cursor.fetchone())


async def _fetch_all(conn: aiosqlite.Connection, sql: str, args: Sequence[Any]) -> list[Row]:
    async with conn.execute(sql, args) as cursor:
        return normalize_rows(list(await cursor.fetchall()))


async def _execute(conn: aiosqlite.Connection, sql: str, args: Sequence[Any]) -> MutationResult:
    async with conn.execute(sql, args) as cursor:
        rowcount = cursor.rowcount if cursor.rowcount is not None else 0
        return MutationResult(
            last_inserted_id=cursor.lastrowid if is_insert(sql) else None,
            rows_affected=max(rowcount, 0),
        )


class SQLiteTransaction:
    """A transaction holding the database lock until commit or rollback."""

    def __init__(self, conn: aiosqlite.Connection, lock: asyncio.Lock) -> None:
        """Initialize with the connection and the (already held) lock."""
        self._conn = conn
        self._lock = lock
        self._finished = False

    @classmethod
    async def start(cls, conn: aiosqlite.Connection, lock: asyncio.Lock) -> SQLiteTransaction:
        """Take the lock and issue BEGIN."""
        await lock.acquire()
        try:
            await conn.execute("BEGIN")
        except BaseException:
            lock.release()
            raise
        return cls(conn, lock)

    @property
    def finished(self) -> bool:
        """True once commit or rollback has run."""
        return self._finished

    def _check_open(self) -> None:
        if self._finished:
            raise TransactionFinishedError("Transaction already committed or rolled back")

    async def fetch_one(self, sql: str, *args: Any) -> Row | None:
        """Return the first row, or None, inside this transaction."""
        self._check_open()
        check_arity(sql, args)
        return await _fetch_one(self._conn, sql, args)

    async def fetch_all(self, sql: str, *args: Any) -> list[Row]:
        """Return every row inside this transaction."""
        self._check_open()
        check_arity(sql, args)
        return await _fetch_all(self._conn, sql, args)

    async def execute(self, sql: str, *args: Any) -> MutationResult:
        """Run a mutation inside this transaction."""
        self._check_open()
        check_arity(sql, args)
        return await _execute(self._conn, sql, args)

    async def commit(self) -> None:
        """Issue COMMIT, then release the lock."""
        try:
            await self._conn.execute("COMMIT")
        finally:
            self._release()

    async def rollback(self) -> None:
        """Issue ROLLBACK, then release the lock."""
        try:
            await self._conn.execute("ROLLBACK")
        finally:
            self._release()

    def _release(self) -> None:
        if not self._finished:
            self._finished = True
            self._lock.release()

    async def __aenter__(self) -> SQLiteTransaction:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._finished:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class SQLiteDatabase:
    """SQLite implementation of the Database protocol.

    The connection runs in autocommit mode (``isolation_level=None``);
    transactions are explicit BEGIN/COMMIT issued by this class.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        """Initialize with an aiosqlite connection."""
        self._conn = conn
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(cls, db_path: Path | str = ":memory:") -> SQLiteDatabase:
        """Open a SQLite database file (or ``:memory:``)."""
        db_path = str(db_path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row

        # WAL for better concurrent read performance on files
        if db_path != ":memory:":
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        return cls(conn)

    async def fetch_one(self, sql: str, *args: Any) -> Row | None:
        """Execute a query and return its first row, or None."""
        check_arity(sql, args)
        async with self._lock:
            return await _fetch_one(self._conn, sql, args)

    async def fetch_all(self, sql: str, *args: Any) -> list[Row]:
        """Execute a query and return all rows."""
        check_arity(sql, args)
        async with self._lock:
            return await _fetch_all(self._conn, sql, args)

    async def execute(self, sql: str, *args: Any) -> MutationResult:
        """Execute an INSERT/UPDATE/DELETE."""
        check_arity(sql, args)
        async with self._lock:
            return await _execute(self._conn, sql, args)

    async def execute_script(self, script: str | Sequence[str]) -> None:
        """Execute several statements in one transaction; roll back on any failure."""
        statements = split_script(script)
        async with self._lock:
            await self._conn.execute("BEGIN")
            try:
                for statement in statements:
                    await self._conn.execute(statement)
            except BaseException:
                try:
                    await self._conn.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.warning("Rollback after failed script also failed", exc_info=True)
                raise
            await self._conn.execute("COMMIT")

    async def begin(self) -> SQLiteTransaction:
        """Start a transaction; other calls wait until it finishes."""
        return await SQLiteTransaction.start(self._conn, self._lock)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLiteTransaction]:
        """Commit on normal exit, roll back if the block raises."""
        async with await self.begin() as tx:
            yield tx

    async def ping(self) -> bool:
        """Run ``SELECT 1``; True if the database answered."""
        try:
            async with self._lock:
                await _fetch_one(self._conn, "SELECT 1", ())
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("SQLite connection test failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()
