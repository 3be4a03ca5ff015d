"""Shared test fixtures."""

from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from deepsales_db.db.postgres_backend import PostgresDatabase
from deepsales_db.db.sqlite_backend import SQLiteDatabase

MANAGERS_DDL = """
    CREATE TABLE managers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

ANALYSES_DDL = """
    CREATE TABLE analyses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        audio_file_id INTEGER NOT NULL,
        overall_score INTEGER,
        criteria_scores TEXT,
        objections TEXT,
        mood TEXT,
        feedback TEXT
    )
"""


class FakeDriverError(Exception):
    """Stands in for a driver-level error (constraint violation, lost connection)."""


class FakeStatement:
    """Prepared statement returned by FakeConnection.prepare()."""

    def __init__(self, conn: "FakeConnection", sql: str):
        self.conn = conn
        self.sql = sql

    async def fetch(self, *args: Any) -> list[dict[str, Any]]:
        self.conn.record(self.sql, args)
        return self.conn.rows

    def get_attributes(self) -> tuple[SimpleNamespace, ...]:
        return (SimpleNamespace(name="id", type=SimpleNamespace(name=self.conn.id_type)),)

    def get_statusmsg(self) -> str:
        return self.conn.status


class FakeTransaction:
    """Mimics asyncpg's Transaction: start/commit/rollback recorded on the connection."""

    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def start(self) -> None:
        self.conn.record("BEGIN", ())

    async def commit(self) -> None:
        self.conn.record("COMMIT", ())

    async def rollback(self) -> None:
        self.conn.record("ROLLBACK", ())


class FakeConnection:
    """Records every statement; fails any statement containing ``fail_on``.

    Prepared inserts report an ``id`` column of type ``id_type``.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        status: str = "",
        fail_on: str | None = None,
        id_type: str = "int4",
    ):
        self.rows = rows or []
        self.status = status
        self.fail_on = fail_on
        self.id_type = id_type
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.calls]

    def record(self, sql: str, args: tuple[Any, ...]) -> None:
        self.calls.append((sql, args))
        if self.fail_on is not None and self.fail_on in sql:
            raise FakeDriverError(f"failed: {sql}")

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        self.record(sql, args)
        return self.rows[0] if self.rows else None

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self.record(sql, args)
        return self.rows

    async def fetchval(self, sql: str, *args: Any) -> Any:
        self.record(sql, args)
        if not self.rows:
            return None
        return next(iter(self.rows[0].values()))

    async def execute(self, sql: str, *args: Any) -> str:
        self.record(sql, args)
        return self.status

    async def prepare(self, sql: str) -> FakeStatement:
        return FakeStatement(self, sql)

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)


class _AcquireContext:
    def __init__(self, pool: "FakePool"):
        self.pool = pool

    def __await__(self):
        return self._acquire().__await__()

    async def _acquire(self) -> FakeConnection:
        if self.pool.acquire_error is not None:
            raise self.pool.acquire_error
        self.pool.acquired += 1
        return self.pool.conn

    async def __aenter__(self) -> FakeConnection:
        return await self._acquire()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.pool.release(self.pool.conn)


class FakePool:
    """Single-connection stand-in for asyncpg.Pool that counts acquire/release."""

    def __init__(
        self,
        conn: FakeConnection | None = None,
        acquire_error: Exception | None = None,
        close_error: Exception | None = None,
    ):
        self.conn = conn or FakeConnection()
        self.acquire_error = acquire_error
        self.close_error = close_error
        self.acquired = 0
        self.released = 0
        self.closed = False

    @property
    def in_use(self) -> int:
        return self.acquired - self.released

    def acquire(self) -> _AcquireContext:
        return _AcquireContext(self)

    async def release(self, conn: FakeConnection) -> None:
        self.released += 1

    async def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


@pytest.fixture
def fake_conn():
    """Recording connection with no rows and an empty status."""
    return FakeConnection()


@pytest.fixture
def fake_pool(fake_conn):
    """Pool handing out ``fake_conn``."""
    return FakePool(fake_conn)


@pytest.fixture
def pg_db(fake_pool):
    """PostgresDatabase over the fake pool."""
    return PostgresDatabase(fake_pool)


@pytest_asyncio.fixture
async def db():
    """In-memory SQLite database with managers and analyses tables."""
    database = await SQLiteDatabase.connect(":memory:")
    await database.execute_script([MANAGERS_DDL, ANALYSES_DDL])
    yield database
    await database.close()
