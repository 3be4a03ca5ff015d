"""Connection pools, one per logical database.

The registry is created by the application's startup code and closed at
shutdown. It owns the pool for the shared database and a pool per tenant
database, created on first use and reused afterwards.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg

from deepsales_db.config import (
    POOL_CONNECT_TIMEOUT,
    POOL_IDLE_TIMEOUT,
    POOL_MAX_SIZE,
    get_connection_settings,
)
from deepsales_db.db.postgres_backend import PostgresDatabase
from deepsales_db.models.settings import ConnectionSettings

logger = logging.getLogger(__name__)

PoolFactory = Callable[[ConnectionSettings], Awaitable[asyncpg.Pool]]


def _encode_json(value: Any) -> str:
    """Send text through untouched; serialize anything else."""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class PooledConnection(asyncpg.Connection):  # type: ignore[misc]
    """Connection that remembers whether this process closed it.

    asyncpg runs termination listeners on every close, including the
    pool's own idle reaping and shutdown. Only a close from the server
    side is worth a warning.
    """

    closed_locally = False

    async def close(self, *, timeout: float | None = None) -> None:
        self.closed_locally = True
        await super().close(timeout=timeout)

    def terminate(self) -> None:
        self.closed_locally = True
        super().terminate()


def _termination_listener(conn: PooledConnection) -> Callable[[Any], None]:
    """Build the termination listener for ``conn``.

    The backend pid is read now, while the connection is open; by the time
    the listener runs the connection can no longer report it.
    """
    pid = conn.get_server_pid()

    def _on_termination(_conn_ref: Any) -> None:
        if conn.closed_locally:
            return
        # The pool discards the connection on its own
        logger.warning("PostgreSQL connection terminated unexpectedly (pid %s)", pid)

    return _on_termination


async def _init_connection(conn: PooledConnection) -> None:
    """Set up every new pooled connection: JSON codecs and error listener."""
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename,
            encoder=_encode_json,
            decoder=json.loads,
            schema="pg_catalog",
        )
    conn.add_termination_listener(_termination_listener(conn))


async def create_pool(
    settings: ConnectionSettings, *, max_size: int = POOL_MAX_SIZE
) -> asyncpg.Pool:
    """Create an asyncpg pool for ``settings.database``.

    Connections are opened lazily (``min_size=0``) and reaped after
    POOL_IDLE_TIMEOUT seconds idle.
    """
    pool = await asyncpg.create_pool(
        host=settings.host,
        port=settings.port,
        user=settings.user,
        password=settings.password,
        database=settings.database,
        min_size=0,
        max_size=max_size,
        max_inactive_connection_lifetime=POOL_IDLE_TIMEOUT,
        timeout=POOL_CONNECT_TIMEOUT,
        init=_init_connection,
        connection_class=PooledConnection,
    )
    logger.info("PostgreSQL connection pool initialized for %s", settings.database)
    return pool


class PoolRegistry:
    """Owns one asyncpg pool per database name.

    ``get_pool()`` with no name (or the default name) returns the shared
    database's pool. Any other name is a tenant database; its pool is
    cached under that name until ``close_pool(name)`` or ``close()``.
    """

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        *,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        """Initialize with connection settings (default: from the environment)."""
        self.settings = settings or get_connection_settings()
        self._pool_factory: PoolFactory = pool_factory or create_pool
        self._pools: dict[str, asyncpg.Pool] = {}
        self._lock = asyncio.Lock()

    @property
    def default_database(self) -> str:
        """Name of the shared multi-tenant database."""
        return self.settings.database

    def pool_names(self) -> list[str]:
        """Names of the databases that currently have a pool."""
        return list(self._pools)

    async def get_pool(self, database: str | None = None) -> asyncpg.Pool:
        """Return the pool for ``database``, creating it on first use."""
        name = database or self.default_database
        pool = self._pools.get(name)
        if pool is not None:
            return pool
        async with self._lock:
            # Another task may have created it while we waited
            pool = self._pools.get(name)
            if pool is None:
                pool = await self._pool_factory(self.settings.for_database(name))
                self._pools[name] = pool
            return pool

    async def database(self, database: str | None = None) -> PostgresDatabase:
        """Return a statement executor bound to the pool for ``database``."""
        return PostgresDatabase(await self.get_pool(database))

    async def close_pool(self, database: str) -> bool:
        """Close and forget the pool for ``database``. Returns False if none existed."""
        async with self._lock:
            pool = self._pools.pop(database, None)
        if pool is None:
            return False
        await pool.close()
        logger.info("PostgreSQL connection pool closed for %s", database)
        return True

    async def close(self) -> None:
        """Close every pool. Called once at process shutdown.

        A pool that fails to close does not stop the others; the first
        failure is raised once every pool has been tried.
        """
        async with self._lock:
            pools = list(self._pools.items())
            self._pools.clear()
        first_error: Exception | None = None
        for name, pool in pools:
            try:
                await pool.close()
            except Exception as exc:
                logger.error("Failed to close PostgreSQL connection pool for %s: %s", name, exc)
                if first_error is None:
                    first_error = exc
                continue
            logger.info("PostgreSQL connection pool closed for %s", name)
        if first_error is not None:
            raise first_error
