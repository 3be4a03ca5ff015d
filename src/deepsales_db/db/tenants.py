"""Tenant (company) database lifecycle: create, check, drop.

Each company gets its own PostgreSQL database named ``<prefix><base>``.
Administrative statements run on a short-lived pool connected to the
administrative database (``postgres`` by default), never on the tenant
database itself.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

from deepsales_db.config import get_connection_settings, get_tenant_prefix
from deepsales_db.db.errors import InvalidDatabaseNameError, TenantNotFoundError
from deepsales_db.db.pool import PoolRegistry, create_pool
from deepsales_db.db.postgres_backend import CONNECTIVITY_ERRORS, PostgresDatabase
from deepsales_db.models.settings import ConnectionSettings

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")
_MAX_IDENTIFIER_BYTES = 63

_EXISTS_SQL = "SELECT 1 FROM pg_database WHERE datname = $1"
_TERMINATE_SQL = """
    SELECT pg_terminate_backend(pg_stat_activity.pid)
    FROM pg_stat_activity
    WHERE pg_stat_activity.datname = $1
    AND pid <> pg_backend_pid()
"""


def validate_database_name(name: str) -> str:
    """Return ``name`` if it is a plain PostgreSQL identifier, else raise.

    CREATE/DROP DATABASE cannot take bind parameters, so the name is
    interpolated; only identifier characters are accepted.
    """
    if not name or not _IDENTIFIER_RE.match(name):
        raise InvalidDatabaseNameError(f"Invalid database name: {name!r}")
    if len(name.encode()) > _MAX_IDENTIFIER_BYTES:
        raise InvalidDatabaseNameError(
            f"Database name longer than {_MAX_IDENTIFIER_BYTES} bytes: {name!r}"
        )
    return name


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


@asynccontextmanager
async def _admin_connection(
    settings: ConnectionSettings | None,
) -> AsyncIterator[asyncpg.Connection]:
    """Yield a connection to the administrative database, then dispose of its pool."""
    settings = settings or get_connection_settings()
    pool = await create_pool(settings.admin(), max_size=1)
    try:
        async with pool.acquire() as conn:
            yield conn
    finally:
        await pool.close()


async def database_exists(name: str, settings: ConnectionSettings | None = None) -> bool:
    """Check the catalog for a database called ``name``."""
    validate_database_name(name)
    async with _admin_connection(settings) as conn:
        return await conn.fetchval(_EXISTS_SQL, name) is not None


async def create_database(name: str, settings: ConnectionSettings | None = None) -> bool:
    """Create database ``name`` unless it exists. Returns True if it was created."""
    validate_database_name(name)
    async with _admin_connection(settings) as conn:
        if await conn.fetchval(_EXISTS_SQL, name) is not None:
            logger.info("PostgreSQL database already exists: %s", name)
            return False
        await conn.execute(f"CREATE DATABASE {_quote(name)}")
        logger.info("PostgreSQL database created: %s", name)
        return True


async def drop_database(name: str, settings: ConnectionSettings | None = None) -> bool:
    """Terminate every session on database ``name``, then drop it.

    Returns False if there was no such database. Destructive and
    irreversible. Authorization and confirmation are the caller's job.
    """
    validate_database_name(name)
    async with _admin_connection(settings) as conn:
        if await conn.fetchval(_EXISTS_SQL, name) is None:
            logger.info("PostgreSQL database does not exist, nothing to drop: %s", name)
            return False
        await conn.execute(_TERMINATE_SQL, name)
        await conn.execute(f"DROP DATABASE IF EXISTS {_quote(name)}")
    logger.info("PostgreSQL database dropped: %s", name)
    return True


class TenantDatabases:
    """Company databases addressed by their base name.

    Pools live in the shared PoolRegistry, so each tenant has at most one
    pool no matter how many times it is opened.
    """

    def __init__(self, registry: PoolRegistry, prefix: str | None = None) -> None:
        """Initialize with the application's pool registry and a name prefix."""
        self._registry = registry
        self.prefix = get_tenant_prefix() if prefix is None else prefix

    def database_name(self, base: str) -> str:
        """Return the real database name for a tenant's base name."""
        if not base:
            raise InvalidDatabaseNameError("Database name is required")
        name = base if base.startswith(self.prefix) else f"{self.prefix}{base}"
        return validate_database_name(name)

    async def provision(self, base: str) -> PostgresDatabase:
        """Create the tenant database if needed and return a handle to it."""
        name = self.database_name(base)
        await create_database(name, self._registry.settings)
        return await self._registry.database(name)

    async def open(self, base: str) -> PostgresDatabase:
        """Return a handle to an existing tenant database.

        The first open of a tenant runs ``SELECT 1``; an unreachable or
        missing database raises TenantNotFoundError.
        """
        name = self.database_name(base)
        if name in self._registry.pool_names():
            return await self._registry.database(name)
        db = await self._registry.database(name)
        try:
            await db.fetch_one("SELECT 1")
        except CONNECTIVITY_ERRORS as exc:
            await self._registry.close_pool(name)
            raise TenantNotFoundError(f"Company database not found: {name}") from exc
        return db

    async def remove(self, base: str) -> bool:
        """Close the tenant's pool and drop its database.

        Returns False if the database did not exist.
        """
        name = self.database_name(base)
        await self._registry.close_pool(name)
        dropped = await drop_database(name, self._registry.settings)
        if dropped:
            logger.info("Company database deleted: %s", name)
        return dropped
