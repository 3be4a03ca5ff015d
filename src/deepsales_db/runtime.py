"""Application startup and shutdown for the database layer."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from deepsales_db.db.pool import PoolRegistry
from deepsales_db.models.settings import ConnectionSettings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_registry(
    settings: ConnectionSettings | None = None, *, verify: bool = True
) -> AsyncIterator[PoolRegistry]:
    """Create the pool registry, check connectivity, and close every pool on exit.

    With ``verify`` the shared database must answer ``SELECT NOW()`` or
    ConnectionError is raised before anything is yielded.
    """
    registry = PoolRegistry(settings)
    try:
        if verify:
            db = await registry.database()
            if not await db.ping():
                raise ConnectionError(
                    f"Failed to connect to PostgreSQL database {registry.default_database}"
                )
        logger.info("Main database initialized: %s", registry.default_database)
        yield registry
    finally:
        await registry.close()
