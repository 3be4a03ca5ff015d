"""Environment-variable-based configuration."""

import os

from deepsales_db.models.settings import ConnectionSettings

# Pool tuning. Same values for the shared database and every tenant database.
POOL_MAX_SIZE = 20
POOL_IDLE_TIMEOUT = 30.0
POOL_CONNECT_TIMEOUT = 2.0


def get_db_host() -> str:
    """Return the PostgreSQL host from DB_HOST."""
    return os.environ.get("DB_HOST", "localhost")


def get_db_port() -> int:
    """Return the PostgreSQL port from DB_PORT."""
    return int(os.environ.get("DB_PORT", "5432"))


def get_db_name() -> str:
    """Return the shared (default) database name from DB_NAME."""
    return os.environ.get("DB_NAME", "deepsales_analysis")


def get_db_user() -> str:
    """Return the database user from DB_USER."""
    return os.environ.get("DB_USER", "postgres")


def get_db_password() -> str:
    """Return the database password from DB_PASSWORD."""
    return os.environ.get("DB_PASSWORD", "")


def get_admin_db_name() -> str:
    """Return the administrative database name from DB_ADMIN_NAME."""
    return os.environ.get("DB_ADMIN_NAME", "postgres")


def get_tenant_prefix() -> str:
    """Return the tenant database name prefix from DB_TENANT_PREFIX."""
    return os.environ.get("DB_TENANT_PREFIX", "deepsales_analysis_")


def get_log_level() -> str:
    """Return the logging level from DB_LOG_LEVEL."""
    return os.environ.get("DB_LOG_LEVEL", "WARNING")


def get_connection_settings(database: str | None = None) -> ConnectionSettings:
    """Build connection settings from the environment.

    ``database`` overrides DB_NAME, e.g. for a tenant database.
    """
    return ConnectionSettings(
        host=get_db_host(),
        port=get_db_port(),
        database=database or get_db_name(),
        user=get_db_user(),
        password=get_db_password(),
        admin_database=get_admin_db_name(),
    )
