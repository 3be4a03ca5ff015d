"""Database access: SQLite-style calls over PostgreSQL (or SQLite locally)."""

from deepsales_db.db.backend import Database, Executor, Row, Transaction
from deepsales_db.db.errors import (
    DatabaseLayerError,
    GeneratedIdError,
    InvalidDatabaseNameError,
    ParameterMismatchError,
    TenantNotFoundError,
    TransactionFinishedError,
)
from deepsales_db.db.pool import PoolRegistry
from deepsales_db.db.postgres_backend import PostgresDatabase, PostgresTransaction
from deepsales_db.db.sqlite_backend import SQLiteDatabase, SQLiteTransaction
from deepsales_db.db.tenants import (
    TenantDatabases,
    create_database,
    database_exists,
    drop_database,
)

__all__ = [
    "Database",
    "DatabaseLayerError",
    "Executor",
    "GeneratedIdError",
    "InvalidDatabaseNameError",
    "ParameterMismatchError",
    "PoolRegistry",
    "PostgresDatabase",
    "PostgresTransaction",
    "Row",
    "SQLiteDatabase",
    "SQLiteTransaction",
    "TenantDatabases",
    "TenantNotFoundError",
    "Transaction",
    "TransactionFinishedError",
    "create_database",
    "database_exists",
    "drop_database",
]
