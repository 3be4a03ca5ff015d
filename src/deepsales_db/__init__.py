"""SQLite-style database access over per-tenant PostgreSQL databases."""

__version__ = "0.1.0"
