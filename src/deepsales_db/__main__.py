"""Command-line administration for the database layer.

Usage:
    python -m deepsales_db ping [--database NAME]
    python -m deepsales_db exists NAME
    python -m deepsales_db create-tenant NAME
    python -m deepsales_db drop-tenant NAME --yes

Tenant NAMEs are base names; the configured prefix (DB_TENANT_PREFIX) is
added unless already present.
"""

import argparse
import asyncio
import logging
import sys

from deepsales_db.config import get_log_level
from deepsales_db.db.errors import DatabaseLayerError
from deepsales_db.db.postgres_backend import CONNECTIVITY_ERRORS
from deepsales_db.db.tenants import TenantDatabases, database_exists
from deepsales_db.runtime import open_registry

logger = logging.getLogger("deepsales_db")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deepsales_db", description="Administer deepsales PostgreSQL databases"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ping = sub.add_parser("ping", help="Check that a database answers")
    ping.add_argument("--database", default=None, help="Database name (default: DB_NAME)")

    exists = sub.add_parser("exists", help="Check whether a tenant database exists")
    exists.add_argument("name", help="Tenant base name")

    create = sub.add_parser("create-tenant", help="Create a tenant database if missing")
    create.add_argument("name", help="Tenant base name")

    drop = sub.add_parser("drop-tenant", help="Terminate sessions and drop a tenant database")
    drop.add_argument("name", help="Tenant base name")
    drop.add_argument("--yes", action="store_true", help="Confirm the irreversible drop")
    return parser


async def _run(args: argparse.Namespace) -> int:
    async with open_registry(verify=False) as registry:
        tenants = TenantDatabases(registry)

        if args.command == "ping":
            db = await registry.database(args.database)
            ok = await db.ping()
            print("ok" if ok else "unreachable")
            return 0 if ok else 1

        name = tenants.database_name(args.name)

        if args.command == "exists":
            found = await database_exists(name, registry.settings)
            print(f"{name}: {'exists' if found else 'missing'}")
            return 0 if found else 1

        if args.command == "create-tenant":
            await tenants.provision(args.name)
            print(f"{name}: ready")
            return 0

        if args.command == "drop-tenant":
            if not args.yes:
                print(f"Refusing to drop {name} without --yes", file=sys.stderr)
                return 1
            if not await tenants.remove(args.name):
                print(f"{name}: missing")
                return 1
            print(f"{name}: dropped")
            return 0

    return 1


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging, and run one command."""
    args = _build_parser().parse_args(argv)
    # Logs go to stderr; stdout carries command output
    logging.basicConfig(
        level=getattr(logging, get_log_level().upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    try:
        return asyncio.run(_run(args))
    except DatabaseLayerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except CONNECTIVITY_ERRORS as exc:
        logger.error("Database command failed: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
