"""Tests for tenant database lifecycle: administrative SQL against fakes."""

from unittest.mock import AsyncMock, patch

import pytest

from deepsales_db.db.errors import InvalidDatabaseNameError, TenantNotFoundError
from deepsales_db.db.pool import PoolRegistry
from deepsales_db.db.tenants import (
    TenantDatabases,
    create_database,
    database_exists,
    drop_database,
    validate_database_name,
)
from deepsales_db.models.settings import ConnectionSettings
from tests.conftest import FakeConnection, FakePool

SETTINGS = ConnectionSettings(database="deepsales_analysis", admin_database="postgres")


def _admin(conn: FakeConnection):
    """Patch the admin pool factory to hand out ``conn``; returns (patcher, pool)."""
    pool = FakePool(conn)
    return patch("deepsales_db.db.tenants.create_pool", new=AsyncMock(return_value=pool)), pool


class TestValidateName:
    @pytest.mark.parametrize("name", ["deepsales_analysis_acme", "_t1", "Acme$2"])
    def test_valid(self, name):
        assert validate_database_name(name) == name

    @pytest.mark.parametrize(
        "name", ["", "1abc", "acme; DROP DATABASE x", 'a"b', "has space", "a" * 64]
    )
    def test_invalid(self, name):
        with pytest.raises(InvalidDatabaseNameError):
            validate_database_name(name)


class TestCreateDatabase:
    @pytest.mark.asyncio
    async def test_creates_when_missing(self, caplog):
        conn = FakeConnection()
        patcher, pool = _admin(conn)
        with patcher as factory, caplog.at_level("INFO"):
            created = await create_database("deepsales_analysis_acme", SETTINGS)
        assert created is True
        assert factory.await_args.args[0].database == "postgres"
        assert factory.await_args.kwargs["max_size"] == 1
        assert conn.calls == [
            ("SELECT 1 FROM pg_database WHERE datname = $1", ("deepsales_analysis_acme",)),
            ('CREATE DATABASE "deepsales_analysis_acme"', ()),
        ]
        assert pool.closed
        assert pool.in_use == 0
        assert "database created" in caplog.text

    @pytest.mark.asyncio
    async def test_idempotent_when_present(self, caplog):
        conn = FakeConnection(rows=[{"?column?": 1}])
        patcher, pool = _admin(conn)
        with patcher, caplog.at_level("INFO"):
            created = await create_database("deepsales_analysis_acme", SETTINGS)
        assert created is False
        assert not any(sql.startswith("CREATE") for sql in conn.statements)
        assert pool.closed
        assert "already exists" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_name_before_io(self):
        patcher, _pool = _admin(FakeConnection())
        with patcher as factory, pytest.raises(InvalidDatabaseNameError):
            await create_database("bad name", SETTINGS)
        factory.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_pool_closed_on_error(self):
        conn = FakeConnection(fail_on="CREATE")
        patcher, pool = _admin(conn)
        with patcher, pytest.raises(Exception, match="CREATE"):
            await create_database("deepsales_analysis_acme", SETTINGS)
        assert pool.closed
        assert pool.in_use == 0


class TestDropDatabase:
    @pytest.mark.asyncio
    async def test_terminates_then_drops(self, caplog):
        conn = FakeConnection(rows=[{"?column?": 1}])
        patcher, pool = _admin(conn)
        with patcher, caplog.at_level("INFO"):
            dropped = await drop_database("deepsales_analysis_acme", SETTINGS)
        assert dropped is True
        assert len(conn.calls) == 3
        assert conn.calls[0][0] == "SELECT 1 FROM pg_database WHERE datname = $1"
        terminate_sql, terminate_args = conn.calls[1]
        assert "pg_terminate_backend" in terminate_sql
        assert "pid <> pg_backend_pid()" in terminate_sql
        assert terminate_args == ("deepsales_analysis_acme",)
        assert conn.calls[2] == ('DROP DATABASE IF EXISTS "deepsales_analysis_acme"', ())
        assert pool.closed
        assert "database dropped" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_database_not_reported_as_dropped(self, caplog):
        conn = FakeConnection()
        patcher, pool = _admin(conn)
        with patcher, caplog.at_level("INFO"):
            dropped = await drop_database("deepsales_analysis_ghost", SETTINGS)
        assert dropped is False
        assert conn.statements == ["SELECT 1 FROM pg_database WHERE datname = $1"]
        assert pool.closed
        assert "nothing to drop" in caplog.text
        assert "database dropped" not in caplog.text


class TestDatabaseExists:
    @pytest.mark.asyncio
    async def test_exists(self):
        patcher, _ = _admin(FakeConnection(rows=[{"?column?": 1}]))
        with patcher:
            assert await database_exists("deepsales_analysis_acme", SETTINGS) is True

    @pytest.mark.asyncio
    async def test_missing(self):
        patcher, _ = _admin(FakeConnection())
        with patcher:
            assert await database_exists("deepsales_analysis_acme", SETTINGS) is False


class TestTenantDatabases:
    def _registry(self, conn: FakeConnection | None = None) -> PoolRegistry:
        async def factory(settings):
            return FakePool(conn or FakeConnection())

        return PoolRegistry(SETTINGS, pool_factory=factory)

    def test_prefix_applied_once(self):
        tenants = TenantDatabases(self._registry(), prefix="deepsales_analysis_")
        assert tenants.database_name("acme") == "deepsales_analysis_acme"
        assert tenants.database_name("deepsales_analysis_acme") == "deepsales_analysis_acme"

    def test_prefix_from_environment(self, monkeypatch):
        monkeypatch.setenv("DB_TENANT_PREFIX", "co_")
        assert TenantDatabases(self._registry()).database_name("acme") == "co_acme"

    def test_empty_name_rejected(self):
        with pytest.raises(InvalidDatabaseNameError, match="required"):
            TenantDatabases(self._registry()).database_name("")

    @pytest.mark.asyncio
    async def test_provision_creates_and_returns_handle(self):
        registry = self._registry()
        tenants = TenantDatabases(registry, prefix="deepsales_analysis_")
        with patch("deepsales_db.db.tenants.create_database", new=AsyncMock()) as create:
            db = await tenants.provision("acme")
        create.assert_awaited_once_with("deepsales_analysis_acme", SETTINGS)
        assert db.pool is await registry.get_pool("deepsales_analysis_acme")

    @pytest.mark.asyncio
    async def test_open_checks_first_time_only(self):
        conn = FakeConnection()
        tenants = TenantDatabases(self._registry(conn), prefix="deepsales_analysis_")
        first = await tenants.open("acme")
        second = await tenants.open("acme")
        assert first.pool is second.pool
        assert conn.statements == ["SELECT 1"]

    @pytest.mark.asyncio
    async def test_open_missing_tenant(self):
        async def factory(settings):
            return FakePool(acquire_error=OSError("database does not exist"))

        registry = PoolRegistry(SETTINGS, pool_factory=factory)
        tenants = TenantDatabases(registry, prefix="deepsales_analysis_")
        with pytest.raises(TenantNotFoundError, match="deepsales_analysis_ghost") as excinfo:
            await tenants.open("ghost")
        assert isinstance(excinfo.value.__cause__, OSError)
        assert registry.pool_names() == []

    @pytest.mark.asyncio
    async def test_remove_closes_pool_then_drops(self):
        registry = self._registry()
        tenants = TenantDatabases(registry, prefix="deepsales_analysis_")
        pool = await registry.get_pool("deepsales_analysis_acme")
        drop = AsyncMock(return_value=True)
        with patch("deepsales_db.db.tenants.drop_database", new=drop):
            assert await tenants.remove("acme") is True
        assert pool.closed
        assert "deepsales_analysis_acme" not in registry.pool_names()
        drop.assert_awaited_once_with("deepsales_analysis_acme", SETTINGS)
