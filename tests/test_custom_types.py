import asyncio
from contextlib import asynccontextmanager

import pytest

from stonegate.custom_types import CustomTypeManager, TypeKind
from stonegate.errors import (
    ConnectionFailedError,
    MigrationFailedError,
    QueryFailedError,
    SchemaExtractionError,
)


class FakeConnection:
    def __init__(self, tracked=None, existing=None, fail_on=None, listed=None, fail_fetch=False):
        self.tracked = dict(tracked or {})
        self.existing = set(existing or ())
        self.fail_on = fail_on
        self.listed = listed or []
        self.fail_fetch = fail_fetch
        self.executed = []

    async def execute(self, sql, *args):
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError("boom")
        self.executed.append((sql, args))
        return "OK"

    async def fetch(self, sql, *args):
        if self.fail_fetch:
            raise RuntimeError("query broke")
        if "_stonescriptdb_gateway_types" in sql:
            return list(self.tracked.items())
        return [(name,) for name in self.listed]

    async def fetchrow(self, sql, *args):
        return (1,) if args[0] in self.existing else None


class FakePool:
    def __init__(self, conn=None, fail=False):
        self.conn = conn
        self.fail = fail
        self.acquired = 0

    @asynccontextmanager
    async def _ctx(self):
        yield self.conn

    def acquire(self):
        self.acquired += 1
        if self.fail:
            raise RuntimeError("no connection")
        return self._ctx()


def _tracking_inserts(conn):
    return [args for sql, args in conn.executed if "INSERT INTO" in sql]


def _creates(conn):
    return [sql for sql, _ in conn.executed if sql.startswith("CREATE TYPE")]


@pytest.fixture
def manager():
    return CustomTypeManager()


def test_parse_enum_type(manager, tmp_path):
    path = tmp_path / "order_status.pssql"
    path.write_text(
        "\n-- Order status enum\nCREATE TYPE order_status AS ENUM (\n"
        "    'pending',\n    'processing',\n    'shipped',\n    'delivered',\n"
        "    'cancelled'\n);\n"
    )
    custom_type = manager.parse_type(path)
    assert custom_type.name == "order_status"
    assert custom_type.type_kind is TypeKind.ENUM
    assert custom_type.sql.startswith("-- Order status enum")


def test_parse_composite_type(manager, tmp_path):
    path = tmp_path / "address.pssql"
    path.write_text(
        "\n-- Address composite type\nCREATE TYPE address AS (\n    street TEXT,\n"
        "    city TEXT,\n    state TEXT,\n    zip_code TEXT,\n    country TEXT\n);\n"
    )
    custom_type = manager.parse_type(path)
    assert custom_type.name == "address"
    assert custom_type.type_kind is TypeKind.COMPOSITE


def test_parse_domain_type(manager, tmp_path):
    path = tmp_path / "email.pssql"
    path.write_text(
        "\n-- Email domain with validation\nCREATE DOMAIN email AS TEXT\n"
        "CHECK (VALUE ~ '^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\\.[a-zA-Z]{2,}$');\n"
    )
    custom_type = manager.parse_type(path)
    assert custom_type.name == "email"
    assert custom_type.type_kind is TypeKind.DOMAIN


def test_parse_name_is_lowercased(manager, tmp_path):
    path = tmp_path / "mood.sql"
    path.write_text("create type Mood as enum ('sad', 'ok');")
    assert manager.parse_type(path).name == "mood"


def test_parse_without_create_raises(manager, tmp_path):
    path = tmp_path / "broken.sql"
    path.write_text("SELECT 1;")
    with pytest.raises(SchemaExtractionError):
        manager.parse_type(path)


def test_parse_missing_file_raises(manager, tmp_path):
    with pytest.raises(SchemaExtractionError):
        manager.parse_type(tmp_path / "absent.sql")


def test_find_type_files(manager, tmp_path):
    (tmp_path / "order_status.pssql").write_text("CREATE TYPE order_status AS ENUM ('pending');")
    (tmp_path / "address.sql").write_text("CREATE TYPE address AS (city TEXT);")
    (tmp_path / "readme.md").write_text("docs")
    files = manager.find_type_files(tmp_path)
    assert [f.name for f in files] == ["address.sql", "order_status.pssql"]


def test_find_type_files_missing_dir(manager, tmp_path):
    assert manager.find_type_files(tmp_path / "nope") == []


def test_checksum_normalization(manager):
    sql1 = "CREATE TYPE status AS ENUM ('a', 'b');"
    sql2 = "CREATE   TYPE   status   AS   ENUM   ('a',   'b');"
    sql3 = "create type status as enum ('a', 'b');"
    assert manager.compute_checksum(sql1) == manager.compute_checksum(sql2)
    assert manager.compute_checksum(sql1) == manager.compute_checksum(sql3)
    assert manager.compute_checksum(sql1) != manager.compute_checksum(
        "CREATE TYPE status AS ENUM ('a');"
    )


def test_checksum_ignores_comments(manager, tmp_path):
    first = tmp_path / "a.sql"
    second = tmp_path / "b.sql"
    first.write_text("-- note\nCREATE TYPE s AS ENUM ('x');")
    second.write_text("/* other */ CREATE TYPE s AS ENUM ('x');")
    assert manager.parse_type(first).checksum == manager.parse_type(second).checksum


def test_type_kind_str(manager, tmp_path):
    composite = tmp_path / "address.sql"
    composite.write_text("CREATE TYPE address AS (city TEXT);")
    domain = tmp_path / "email.sql"
    domain.write_text("CREATE DOMAIN email AS TEXT;")
    assert str(manager.parse_type(composite).type_kind) == "COMPOSITE"
    assert f"{manager.parse_type(domain).type_kind}" == "DOMAIN"


def test_deploy_empty_dir_does_not_connect(manager, tmp_path):
    pool = FakePool(FakeConnection())
    assert asyncio.run(manager.deploy_types(pool, "db", tmp_path)) == 0
    assert pool.acquired == 0


def _write_types(directory):
    (directory / "address.sql").write_text("CREATE TYPE address AS (city TEXT);")
    (directory / "status.sql").write_text("CREATE TYPE status AS ENUM ('a');")


def test_deploy_creates_types(manager, tmp_path):
    _write_types(tmp_path)
    conn = FakeConnection()
    result = asyncio.run(manager.deploy_types(FakePool(conn), "db", tmp_path))
    assert result == 2
    assert len(_creates(conn)) == 2
    inserts = _tracking_inserts(conn)
    assert [args[0] for args in inserts] == ["address", "status"]
    assert inserts[0][1] == "COMPOSITE"
    assert inserts[1][3] == "status.sql"


def test_deploy_skips_unchanged(manager, tmp_path):
    _write_types(tmp_path)
    tracked = {
        name: manager.parse_type(tmp_path / f"{name}.sql").checksum
        for name in ("address", "status")
    }
    conn = FakeConnection(tracked=tracked, existing=tracked)
    result = asyncio.run(manager.deploy_types(FakePool(conn), "db", tmp_path))
    assert result == 0
    assert _creates(conn) == []
    assert _tracking_inserts(conn) == []


def test_deploy_changed_existing_type_is_updated_not_recreated(manager, tmp_path):
    (tmp_path / "status.sql").write_text("CREATE TYPE status AS ENUM ('a', 'b');")
    conn = FakeConnection(tracked={"status": "old"}, existing={"status"})
    result = asyncio.run(manager.deploy_types(FakePool(conn), "db", tmp_path))
    assert result == 1
    assert _creates(conn) == []
    assert [args[0] for args in _tracking_inserts(conn)] == ["status"]


def test_deploy_existing_untracked_type_is_tracked(manager, tmp_path):
    (tmp_path / "status.sql").write_text("CREATE TYPE status AS ENUM ('a');")
    conn = FakeConnection(existing={"status"})
    result = asyncio.run(manager.deploy_types(FakePool(conn), "db", tmp_path))
    assert result == 0
    assert _creates(conn) == []
    assert len(_tracking_inserts(conn)) == 1


def test_deploy_create_failure_raises(manager, tmp_path):
    (tmp_path / "status.sql").write_text("CREATE TYPE status AS ENUM ('a');")
    conn = FakeConnection(fail_on="CREATE TYPE status")
    with pytest.raises(MigrationFailedError) as info:
        asyncio.run(manager.deploy_types(FakePool(conn), "db", tmp_path))
    assert info.value.migration == "type:status"
    assert info.value.database == "db"


def test_deploy_connection_failure(manager, tmp_path):
    _write_types(tmp_path)
    with pytest.raises(ConnectionFailedError) as info:
        asyncio.run(manager.deploy_types(FakePool(fail=True), "db", tmp_path))
    assert info.value.database == "db"


def test_deploy_tracking_table_failure(manager, tmp_path):
    _write_types(tmp_path)
    conn = FakeConnection(fail_on="CREATE TABLE IF NOT EXISTS")
    with pytest.raises(MigrationFailedError) as info:
        asyncio.run(manager.deploy_types(FakePool(conn), "db", tmp_path))
    assert info.value.migration == "_stonescriptdb_gateway_types"


def test_list_types(manager):
    conn = FakeConnection(listed=["address", "status"])
    assert asyncio.run(manager.list_types(FakePool(conn), "db")) == ["address", "status"]


def test_list_types_query_failure(manager):
    conn = FakeConnection(fail_fetch=True)
    with pytest.raises(QueryFailedError) as info:
        asyncio.run(manager.list_types(FakePool(conn), "db"))
    assert info.value.function == "list_types"


def test_list_types_connection_failure(manager):
    with pytest.raises(ConnectionFailedError):
        asyncio.run(manager.list_types(FakePool(fail=True), "db"))