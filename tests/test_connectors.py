import asyncio
import json

import httpx

from flexboard_agent.connectors import build_connector
from flexboard_agent.connectors.config import (
    FirestoreConfig,
    MySqlConfig,
    PostgresConfig,
    RestApiConfig,
    SqlServerConfig,
)
from flexboard_agent.connectors.firestore import NOT_IMPLEMENTED_ERROR, FirestoreConnector
from flexboard_agent.connectors.mysql import MySqlConnector
from flexboard_agent.connectors.postgres import PostgresConnector
from flexboard_agent.connectors.rest import RestApiConnector
from flexboard_agent.connectors.sqlserver import SqlServerConnector, bind_named_params
from flexboard_agent.schemas import BackendKind


class _FakePgCursor:
    def __init__(self, rows: list[tuple], columns: list[str] | None) -> None:
        self._rows = rows
        self.description = [(column,) for column in columns] if columns is not None else None

    async def fetchall(self) -> list[tuple]:
        return self._rows


class _FakePgConn:
    def __init__(self, *, rows: list[tuple] | None = None, columns: list[str] | None = None, error: Exception | None = None) -> None:
        self.executed: list[tuple[str, object]] = []
        self.closed = False
        self._rows = rows or []
        self._columns = columns
        self._error = error

    async def execute(self, sql: str, params: object = None) -> _FakePgCursor:
        self.executed.append((sql, params))
        if self._error is not None:
            raise self._error
        return _FakePgCursor(self._rows, self._columns)

    async def close(self) -> None:
        self.closed = True


def _pg_connector(conn: _FakePgConn, *, ssl: bool = False, seen: dict | None = None) -> PostgresConnector:
    async def _factory(conninfo: str, **options):
        if seen is not None:
            seen["conninfo"] = conninfo
            seen["options"] = options
        return conn

    return PostgresConnector(
        PostgresConfig(conninfo="postgresql://app:secret@db:5432/flexboard", ssl=ssl),
        connection_factory=_factory,
    )


def test_postgres_executes_with_named_params() -> None:
    conn = _FakePgConn(rows=[(1, "north"), (2, "south")], columns=["id", "region"])
    connector = _pg_connector(conn)

    result = asyncio.run(
        connector.execute_query("SELECT id, region FROM sales WHERE region = %(region)s", {"region": "north"})
    )

    assert result.success is True
    assert result.columns == ["id", "region"]
    assert result.data == [{"id": 1, "region": "north"}, {"id": 2, "region": "south"}]
    assert result.row_count == 2
    assert conn.executed == [("SELECT id, region FROM sales WHERE region = %(region)s", {"region": "north"})]
    assert conn.closed is True


def test_postgres_invalid_query_returns_driver_message() -> None:
    conn = _FakePgConn(error=Exception('syntax error at or near "SELEC"'))
    connector = _pg_connector(conn)

    result = asyncio.run(connector.execute_query("SELEC 1"))

    assert result.success is False
    assert result.error == 'syntax error at or near "SELEC"'
    assert result.execution_time >= 0
    assert conn.closed is True


def test_postgres_rejects_query_descriptor() -> None:
    conn = _FakePgConn()
    connector = _pg_connector(conn)

    result = asyncio.run(connector.execute_query({"collection": "sales"}))

    assert result.success is False
    assert "SQL text" in (result.error or "")
    assert conn.executed == []


def test_postgres_test_connection_false_when_unreachable() -> None:
    async def _refuse(conninfo: str, **options):
        raise OSError("connection refused")

    connector = PostgresConnector(PostgresConfig(conninfo="postgresql://nowhere"), connection_factory=_refuse)

    assert asyncio.run(connector.test_connection()) is False


def test_postgres_ssl_flag_requires_tls() -> None:
    seen: dict = {}
    connector = _pg_connector(_FakePgConn(rows=[(1,)], columns=["?column?"]), ssl=True, seen=seen)

    assert asyncio.run(connector.test_connection()) is True
    assert seen["options"] == {"sslmode": "require"}


class _FakeMyCursor:
    def __init__(self, conn: "_FakeMyConn") -> None:
        self._conn = conn
        self.description = None

    async def __aenter__(self) -> "_FakeMyCursor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def execute(self, sql: str, params: object = None) -> None:
        self._conn.executed.append((sql, params))
        if self._conn.error is not None:
            raise self._conn.error
        self.description = [("total", 8, None, None, None, None, None)]

    async def fetchall(self) -> list[dict]:
        return [{"total": 42}]


class _FakeMyConn:
    def __init__(self, error: Exception | None = None) -> None:
        self.executed: list[tuple[str, object]] = []
        self.closed = False
        self.error = error

    def cursor(self, cursor_class=None) -> _FakeMyCursor:
        return _FakeMyCursor(self)

    def close(self) -> None:
        self.closed = True


def _mysql_connector(conn: _FakeMyConn, seen: dict | None = None) -> MySqlConnector:
    async def _factory(**kwargs):
        if seen is not None:
            seen.update(kwargs)
        return conn

    config = MySqlConfig.from_url("mysql://report:pw@mysql.local:3307/analytics")
    return MySqlConnector(config, connection_factory=_factory)


def test_mysql_executes_with_driver_binding() -> None:
    conn = _FakeMyConn()
    seen: dict = {}
    connector = _mysql_connector(conn, seen)

    result = asyncio.run(connector.execute_query("SELECT COUNT(*) AS total FROM orders WHERE id > %(min_id)s", {"min_id": 10}))

    assert result.success is True
    assert result.columns == ["total"]
    assert result.data == [{"total": 42}]
    assert conn.executed == [("SELECT COUNT(*) AS total FROM orders WHERE id > %(min_id)s", {"min_id": 10})]
    assert conn.closed is True
    assert seen["host"] == "mysql.local"
    assert seen["port"] == 3307
    assert seen["db"] == "analytics"


def test_mysql_error_is_normalised() -> None:
    conn = _FakeMyConn(error=Exception("Table 'analytics.nope' doesn't exist"))
    connector = _mysql_connector(conn)

    result = asyncio.run(connector.execute_query("SELECT * FROM nope"))

    assert result.success is False
    assert result.error == "Table 'analytics.nope' doesn't exist"
    assert conn.closed is True


def test_bind_named_params_rewrites_markers() -> None:
    sql, values = bind_named_params(
        "SELECT * FROM t WHERE a = @a AND b = @b AND note = '@a' AND c = @a AND v = @@VERSION AND d = @local",
        {"a": 1, "b": "x"},
    )

    assert sql == "SELECT * FROM t WHERE a = ? AND b = ? AND note = '@a' AND c = ? AND v = @@VERSION AND d = @local"
    assert values == [1, "x", 1]


def test_bind_named_params_without_params_is_identity() -> None:
    assert bind_named_params("SELECT @x", None) == ("SELECT @x", [])


class _FakeOdbcCursor:
    def __init__(self, conn: "_FakeOdbcConn") -> None:
        self._conn = conn
        self.description = None

    def execute(self, sql: str, *values) -> None:
        self._conn.executed.append((sql, values))
        if self._conn.error is not None:
            raise self._conn.error
        self.description = [("OrderMonth", str, None, 7, 7, 0, True), ("Total", float, None, 19, 19, 4, True)]

    def fetchall(self) -> list[tuple]:
        return [("2024-01", 10.5), ("2024-02", 12.0)]


class _FakeOdbcConn:
    def __init__(self, error: Exception | None = None) -> None:
        self.executed: list[tuple[str, tuple]] = []
        self.closed = False
        self.timeout = 0
        self.error = error

    def cursor(self) -> _FakeOdbcCursor:
        return _FakeOdbcCursor(self)

    def close(self) -> None:
        self.closed = True


def test_sqlserver_returns_positional_rows() -> None:
    conn = _FakeOdbcConn()
    seen: dict = {}

    def _connect(connection_string: str, **options):
        seen["connection_string"] = connection_string
        seen.update(options)
        return conn

    connector = SqlServerConnector(
        SqlServerConfig(connection_string="DRIVER={ODBC Driver 18 for SQL Server};SERVER=db;PWD=secret", request_timeout_seconds=12),
        connect=_connect,
    )

    result = asyncio.run(connector.execute_query("SELECT * FROM Sales WHERE Region = @region", {"region": "EU"}))

    assert result.success is True
    assert result.columns == ["OrderMonth", "Total"]
    assert result.data == [["2024-01", 10.5], ["2024-02", 12.0]]
    assert result.row_count == 2
    assert conn.executed == [("SELECT * FROM Sales WHERE Region = ?", ("EU",))]
    assert conn.timeout == 12
    assert seen["timeout"] == 12
    assert conn.closed is True


def test_sqlserver_driver_error_uses_message_part() -> None:
    conn = _FakeOdbcConn(error=Exception("42S02", "[42S02] Invalid object name 'Nope'. (208)"))
    connector = SqlServerConnector(SqlServerConfig(connection_string="DSN=x"), connect=lambda *_a, **_k: conn)

    result = asyncio.run(connector.execute_query("SELECT * FROM Nope"))

    assert result.success is False
    assert result.error == "[42S02] Invalid object name 'Nope'. (208)"
    assert conn.closed is True


def test_sqlserver_test_connection_never_raises() -> None:
    def _refuse(*_args, **_kwargs):
        raise RuntimeError("Login timeout expired")

    connector = SqlServerConnector(SqlServerConfig(connection_string="DSN=x"), connect=_refuse)

    assert asyncio.run(connector.test_connection()) is False


def test_sqlserver_redacts_password() -> None:
    connector = SqlServerConnector(SqlServerConfig(connection_string="SERVER=db;UID=sa;PWD=secret"))

    assert connector.describe()["connection_string"] == "SERVER=db;UID=sa;PWD=***"


def _rest_connector(handler) -> RestApiConnector:
    return RestApiConnector(
        RestApiConfig(base_url="http://backend.test/api", api_key="rest-key", timeout_seconds=2, health_timeout_seconds=1),
        transport=httpx.MockTransport(handler),
    )


def test_rest_connector_passes_through_result_shape() -> None:
    seen: dict = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"data": [{"n": 1}], "columns": ["n"], "rowCount": 1, "metadata": {"source": "crm"}},
        )

    result = asyncio.run(_rest_connector(_handler).execute_query("top-customers", {"limit": 5}))

    assert result.success is True
    assert result.data == [{"n": 1}]
    assert result.columns == ["n"]
    assert result.row_count == 1
    assert result.metadata == {"source": "crm"}
    assert seen["url"] == "http://backend.test/api/query"
    assert seen["auth"] == "Bearer rest-key"
    assert seen["body"] == {"query": "top-customers", "params": {"limit": 5}}


def test_rest_connector_non_2xx_is_failure() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "unknown query"})

    result = asyncio.run(_rest_connector(_handler).execute_query("bad"))

    assert result.success is False
    assert result.error == "unknown query"


def test_rest_connector_network_error_is_failure() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    connector = _rest_connector(_handler)

    result = asyncio.run(connector.execute_query("anything"))
    assert result.success is False
    assert "connection refused" in (result.error or "")
    assert asyncio.run(connector.test_connection()) is False


def test_rest_health_probe() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/health"
        return httpx.Response(200, json={"status": "ok"})

    assert asyncio.run(_rest_connector(_handler).test_connection()) is True


def test_firestore_placeholder_contract() -> None:
    connector = FirestoreConnector(FirestoreConfig(project_id="flexboard-prod"))

    result = asyncio.run(connector.execute_query("sales", {}))

    assert asyncio.run(connector.test_connection()) is True
    assert result.success is False
    assert result.error == NOT_IMPLEMENTED_ERROR
    assert result.data == []
    assert result.metadata == {"not_implemented": True, "project_id": "flexboard-prod"}


def test_firestore_without_project_fails_test() -> None:
    assert asyncio.run(FirestoreConnector(FirestoreConfig(project_id="")).test_connection()) is False


def test_build_connector_dispatches_on_kind() -> None:
    connector = build_connector(BackendKind.FIRESTORE, FirestoreConfig(project_id="p"))

    assert isinstance(connector, FirestoreConnector)
    assert connector.kind is BackendKind.FIRESTORE
