from __future__ import annotations

import asyncio
import logging
import re
from time import perf_counter
from typing import Any, Callable

from flexboard_agent.connectors.base import as_sql_text, elapsed_ms, error_message
from flexboard_agent.connectors.config import SqlServerConfig
from flexboard_agent.schemas import BackendKind, QueryPayload, QueryResult

logger = logging.getLogger("uvicorn.error")

# String literals are matched first so markers inside quotes are left alone.
_TOKEN_PATTERN = re.compile(r"'(?:[^']|'')*'|@@?\w+")


def _odbc_connect(connection_string: str, **options: Any) -> Any:
    import pyodbc

    return pyodbc.connect(connection_string, **options)


def _odbc_message(exc: BaseException) -> str:
    # pyodbc errors carry (sqlstate, message) in args.
    if len(exc.args) > 1 and isinstance(exc.args[1], str):
        return exc.args[1]
    return error_message(exc)


def bind_named_params(sql: str, params: dict[str, Any] | None) -> tuple[str, list[Any]]:
    """Rewrite ``@name`` markers to ODBC ``?`` markers, returning values in marker order.

    Markers without a matching entry in ``params`` (T-SQL locals, ``@@`` globals)
    are kept verbatim.
    """
    if not params:
        return sql, []
    values: list[Any] = []

    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith("'") or token.startswith("@@"):
            return token
        name = token[1:]
        if name not in params:
            return token
        values.append(params[name])
        return "?"

    return _TOKEN_PATTERN.sub(_replace, sql), values


class SqlServerConnector:
    """SQL Server over ODBC; pyodbc is blocking, so each call runs in a worker thread."""

    kind = BackendKind.SQL

    def __init__(self, config: SqlServerConfig, *, connect: Callable[..., Any] | None = None) -> None:
        self._config = config
        self._connect = connect or _odbc_connect

    def describe(self) -> dict[str, object]:
        return self._config.redacted()

    def _open(self) -> Any:
        conn = self._connect(self._config.connection_string, timeout=self._config.request_timeout_seconds)
        conn.timeout = self._config.request_timeout_seconds
        return conn

    def _close(self, conn: Any) -> None:
        try:
            conn.close()
        except Exception as exc:
            logger.warning(
                "agent.connector.close_failed | %s",
                {"backend": self.kind.value, "error": error_message(exc)},
            )

    def _probe(self) -> None:
        conn = self._open()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchall()
        finally:
            self._close(conn)

    def _run(self, sql: str, params: dict[str, Any] | None) -> tuple[list[str], list[list[Any]]]:
        statement, values = bind_named_params(sql, params)
        conn = self._open()
        try:
            cursor = conn.cursor()
            cursor.execute(statement, *values)
            if cursor.description is None:
                return [], []
            columns = [column[0] for column in cursor.description]
            rows = [list(row) for row in cursor.fetchall()]
            return columns, rows
        finally:
            self._close(conn)

    async def test_connection(self) -> bool:
        try:
            await asyncio.to_thread(self._probe)
            logger.info("agent.connector.test | %s", {"backend": self.kind.value, "ok": True})
            return True
        except Exception as exc:
            logger.warning(
                "agent.connector.test | %s",
                {"backend": self.kind.value, "ok": False, "error": _odbc_message(exc)},
            )
            return False

    async def execute_query(self, query: QueryPayload, params: dict[str, Any] | None = None) -> QueryResult:
        started = perf_counter()
        try:
            sql = as_sql_text(query)
            columns, rows = await asyncio.to_thread(self._run, sql, params)
            return QueryResult(
                success=True,
                data=rows,
                columns=columns,
                row_count=len(rows),
                execution_time=elapsed_ms(started),
            )
        except Exception as exc:
            return QueryResult.failure(_odbc_message(exc), execution_time=elapsed_ms(started))
