from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Callable

from psycopg import AsyncConnection

from flexboard_agent.connectors.base import as_sql_text, close_quietly, elapsed_ms, error_message
from flexboard_agent.connectors.config import PostgresConfig
from flexboard_agent.schemas import BackendKind, QueryPayload, QueryResult

logger = logging.getLogger("uvicorn.error")


class PostgresConnector:
    """PostgreSQL via psycopg; parameters use the driver's named ``%(name)s`` style."""

    kind = BackendKind.POSTGRESQL

    def __init__(self, config: PostgresConfig, *, connection_factory: Callable[..., Any] | None = None) -> None:
        self._config = config
        self._connection_factory = connection_factory or AsyncConnection.connect

    def describe(self) -> dict[str, object]:
        return self._config.redacted()

    async def _connect(self) -> Any:
        options: dict[str, Any] = {}
        if self._config.ssl:
            options["sslmode"] = "require"
        return await self._connection_factory(self._config.conninfo, **options)

    async def test_connection(self) -> bool:
        conn: Any | None = None
        try:
            conn = await self._connect()
            await asyncio.wait_for(conn.execute("SELECT 1"), timeout=self._config.timeout_seconds)
            logger.info("agent.connector.test | %s", {"backend": self.kind.value, "ok": True})
            return True
        except Exception as exc:
            logger.warning(
                "agent.connector.test | %s",
                {"backend": self.kind.value, "ok": False, "error": error_message(exc)},
            )
            return False
        finally:
            if conn is not None:
                await close_quietly(conn, backend=self.kind)

    async def execute_query(self, query: QueryPayload, params: dict[str, Any] | None = None) -> QueryResult:
        started = perf_counter()
        conn: Any | None = None
        try:
            sql = as_sql_text(query)
            conn = await self._connect()
            cursor = await asyncio.wait_for(conn.execute(sql, params or None), timeout=self._config.timeout_seconds)
            if cursor.description is None:
                columns: list[str] = []
                rows: list[dict[str, Any]] = []
            else:
                columns = [desc[0] for desc in cursor.description]
                fetched = await cursor.fetchall()
                rows = [{column: row[idx] for idx, column in enumerate(columns)} for row in fetched]
            return QueryResult(
                success=True,
                data=rows,
                columns=columns,
                row_count=len(rows),
                execution_time=elapsed_ms(started),
            )
        except asyncio.TimeoutError:
            return QueryResult.failure("Query execution timed out", execution_time=elapsed_ms(started))
        except Exception as exc:
            return QueryResult.failure(error_message(exc), execution_time=elapsed_ms(started))
        finally:
            if conn is not None:
                await close_quietly(conn, backend=self.kind)
