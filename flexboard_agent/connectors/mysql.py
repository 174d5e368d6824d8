from __future__ import annotations

import asyncio
import logging
import ssl
from time import perf_counter
from typing import Any, Callable

import aiomysql

from flexboard_agent.connectors.base import as_sql_text, close_quietly, elapsed_ms, error_message
from flexboard_agent.connectors.config import MySqlConfig
from flexboard_agent.schemas import BackendKind, QueryPayload, QueryResult

logger = logging.getLogger("uvicorn.error")


class MySqlConnector:
    kind = BackendKind.MYSQL

    def __init__(self, config: MySqlConfig, *, connection_factory: Callable[..., Any] | None = None) -> None:
        self._config = config
        self._connection_factory = connection_factory or aiomysql.connect

    def describe(self) -> dict[str, object]:
        return self._config.redacted()

    async def _connect(self) -> Any:
        if self._config.error is not None:
            raise ValueError(self._config.error)
        return await self._connection_factory(
            host=self._config.host,
            port=self._config.port,
            user=self._config.user,
            password=self._config.password,
            db=self._config.database,
            ssl=ssl.create_default_context() if self._config.ssl else None,
            connect_timeout=self._config.timeout_seconds,
            autocommit=True,
        )

    async def test_connection(self) -> bool:
        conn: Any | None = None
        try:
            conn = await self._connect()
            async with conn.cursor() as cursor:
                await asyncio.wait_for(cursor.execute("SELECT 1"), timeout=self._config.timeout_seconds)
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
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await asyncio.wait_for(cursor.execute(sql, params or None), timeout=self._config.timeout_seconds)
                columns = [desc[0] for desc in cursor.description or []]
                fetched = await cursor.fetchall() if cursor.description else []
            rows = [dict(row) for row in fetched]
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
