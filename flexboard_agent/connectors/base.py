from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Protocol

from flexboard_agent.schemas import BackendKind, QueryPayload, QueryResult

logger = logging.getLogger("uvicorn.error")


class Connector(Protocol):
    kind: BackendKind

    async def test_connection(self) -> bool: ...

    async def execute_query(self, query: QueryPayload, params: dict[str, Any] | None = None) -> QueryResult: ...

    def describe(self) -> dict[str, object]: ...


def elapsed_ms(started: float) -> int:
    return max(0, int((perf_counter() - started) * 1000))


def error_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


def as_sql_text(query: QueryPayload) -> str:
    if not isinstance(query, str):
        raise TypeError("Relational connectors require the query as SQL text")
    if not query.strip():
        raise ValueError("Empty query")
    return query


async def close_quietly(resource: Any, *, backend: BackendKind) -> None:
    """Release a connection without letting a failing close escape the connector."""
    try:
        result = resource.close()
        if hasattr(result, "__await__"):
            await result
    except Exception as exc:
        logger.warning(
            "agent.connector.close_failed | %s",
            {"backend": backend.value, "error": error_message(exc)},
        )
