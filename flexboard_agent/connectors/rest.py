from __future__ import annotations

import logging
from time import perf_counter
from typing import Any

import httpx

from flexboard_agent.connectors.base import elapsed_ms, error_message
from flexboard_agent.connectors.config import RestApiConfig
from flexboard_agent.schemas import BackendKind, QueryPayload, QueryResult

logger = logging.getLogger("uvicorn.error")


class RestApiConnector:
    """Pass-through connector for a REST backend that already answers in query-result shape.

    ``GET /health`` is the connection probe; ``POST /query`` receives
    ``{"query", "params"}`` and is expected to return
    ``{"data", "columns", "rowCount", "metadata"}``.
    """

    kind = BackendKind.API

    def __init__(self, config: RestApiConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    def describe(self) -> dict[str, object]:
        return self._config.redacted()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            headers=self._headers(),
            timeout=timeout,
            transport=self._transport,
        )

    async def test_connection(self) -> bool:
        try:
            async with self._client(self._config.health_timeout_seconds) as client:
                response = await client.get("/health")
            ok = response.is_success
            logger.info(
                "agent.connector.test | %s",
                {"backend": self.kind.value, "ok": ok, "status_code": response.status_code},
            )
            return ok
        except Exception as exc:
            logger.warning(
                "agent.connector.test | %s",
                {"backend": self.kind.value, "ok": False, "error": error_message(exc)},
            )
            return False

    async def execute_query(self, query: QueryPayload, params: dict[str, Any] | None = None) -> QueryResult:
        started = perf_counter()
        try:
            async with self._client(self._config.timeout_seconds) as client:
                response = await client.post("/query", json={"query": query, "params": params or {}})
            body = response.json()
            if not isinstance(body, dict):
                raise ValueError("REST backend returned a non-object body")

            error: str | None = None
            if not response.is_success:
                error = str(body.get("error") or f"HTTP {response.status_code} {response.reason_phrase}")
            data = body.get("data") or []
            row_count = body.get("rowCount")
            return QueryResult(
                success=response.is_success,
                data=data,
                columns=body.get("columns") or [],
                row_count=int(row_count) if row_count is not None else len(data),
                execution_time=elapsed_ms(started),
                error=error,
                metadata=body.get("metadata"),
            )
        except httpx.TimeoutException:
            return QueryResult.failure("REST backend request timed out", execution_time=elapsed_ms(started))
        except Exception as exc:
            return QueryResult.failure(error_message(exc), execution_time=elapsed_ms(started))
