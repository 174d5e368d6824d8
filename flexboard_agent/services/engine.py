from __future__ import annotations

import logging
from typing import Mapping

from flexboard_agent.connectors import Connector, build_connectors
from flexboard_agent.connectors.base import error_message
from flexboard_agent.connectors.config import ConnectionConfig
from flexboard_agent.schemas import BackendKind, QueryRequest, QueryResult
from flexboard_agent.settings import Settings

logger = logging.getLogger("uvicorn.error")


class QueryEngine:
    """Routes query requests to the connector registered for their backend kind.

    The engine keeps no results; every call produces a fresh ``QueryResult``
    and never raises.
    """

    def __init__(self, connectors: Mapping[BackendKind, Connector]) -> None:
        self._connectors: dict[BackendKind, Connector] = dict(connectors)

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueryEngine":
        engine = cls(build_connectors(ConnectionConfig.from_settings(settings)))
        logger.info("agent.engine.init | %s", {"connectors": engine.available_connectors()})
        return engine

    def available_connectors(self) -> list[str]:
        return [kind.value for kind in self._connectors]

    def connector_config(self, kind: BackendKind | str) -> dict[str, object] | None:
        try:
            connector = self._connectors.get(BackendKind(kind))
        except ValueError:
            return None
        if connector is None:
            return None
        return connector.describe()

    async def test_all_connections(self) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for kind, connector in self._connectors.items():
            try:
                results[kind.value] = await connector.test_connection()
            except Exception as exc:
                logger.warning(
                    "agent.connector.test_error | %s",
                    {"backend": kind.value, "error": error_message(exc)},
                )
                results[kind.value] = False
        return results

    async def execute_query(self, request: QueryRequest) -> QueryResult:
        connector = self._connectors.get(request.data_source_type)
        if connector is None:
            result = QueryResult.failure(f"Unsupported data source type: {request.data_source_type.value}")
        else:
            try:
                result = await connector.execute_query(request.query, request.params)
            except Exception as exc:
                logger.exception(
                    "agent.query.connector_raised | %s",
                    {"backend": request.data_source_type.value, "widget_id": request.widget_id},
                )
                result = QueryResult.failure(error_message(exc))

        logger.info(
            "agent.query.execute | %s",
            {
                "backend": request.data_source_type.value,
                "widget_id": request.widget_id,
                "tenant_id": request.tenant_id,
                "success": result.success,
                "row_count": result.row_count,
                "execution_time_ms": result.execution_time,
                "error": result.error,
            },
        )
        return result
