from __future__ import annotations

import logging
from time import perf_counter
from typing import Any

from flexboard_agent.connectors.base import elapsed_ms
from flexboard_agent.connectors.config import FirestoreConfig
from flexboard_agent.schemas import BackendKind, QueryPayload, QueryResult

logger = logging.getLogger("uvicorn.error")

NOT_IMPLEMENTED_ERROR = "Firestore connector is not implemented"


class FirestoreConnector:
    """Document-store placeholder.

    The connection test only checks that a project id is configured, and every
    query yields a failed result flagged ``not_implemented`` so callers never
    mistake it for real data.
    """

    kind = BackendKind.FIRESTORE

    def __init__(self, config: FirestoreConfig) -> None:
        self._config = config

    def describe(self) -> dict[str, object]:
        return self._config.redacted()

    async def test_connection(self) -> bool:
        ok = bool(self._config.project_id)
        logger.info("agent.connector.test | %s", {"backend": self.kind.value, "ok": ok, "check": "configuration"})
        return ok

    async def execute_query(self, query: QueryPayload, params: dict[str, Any] | None = None) -> QueryResult:
        started = perf_counter()
        return QueryResult.failure(
            NOT_IMPLEMENTED_ERROR,
            execution_time=elapsed_ms(started),
            metadata={"not_implemented": True, "project_id": self._config.project_id},
        )
