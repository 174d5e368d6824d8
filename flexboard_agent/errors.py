from __future__ import annotations

import uuid


class AgentError(Exception):
    """Error surfaced to API callers as a JSON envelope with ``status_code``."""

    status_code = 500
    code = "agent_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        error_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.error_id = error_id or str(uuid.uuid4())


class ConfigUnavailableError(AgentError):
    status_code = 503
    code = "config_unavailable"

    def __init__(self) -> None:
        super().__init__("Configuration not available")


class WidgetNotFoundError(AgentError):
    status_code = 404
    code = "widget_not_found"

    def __init__(self, widget_id: str) -> None:
        super().__init__(f"Widget configuration not found for: {widget_id}")
        self.widget_id = widget_id


class QueryExecutionError(AgentError):
    code = "query_execution_failed"

    def __init__(self, message: str | None, *, backend: str, widget_id: str) -> None:
        super().__init__(message or "Query execution failed")
        self.backend = backend
        self.widget_id = widget_id
