from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

ConfigSource = Literal["control_plane", "local_file"]
QueryPayload = str | dict[str, Any]


class BackendKind(str, Enum):
    SQL = "sql"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    API = "api"
    FIRESTORE = "firestore"


class QueryRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data_source_type: BackendKind = Field(validation_alias=AliasChoices("data_source_type", "dataSourceType"))
    query: QueryPayload
    params: dict[str, Any] = Field(default_factory=dict)
    widget_id: str | None = Field(default=None, validation_alias=AliasChoices("widget_id", "widgetId"))
    tenant_id: str | None = Field(default=None, validation_alias=AliasChoices("tenant_id", "tenantId"))


class QueryResult(BaseModel):
    success: bool
    data: list[Any] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    row_count: int = 0
    execution_time: int = 0
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def failure(cls, error: str, *, execution_time: int = 0, metadata: dict[str, Any] | None = None) -> "QueryResult":
        return cls(success=False, error=error, execution_time=max(0, execution_time), metadata=metadata)


class WidgetConfig(BaseModel):
    """One widget entry of a configuration snapshot.

    Entries authored by the control plane use camelCase keys; both spellings
    are accepted and unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    query: QueryPayload
    type: str = "table"
    data_source_type: BackendKind = Field(
        default=BackendKind.SQL,
        validation_alias=AliasChoices("data_source_type", "dataSourceType"),
    )
    params: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str | None = Field(default=None, validation_alias=AliasChoices("tenant_id", "tenantId"))


class SyncRequest(BaseModel):
    current_version: int
    agent_version: str


class SyncMetadata(BaseModel):
    version: int
    config: dict[str, Any] = Field(default_factory=dict)


class SyncResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    has_updates: bool = False
    latest_version: int = 0
    metadata: SyncMetadata | None = None


class WidgetDataMetadata(BaseModel):
    widget_id: str
    type: str
    config_source: ConfigSource
    last_sync: str | None = None
    config_version: int
    cache_hit: bool = False


class WidgetDataResponse(BaseModel):
    success: bool = True
    data: list[Any] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    row_count: int = 0
    execution_time: int = 0
    metadata: WidgetDataMetadata


class SyncStatus(BaseModel):
    control_plane_url: str | None
    last_sync: str | None
    config_version: int
    config_source: ConfigSource | None
    next_sync_in: int | None


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    timestamp: str
    version: str
    connections: dict[str, bool] = Field(default_factory=dict)
    sync_status: SyncStatus


class SyncTriggerResponse(BaseModel):
    success: bool
    message: str
    config_version: int
    timestamp: str


class ExecuteResponse(QueryResult):
    timestamp: str


class ConnectionTestResponse(BaseModel):
    success: bool
    connections: dict[str, bool] = Field(default_factory=dict)
    timestamp: str


class ConnectorList(BaseModel):
    connectors: list[str] = Field(default_factory=list)
