from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from flexboard_agent.schemas import (
    ConnectionTestResponse,
    ConnectorList,
    ExecuteResponse,
    HealthResponse,
    QueryRequest,
    SyncStatus,
    SyncTriggerResponse,
    WidgetDataResponse,
)
from flexboard_agent.services.engine import QueryEngine
from flexboard_agent.services.sync import ControlPlaneSync
from flexboard_agent.services.widget_data import WidgetDataService, isoformat
from flexboard_agent.settings import Settings

router = APIRouter(prefix="/api")
logger = logging.getLogger("uvicorn.error")


def _timestamp() -> str:
    return isoformat(datetime.now(timezone.utc)) or ""


def get_engine(request: Request) -> QueryEngine:
    return request.app.state.engine


def get_sync(request: Request) -> ControlPlaneSync:
    return request.app.state.sync


def get_widget_data(request: Request) -> WidgetDataService:
    return request.app.state.widget_data


def get_agent_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/data/{widget_id}", response_model=WidgetDataResponse)
async def widget_data(widget_id: str, service: WidgetDataService = Depends(get_widget_data)) -> WidgetDataResponse:
    return await service.fetch(widget_id)


# Older dashboards still request widget data on this path.
@router.get("/widgets/{widget_id}/data", response_model=WidgetDataResponse)
async def legacy_widget_data(widget_id: str, service: WidgetDataService = Depends(get_widget_data)) -> WidgetDataResponse:
    return await service.fetch(widget_id)


@router.get("/health", response_model=HealthResponse)
async def health(
    engine: QueryEngine = Depends(get_engine),
    sync: ControlPlaneSync = Depends(get_sync),
    settings: Settings = Depends(get_agent_settings),
):
    try:
        connections = await engine.test_all_connections()
        active = sync.active
        return HealthResponse(
            status="healthy",
            timestamp=_timestamp(),
            version=settings.agent_version,
            connections=connections,
            sync_status=SyncStatus(
                control_plane_url=sync.control_plane_url,
                last_sync=isoformat(sync.last_sync),
                config_version=sync.version,
                config_source=active.source if active is not None else None,
                next_sync_in=sync.next_sync_in(),
            ),
        )
    except Exception as exc:
        logger.exception("agent.health.failed | %s", {"error": str(exc)})
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(exc) or "Health check failed", "timestamp": _timestamp()},
        )


@router.post("/sync", response_model=SyncTriggerResponse)
async def trigger_sync(sync: ControlPlaneSync = Depends(get_sync)):
    logger.info("agent.sync.manual | %s", {"config_version": sync.version})
    outcome = await sync.sync()
    if not outcome.success:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Sync failed",
                "details": outcome.error,
                "config_version": outcome.config_version,
                "timestamp": isoformat(outcome.timestamp),
            },
        )
    message = "Configuration updated" if outcome.status == "updated" else "Configuration is up to date"
    return SyncTriggerResponse(
        success=True,
        message=message,
        config_version=outcome.config_version,
        timestamp=isoformat(outcome.timestamp) or _timestamp(),
    )


@router.post("/widgets/execute", response_model=ExecuteResponse)
async def execute_widget_query(payload: QueryRequest, engine: QueryEngine = Depends(get_engine)) -> ExecuteResponse:
    result = await engine.execute_query(payload)
    return ExecuteResponse(**result.model_dump(), timestamp=_timestamp())


@router.get("/connections/test", response_model=ConnectionTestResponse)
async def test_connections(engine: QueryEngine = Depends(get_engine)) -> ConnectionTestResponse:
    connections = await engine.test_all_connections()
    return ConnectionTestResponse(success=True, connections=connections, timestamp=_timestamp())


@router.get("/connectors", response_model=ConnectorList)
async def list_connectors(engine: QueryEngine = Depends(get_engine)) -> ConnectorList:
    return ConnectorList(connectors=engine.available_connectors())
