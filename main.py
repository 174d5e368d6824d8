import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flexboard_agent.api.routes import router
from flexboard_agent.errors import AgentError
from flexboard_agent.services.config_store import LocalConfigStore
from flexboard_agent.services.engine import QueryEngine
from flexboard_agent.services.sync import ControlPlaneSync
from flexboard_agent.services.widget_data import WidgetDataService, isoformat
from flexboard_agent.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _error_body(*, code: str, message: str, error_id: str) -> dict[str, object]:
    return {
        "success": False,
        "error": message,
        "code": code,
        "error_id": error_id,
        "timestamp": isoformat(datetime.now(timezone.utc)),
    }


def create_app(
    settings: Settings | None = None,
    *,
    engine: QueryEngine | None = None,
    sync: ControlPlaneSync | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or QueryEngine.from_settings(settings)
    sync = sync or ControlPlaneSync(settings=settings, store=LocalConfigStore(settings.config_file_path))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "agent.startup | %s",
            {"version": settings.agent_version, "environment": settings.environment, "connectors": engine.available_connectors()},
        )
        connections = await engine.test_all_connections()
        logger.info("agent.startup.connections | %s", connections)
        await sync.load_local()
        if settings.sync_enabled:
            await sync.sync()
            sync.start()
        try:
            yield
        finally:
            await sync.stop()
            logger.info("agent.shutdown | %s", {"config_version": sync.version})

    docs_enabled = settings.environment != "production"
    app = FastAPI(
        title="Flexboard Agent",
        description="On-premise query execution agent with control plane configuration sync",
        version=settings.agent_version,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.sync = sync
    app.state.widget_data = WidgetDataService(engine=engine, sync=sync, settings=settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AgentError)
    async def handle_agent_error(_request: Request, exc: AgentError) -> JSONResponse:
        logger.warning(
            "agent.handled_error | %s",
            {
                "error_id": exc.error_id,
                "code": exc.code,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(code=exc.code, message=exc.message, error_id=exc.error_id),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        error_id = str(uuid.uuid4())
        body = _error_body(code="invalid_request", message="Request validation failed", error_id=error_id)
        body["details"] = [{"loc": list(item.get("loc", [])), "msg": item.get("msg")} for item in exc.errors()]
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_request: Request, exc: Exception) -> JSONResponse:
        error_id = str(uuid.uuid4())
        logger.exception("agent.unhandled_error | %s", {"error_id": error_id})
        return JSONResponse(
            status_code=500,
            content=_error_body(code="internal_error", message="Unexpected internal error", error_id=error_id),
        )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    logging.basicConfig(
        level=_settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(app, host=_settings.api_host, port=_settings.api_port)
