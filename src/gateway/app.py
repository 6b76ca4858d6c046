from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config.settings import Settings, get_settings
from src.gateway.hub import HubRegistry
from src.gateway.protocol import ErrorBody, ProjectEntryOut
from src.gateway.routes import create_project_router
from src.gateway.spawn import SpawnCoordinator
from src.infra.errors import ConflictError, NightWatchError
from src.infra.logging import setup_logging
from src.projects.registry import ProjectContext, ProjectRegistry
from src.status.aggregator import StatusAggregator, default_providers
from src.status.tracker import ProcessTracker

logger = structlog.get_logger()

STATUS_BY_CODE: dict[str, int] = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INVALID_REQUEST": 400,
    "SNAPSHOT_FAILED": 500,
    "SPAWN_FAILED": 500,
}


def _single_project(request: Request) -> ProjectContext:
    registry: ProjectRegistry = request.app.state.registry
    return registry.default()


def _registered_project(project_id: str, request: Request) -> ProjectContext:
    registry: ProjectRegistry = request.app.state.registry
    return registry.resolve(project_id)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the dashboard app. Settings are loaded from the environment when omitted."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan: initialize shared state on startup, stop watchers on shutdown."""
        resolved = settings or get_settings()
        setup_logging(
            json_output=resolved.dashboard.json_logs,
            log_level=resolved.dashboard.log_level,
        )

        registry = ProjectRegistry(
            resolved.registry.home, project_dir=resolved.dashboard.project_dir
        )
        tracker = ProcessTracker()
        aggregator = StatusAggregator(default_providers(resolved.registry.home), tracker)
        hubs = HubRegistry(aggregator, resolved.watcher)
        spawner = SpawnCoordinator(resolved.spawn, tracker)

        app.state.settings = resolved
        app.state.registry = registry
        app.state.tracker = tracker
        app.state.hubs = hubs
        app.state.spawner = spawner
        logger.info(
            "dashboard_started",
            host=resolved.dashboard.host,
            port=resolved.dashboard.port,
            mode="single" if registry.single_project else "global",
            home=str(resolved.registry.home),
        )

        yield

        await spawner.flush_notifications()
        await hubs.stop_all()
        logger.info("dashboard_stopped")

    app = FastAPI(title="Night Watch Dashboard", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NightWatchError)
    async def night_watch_error_handler(request: Request, exc: NightWatchError) -> JSONResponse:
        status_code = STATUS_BY_CODE.get(exc.code, 500)
        pid = exc.pid if isinstance(exc, ConflictError) else None
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=str(exc))
        else:
            logger.info("request_rejected", path=request.url.path, code=exc.code, error=str(exc))
        body = ErrorBody(error=str(exc), code=exc.code, pid=pid)
        return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        body = ErrorBody(error="An internal error occurred", code="INTERNAL_ERROR")
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/projects")
    async def list_projects(request: Request) -> list[ProjectEntryOut]:
        registry: ProjectRegistry = request.app.state.registry
        return [
            ProjectEntryOut(name=entry.name, path=str(entry.path), valid=entry.valid)
            for entry in registry.list_projects()
        ]

    app.include_router(create_project_router(_single_project), prefix="/api")
    app.include_router(
        create_project_router(_registered_project), prefix="/api/projects/{project_id}"
    )
    return app


app = create_app()
