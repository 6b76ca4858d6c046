"""Per-project HTTP routes, mounted once per deployment mode.

Single-project mode mounts the router at /api, global mode at
/api/projects/{project_id}; the only difference is how the ProjectContext is
resolved, which is injected as a FastAPI dependency.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import StreamingResponse

from src.config.project_config import ProjectConfig
from src.gateway.hub import HubRegistry, ProjectHub
from src.gateway.protocol import (
    ClearLockResponse,
    LogResponse,
    MessageResponse,
    RetryParams,
    RunActionParams,
    SpawnResponse,
)
from src.gateway.spawn import Action, SpawnCoordinator
from src.gateway.subscribers import SubscriberChannel
from src.projects.registry import ProjectContext
from src.status.logs import tail_log
from src.status.models import StatusSnapshot
from src.status.prds import retry_prd

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _event_stream(channel: SubscriberChannel, keepalive_s: float) -> AsyncIterator[str]:
    try:
        while not channel.closed or channel.pending():
            try:
                yield await channel.get(timeout=keepalive_s)
            except TimeoutError:
                # Comment frame keeps proxies and browsers from timing out
                yield ": keepalive\n\n"
    finally:
        channel.close()


def create_project_router(resolve_project: Callable[..., ProjectContext]) -> APIRouter:
    router = APIRouter()
    # Closure-local alias: annotations in this module must stay eagerly evaluated
    Project = Annotated[ProjectContext, Depends(resolve_project)]

    def _hub(request: Request, project: ProjectContext) -> ProjectHub:
        hubs: HubRegistry = request.app.state.hubs
        return hubs.get(project)

    def _spawner(request: Request) -> SpawnCoordinator:
        return request.app.state.spawner

    @router.get("/status")
    async def get_status(request: Request, project: Project) -> StatusSnapshot:
        return await _hub(request, project).fetch_snapshot()

    @router.get("/status/events")
    async def status_events(request: Request, project: Project) -> StreamingResponse:
        hub = _hub(request, project)
        channel = await hub.subscribe()
        keepalive_s = request.app.state.settings.watcher.keepalive_s
        return StreamingResponse(
            _event_stream(channel, keepalive_s),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @router.get("/config")
    async def get_config(project: Project) -> ProjectConfig:
        return project.config

    @router.get("/logs/{name}")
    async def get_log(
        project: Project,
        name: str,
        lines: Annotated[int | None, Query()] = None,
    ) -> LogResponse:
        content = await asyncio.to_thread(tail_log, project.directory, name, lines)
        return LogResponse(name=name, lines=content)

    async def _start(request: Request, project: ProjectContext, action: Action, prd_name=None):
        result = await _spawner(request).start(_hub(request, project), action, prd_name=prd_name)
        return SpawnResponse(started=result.started, pid=result.pid)

    @router.post("/actions/run")
    async def action_run(
        request: Request,
        project: Project,
        params: Annotated[RunActionParams | None, Body()] = None,
    ) -> SpawnResponse:
        prd_name = params.prd_name if params is not None else None
        return await _start(request, project, Action.run, prd_name)

    @router.post("/actions/review")
    async def action_review(request: Request, project: Project) -> SpawnResponse:
        return await _start(request, project, Action.review)

    @router.post("/actions/qa")
    async def action_qa(request: Request, project: Project) -> SpawnResponse:
        return await _start(request, project, Action.qa)

    @router.post("/actions/install-cron")
    async def action_install_cron(request: Request, project: Project) -> SpawnResponse:
        return await _start(request, project, Action.install)

    @router.post("/actions/uninstall-cron")
    async def action_uninstall_cron(request: Request, project: Project) -> SpawnResponse:
        return await _start(request, project, Action.uninstall)

    @router.post("/actions/retry")
    async def action_retry(project: Project, params: RetryParams) -> MessageResponse:
        message = retry_prd(project.directory, project.config, params.prd_name)
        return MessageResponse(message=message)

    @router.post("/actions/clear-lock")
    async def action_clear_lock(request: Request, project: Project) -> ClearLockResponse:
        removed = await _spawner(request).clear_lock(_hub(request, project))
        return ClearLockResponse(
            message="Lock cleared successfully",
            removed_claims=len(removed),
        )

    return router
