"""HTTP surface tests against the full FastAPI app (lifespan included)."""

from __future__ import annotations

import os
from collections.abc import Iterator
from functools import partial
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.config.settings import DashboardSettings, RegistrySettings, Settings, SpawnSettings
from src.gateway import app as app_module
from src.gateway.app import create_app
from src.gateway.routes import _event_stream
from src.gateway.spawn import SpawnCoordinator
from src.gateway.subscribers import SubscriberChannel
from src.status.aggregator import InventoryProviders
from src.status.locks import LockKind
from src.status.logs import log_path
from src.status.models import CrontabInfo
from src.status.prds import collect_prd_info

pytestmark = pytest.mark.integration


def _offline_providers(home: Path) -> InventoryProviders:
    return InventoryProviders(
        prds=partial(collect_prd_info, home=home),
        prs=lambda d, c: [],
        crontab=lambda d, c: CrontabInfo(installed=False),
        logs=lambda d, c: [],
    )


def _client(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(app_module, "default_providers", _offline_providers)
    return TestClient(create_app(settings))


def _use_fake_spawner(client: TestClient, fake_popen) -> None:
    state = client.app.state
    state.spawner = SpawnCoordinator(SpawnSettings(), state.tracker, popen=fake_popen)


@pytest.fixture
def single_client(
    project_dir: Path, home: Path, fake_popen, monkeypatch: pytest.MonkeyPatch
) -> Iterator[TestClient]:
    settings = Settings(
        dashboard=DashboardSettings(project_dir=project_dir),
        registry=RegistrySettings(home=home),
    )
    with _client(settings, monkeypatch) as client:
        _use_fake_spawner(client, fake_popen)
        yield client


@pytest.fixture
def global_client(
    project_dir: Path, home: Path, fake_popen, register_projects, monkeypatch: pytest.MonkeyPatch
) -> Iterator[TestClient]:
    register_projects([{"name": "demo", "path": str(project_dir)}])
    settings = Settings(registry=RegistrySettings(home=home))
    with _client(settings, monkeypatch) as client:
        _use_fake_spawner(client, fake_popen)
        yield client


class TestHealth:
    def test_health(self, single_client: TestClient) -> None:
        assert single_client.get("/health").json() == {"status": "ok"}


class TestSingleProjectRoutes:
    def test_status(self, single_client: TestClient, prd_dir: Path) -> None:
        (prd_dir / "a.md").write_text("# A")
        body = single_client.get("/api/status").json()
        assert body["projectName"] == "demo-project"
        assert body["prds"] == [{"name": "a", "status": "ready", "claimed": False}]
        assert [p["name"] for p in body["processes"]] == ["executor", "reviewer"]

    def test_config(self, single_client: TestClient) -> None:
        body = single_client.get("/api/config").json()
        assert body["prdDir"] == "docs/PRDs/night-watch"
        assert body["provider"] == "claude"

    def test_logs(self, single_client: TestClient, project_dir: Path) -> None:
        path = log_path(project_dir, "executor")
        path.parent.mkdir(parents=True)
        path.write_text("one\ntwo\n")
        body = single_client.get("/api/logs/executor", params={"lines": 1}).json()
        assert body == {"name": "executor", "lines": ["two"]}

    def test_unknown_log_is_bad_request(self, single_client: TestClient) -> None:
        response = single_client.get("/api/logs/secrets")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_run_then_conflict(self, single_client: TestClient, fake_popen) -> None:
        first = single_client.post("/api/actions/run", json={"prdName": "ITEM-1"})
        assert first.status_code == 200
        pid = first.json()["pid"]
        assert first.json() == {"started": True, "pid": pid}
        assert fake_popen.calls[0][1]["env"]["NW_PRD_PRIORITY"] == "ITEM-1"

        second = single_client.post("/api/actions/run")
        assert second.status_code == 409
        assert second.json() == {
            "error": f"Executor is already running (PID {pid})",
            "code": "CONFLICT",
            "pid": pid,
        }

    @pytest.mark.parametrize(
        ("path", "verb"),
        [
            ("review", "review"),
            ("qa", "qa"),
            ("install-cron", "install"),
            ("uninstall-cron", "uninstall"),
        ],
    )
    def test_other_actions(
        self, single_client: TestClient, fake_popen, path: str, verb: str
    ) -> None:
        response = single_client.post(f"/api/actions/{path}")
        assert response.status_code == 200
        assert fake_popen.calls[0][0] == ["night-watch", verb]

    def test_spawn_failure(self, single_client: TestClient, fake_popen) -> None:
        fake_popen.assign_pid = False
        response = single_client.post("/api/actions/review")
        assert response.status_code == 500
        assert response.json()["code"] == "SPAWN_FAILED"

    def test_retry(self, single_client: TestClient, prd_dir: Path) -> None:
        (prd_dir / "done").mkdir()
        (prd_dir / "done" / "ITEM-1.md").write_text("# Item")

        response = single_client.post("/api/actions/retry", json={"prdName": "ITEM-1"})

        assert response.json() == {"message": 'Moved "ITEM-1.md" back to pending'}
        status = single_client.get("/api/status").json()
        assert status["prds"][0]["status"] == "ready"

    def test_retry_missing(self, single_client: TestClient) -> None:
        response = single_client.post("/api/actions/retry", json={"prdName": "ghost"})
        assert response.status_code == 404

    def test_clear_lock_refused_while_running(
        self, single_client: TestClient, project_dir: Path, write_lock
    ) -> None:
        path = write_lock(project_dir, LockKind.executor, str(os.getpid()))
        response = single_client.post("/api/actions/clear-lock")
        assert response.status_code == 409
        assert response.json()["pid"] == os.getpid()
        assert path.exists()

    def test_clear_lock(
        self, single_client: TestClient, project_dir: Path, prd_dir: Path, write_lock, dead_pid
    ) -> None:
        write_lock(project_dir, LockKind.executor, str(dead_pid))
        (prd_dir / "a.md.claim").write_text("{}")
        response = single_client.post("/api/actions/clear-lock")
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Lock cleared successfully",
            "removedClaims": 1,
        }

    def test_project_routes_unavailable(self, single_client: TestClient) -> None:
        assert single_client.get("/api/projects/demo/status").status_code == 404


class TestGlobalRoutes:
    def test_list_projects(self, global_client: TestClient, project_dir: Path) -> None:
        assert global_client.get("/api/projects").json() == [
            {"name": "demo", "path": str(project_dir), "valid": True}
        ]

    def test_project_status(self, global_client: TestClient) -> None:
        body = global_client.get("/api/projects/demo/status").json()
        assert body["projectName"] == "demo-project"

    def test_unknown_project(self, global_client: TestClient) -> None:
        response = global_client.get("/api/projects/ghost/config")
        assert response.status_code == 404
        assert response.json() == {"error": "Project not found: ghost", "code": "NOT_FOUND"}

    def test_single_routes_unavailable(self, global_client: TestClient) -> None:
        assert global_client.get("/api/status").status_code == 404

    def test_project_action(
        self, global_client: TestClient, fake_popen, project_dir: Path
    ) -> None:
        response = global_client.post("/api/projects/demo/actions/review")
        assert response.status_code == 200
        assert fake_popen.calls[0][1]["cwd"] == project_dir.resolve()


class TestEventStream:
    @pytest.mark.asyncio
    async def test_drains_then_closes(self) -> None:
        channel = SubscriberChannel()
        channel.write("event: status_changed\ndata: {}\n\n")
        stream = _event_stream(channel, keepalive_s=5)

        assert await anext(stream) == "event: status_changed\ndata: {}\n\n"
        channel.close()
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_keepalive_comment(self) -> None:
        channel = SubscriberChannel()
        stream = _event_stream(channel, keepalive_s=0.01)
        assert await anext(stream) == ": keepalive\n\n"
        await stream.aclose()
        assert channel.closed
