"""Shared pytest fixtures for the dashboard tests.

Every test gets a clean environment (no NW_*, DASHBOARD_*, WATCHER_*, SPAWN_*
overrides) and a throwaway Night Watch home. The project fixture lays out a
minimal project directory with a config file and an empty PRD directory.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from src.config.project_config import load_project_config
from src.constants import CONFIG_FILE_NAME, REGISTRY_FILE_NAME
from src.projects.registry import ProjectContext
from src.status.locks import LockKind, lock_path

# Far above any pid_max; os.kill reports ESRCH
_DEAD_PID = 999_999_999

_ENV_PREFIXES = ("NW_", "DASHBOARD_", "WATCHER_", "SPAWN_")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NIGHT_WATCH_HOME", str(tmp_path / "home"))


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "demo-project"
    directory.mkdir()
    (directory / CONFIG_FILE_NAME).write_text(json.dumps({"provider": "claude"}))
    (directory / "docs" / "PRDs" / "night-watch").mkdir(parents=True)
    return directory


@pytest.fixture
def prd_dir(project_dir: Path) -> Path:
    return project_dir / "docs" / "PRDs" / "night-watch"


@pytest.fixture
def context(project_dir: Path) -> ProjectContext:
    return ProjectContext(name="demo-project", directory=project_dir)


@pytest.fixture
def dead_pid() -> int:
    return _DEAD_PID


@pytest.fixture
def register_projects(home: Path):
    def _register(entries: list[dict[str, str]]) -> None:
        (home / REGISTRY_FILE_NAME).write_text(json.dumps(entries))

    return _register


@pytest.fixture
def write_lock():
    def _write(project_dir: Path, kind: LockKind, content: str) -> Path:
        path = lock_path(project_dir, kind, load_project_config(project_dir))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


class FakeChild:
    """Stands in for subprocess.Popen: running until finish() is called."""

    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        self.returncode: int | None = None

    def poll(self) -> int | None:
        return self.returncode

    def finish(self, returncode: int = 0) -> None:
        self.returncode = returncode


class FakePopen:
    """Records launches and hands out FakeChild objects with increasing pids."""

    def __init__(self, *, first_pid: int = 40_000, assign_pid: bool = True) -> None:
        self.calls: list[tuple[list[str], dict]] = []
        self.children: list[FakeChild] = []
        self._next_pid = first_pid
        self.assign_pid = assign_pid

    def __call__(self, argv: list[str], **kwargs) -> FakeChild:
        self.calls.append((argv, kwargs))
        child = FakeChild(self._next_pid if self.assign_pid else None)
        self._next_pid += 1
        self.children.append(child)
        return child


@pytest.fixture
def fake_popen() -> FakePopen:
    return FakePopen()
