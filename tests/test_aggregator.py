"""Tests for snapshot aggregation, fail-fast behavior, and fingerprinting."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from src.config.project_config import ProjectConfig, load_project_config
from src.infra.errors import SnapshotError
from src.status.aggregator import InventoryProviders, StatusAggregator
from src.status.locks import LockKind
from src.status.models import CrontabInfo, PrdInfo, ProcessInfo, fingerprint
from src.status.tracker import ProcessTracker


def _providers(prds: list[PrdInfo] | None = None, **overrides) -> InventoryProviders:
    defaults = {
        "prds": lambda d, c: list(prds or []),
        "prs": lambda d, c: [],
        "crontab": lambda d, c: CrontabInfo(installed=False),
        "logs": lambda d, c: [],
    }
    defaults.update(overrides)
    return InventoryProviders(**defaults)


def _fetch(aggregator: StatusAggregator, project_dir: Path):
    return aggregator.fetch_snapshot(project_dir, load_project_config(project_dir))


class TestFetchSnapshot:
    def test_merges_collaborators(self, project_dir: Path) -> None:
        prds = [PrdInfo(name="a", status="ready"), PrdInfo(name="b", status="in-progress")]
        snapshot = _fetch(StatusAggregator(_providers(prds)), project_dir)

        assert snapshot.project_name == "demo-project"
        assert snapshot.project_dir == str(project_dir)
        assert [p.name for p in snapshot.processes] == ["executor", "reviewer"]
        assert snapshot.active_prd == "b"
        assert snapshot.crontab.installed is False

    def test_lock_drives_process_state(self, project_dir: Path, write_lock, dead_pid: int) -> None:
        write_lock(project_dir, LockKind.executor, str(os.getpid()))
        write_lock(project_dir, LockKind.reviewer, str(dead_pid))

        snapshot = _fetch(StatusAggregator(_providers()), project_dir)

        assert snapshot.process("executor") == ProcessInfo(
            name="executor", running=True, pid=os.getpid()
        )
        assert snapshot.process("reviewer") == ProcessInfo(
            name="reviewer", running=False, pid=dead_pid
        )

    def test_tracked_child_counts_as_running(self, project_dir: Path, fake_popen) -> None:
        tracker = ProcessTracker()
        child = fake_popen(["night-watch", "run"])
        tracker.record(project_dir, "executor", child)
        aggregator = StatusAggregator(_providers(), tracker)

        assert _fetch(aggregator, project_dir).process("executor").pid == child.pid

        child.finish()
        assert _fetch(aggregator, project_dir).process("executor").running is False

    def test_collaborator_failure_fails_whole_snapshot(self, project_dir: Path) -> None:
        def broken(directory: Path, config: ProjectConfig):
            raise OSError("disk on fire")

        aggregator = StatusAggregator(_providers(prs=broken))
        with pytest.raises(SnapshotError, match="disk on fire"):
            _fetch(aggregator, project_dir)

    def test_not_cached(self, project_dir: Path, write_lock) -> None:
        aggregator = StatusAggregator(_providers())
        assert _fetch(aggregator, project_dir).process("executor").running is False
        write_lock(project_dir, LockKind.executor, str(os.getpid()))
        assert _fetch(aggregator, project_dir).process("executor").running is True

    def test_camel_case_json(self, project_dir: Path) -> None:
        payload = _fetch(StatusAggregator(_providers()), project_dir).to_json()
        assert '"projectName":"demo-project"' in payload
        assert '"activePrd":null' in payload


class TestFingerprint:
    def test_stable_across_fetches(self, project_dir: Path) -> None:
        aggregator = StatusAggregator(_providers([PrdInfo(name="a", status="ready")]))
        first = _fetch(aggregator, project_dir)
        second = _fetch(aggregator, project_dir)
        assert first.timestamp <= second.timestamp
        assert fingerprint(first) == fingerprint(second)

    def test_prd_status_change(self, project_dir: Path) -> None:
        ready = StatusAggregator(_providers([PrdInfo(name="a", status="ready")]))
        done = StatusAggregator(_providers([PrdInfo(name="a", status="done")]))
        before = _fetch(ready, project_dir)
        after = _fetch(done, project_dir)
        assert fingerprint(before) != fingerprint(after)

    def test_ignores_non_summary_fields(self, project_dir: Path) -> None:
        quiet = _fetch(StatusAggregator(_providers()), project_dir)
        scheduled = _fetch(
            StatusAggregator(
                _providers(crontab=lambda d, c: CrontabInfo(installed=True, entries=["x"]))
            ),
            project_dir,
        )
        assert fingerprint(quiet) == fingerprint(scheduled)
