"""StatusSnapshotAggregator: one consistent point-in-time view of a project.

Synchronous and side-effect-free. Fail-fast: if any collaborator raises, the
whole fetch raises SnapshotError and no partial snapshot is returned. No caching;
callers decide polling cadence.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from src.config.project_config import ProjectConfig
from src.infra.errors import SnapshotError
from src.projects.registry import project_name_for
from src.status.crontab import collect_crontab_info
from src.status.locks import LockKind, check_lock, lock_path
from src.status.logs import collect_log_info
from src.status.models import CrontabInfo, LogInfo, PrdInfo, PrInfo, ProcessInfo, StatusSnapshot
from src.status.prds import collect_prd_info
from src.status.prs import collect_pr_info
from src.status.tracker import ProcessTracker


@dataclass(frozen=True)
class InventoryProviders:
    """External inventory collaborators: functions of (project_dir, config)."""

    prds: Callable[[Path, ProjectConfig], list[PrdInfo]]
    prs: Callable[[Path, ProjectConfig], list[PrInfo]]
    crontab: Callable[[Path, ProjectConfig], CrontabInfo]
    logs: Callable[[Path, ProjectConfig], list[LogInfo]]


def default_providers(home: Path) -> InventoryProviders:
    return InventoryProviders(
        prds=partial(collect_prd_info, home=home),
        prs=collect_pr_info,
        crontab=collect_crontab_info,
        logs=collect_log_info,
    )


class StatusAggregator:
    def __init__(
        self,
        providers: InventoryProviders,
        tracker: ProcessTracker | None = None,
    ) -> None:
        self._providers = providers
        self._tracker = tracker

    def collect_processes(self, project_dir: Path, config: ProjectConfig) -> list[ProcessInfo]:
        processes: list[ProcessInfo] = []
        for kind in LockKind:
            state = check_lock(lock_path(project_dir, kind, config))
            running, pid = state.running, state.pid
            if not running and self._tracker is not None:
                tracked = self._tracker.live_pid(project_dir, kind.value)
                if tracked is not None:
                    running, pid = True, tracked
            processes.append(ProcessInfo(name=kind.value, running=running, pid=pid))
        return processes

    def fetch_snapshot(self, project_dir: Path, config: ProjectConfig) -> StatusSnapshot:
        """Derive a fresh snapshot. Raises SnapshotError on any collaborator failure."""
        try:
            processes = self.collect_processes(project_dir, config)
            prds = self._providers.prds(project_dir, config)
            prs = self._providers.prs(project_dir, config)
            logs = self._providers.logs(project_dir, config)
            crontab = self._providers.crontab(project_dir, config)
            project_name = project_name_for(project_dir)
        except SnapshotError:
            raise
        except Exception as e:
            raise SnapshotError(f"Failed to fetch status for {project_dir}: {e}") from e

        active_prd = next((p.name for p in prds if p.status == "in-progress"), None)
        return StatusSnapshot(
            project_name=project_name,
            project_dir=str(project_dir),
            config=config,
            prds=prds,
            processes=processes,
            prs=prs,
            logs=logs,
            crontab=crontab,
            active_prd=active_prd,
        )
