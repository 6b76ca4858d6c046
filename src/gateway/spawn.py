"""SpawnCoordinator: starts automation processes without ever running one kind twice.

Check-then-spawn is serialized per (project, lock kind) through the hub's
asyncio.Lock. Besides the on-disk lock file, a live child recorded by the
ProcessTracker counts as running, which covers the gap before the child writes
its own lock file. Children are detached (own session, stdio on /dev/null) so
they outlive the server.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

import structlog

from src.config.settings import SpawnSettings
from src.gateway.hub import ProjectHub
from src.infra.errors import ConflictError, SnapshotError, SpawnError
from src.projects.registry import ProjectContext
from src.status.locks import LockKind, check_lock, clean_orphaned_claims, clear_lock, lock_path
from src.status.tracker import ProcessTracker

logger = structlog.get_logger()


class Action(StrEnum):
    run = "run"
    review = "review"
    qa = "qa"
    install = "install"
    uninstall = "uninstall"

    @property
    def lock_kind(self) -> LockKind | None:
        return _ACTION_LOCKS.get(self)

    @property
    def process_kind(self) -> str:
        kind = self.lock_kind
        return kind.value if kind is not None else self.value

    @property
    def started_event(self) -> str | None:
        """SSE event pushed after a successful start; cron actions push none."""
        if self in (Action.install, Action.uninstall):
            return None
        return f"{self.process_kind}_started"


_ACTION_LOCKS: dict[Action, LockKind] = {
    Action.run: LockKind.executor,
    Action.review: LockKind.reviewer,
}


@dataclass(frozen=True)
class SpawnResult:
    started: bool
    pid: int


class Notifier(Protocol):
    async def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default notifier: records the notification in the structured log."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("notification", notification=event, **payload)


PopenFactory = Callable[..., subprocess.Popen]


class SpawnCoordinator:
    def __init__(
        self,
        settings: SpawnSettings,
        tracker: ProcessTracker,
        notifier: Notifier | None = None,
        *,
        popen: PopenFactory = subprocess.Popen,
    ) -> None:
        self._settings = settings
        self._tracker = tracker
        self._notifier = notifier or LoggingNotifier()
        self._popen = popen
        self._notifications: set[asyncio.Task[None]] = set()

    def _running_pid(self, context: ProjectContext, kind: LockKind) -> int | None:
        state = check_lock(lock_path(context.directory, kind, context.config))
        if state.running:
            return state.pid
        return self._tracker.live_pid(context.directory, kind.value)

    def _launch(self, directory: Path, action: Action, prd_name: str | None) -> subprocess.Popen:
        argv = [*shlex.split(self._settings.command), action.value]
        env = os.environ.copy()
        if action is Action.run and prd_name:
            env[self._settings.prd_priority_env] = prd_name
        try:
            child = self._popen(
                argv,
                cwd=directory,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"Failed to spawn process: {e}") from e
        if not child.pid:
            raise SpawnError("Failed to spawn process: no PID assigned")
        return child

    async def start(
        self, hub: ProjectHub, action: Action, *, prd_name: str | None = None
    ) -> SpawnResult:
        """Start `night-watch <action>` for the hub's project.

        Raises ConflictError (with the running pid) when a process of the same
        lock kind is already running, SpawnError when the OS start fails.
        """
        self._tracker.prune()
        kind = action.lock_kind
        if kind is None:
            child = self._launch(hub.context.directory, action, prd_name)
            self._tracker.record(hub.context.directory, action.process_kind, child)
        else:
            async with hub.lock_for(kind.value):
                pid = self._running_pid(hub.context, kind)
                if pid is not None:
                    logger.info(
                        "spawn_conflict", project=hub.context.name, action=action.value, pid=pid
                    )
                    raise ConflictError(
                        f"{kind.value.capitalize()} is already running (PID {pid})", pid=pid
                    )
                child = self._launch(hub.context.directory, action, prd_name)
                self._tracker.record(hub.context.directory, action.process_kind, child)
        logger.info(
            "process_spawned",
            project=hub.context.name,
            action=action.value,
            pid=child.pid,
            prd=prd_name,
        )

        if action is Action.run:
            payload: dict[str, Any] = {"project": hub.context.name, "pid": child.pid}
            if prd_name:
                payload["prd"] = prd_name
            self._schedule_notification("run_started", payload)

        if action.started_event is not None:
            hub.push(action.started_event, {"pid": child.pid})
        return SpawnResult(started=True, pid=child.pid)

    def _schedule_notification(self, event: str, payload: dict[str, Any]) -> None:
        task = asyncio.create_task(self._notify(event, payload))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self._notifier.notify(event, payload)
        except Exception as e:
            logger.warning("notification_failed", notification=event, error=str(e))

    async def flush_notifications(self) -> None:
        """Wait for in-flight notifications."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications))

    async def clear_lock(self, hub: ProjectHub) -> list[Path]:
        """Delete a stale executor lock and every orphaned claim file.

        Runs under the executor spawn lock. Raises ConflictError, leaving all
        files intact, while the executor (on disk or tracked) is running.
        Returns the removed claim paths and re-broadcasts a fresh snapshot.
        """
        directory = hub.context.directory
        async with hub.lock_for(LockKind.executor.value):
            config = hub.context.config
            tracked = self._tracker.live_pid(directory, LockKind.executor.value)
            if tracked is not None:
                raise ConflictError(
                    f"Executor is actively running (PID {tracked}); use Stop instead",
                    pid=tracked,
                )
            clear_lock(lock_path(directory, LockKind.executor, config), label="Executor")
            removed = clean_orphaned_claims(directory / config.prd_dir)
        logger.info("orphaned_claims_removed", project=hub.context.name, count=len(removed))

        try:
            snapshot = await hub.fetch_snapshot()
        except SnapshotError as e:
            logger.warning("clear_lock_broadcast_failed", project=hub.context.name, error=str(e))
        else:
            hub.publish_snapshot(snapshot)
        return removed

