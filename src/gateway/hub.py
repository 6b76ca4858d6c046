"""ProjectHub: per-project subscriber set, change watcher, and spawn locks.

One hub per project directory, built lazily by HubRegistry on first use. The
watcher task starts with the first subscriber and runs until application
shutdown; while the project has no subscribers a tick does no work.

Snapshot fetches run on a single worker thread owned by the hub, so a project
whose filesystem hangs ties up at most one thread and never delays fetches for
other projects. A tick is skipped while the previous fetch is still running.
"""

from __future__ import annotations

import asyncio
import contextlib
from concurrent.futures import Future, ThreadPoolExecutor
import json
from pathlib import Path
from typing import Any

import structlog

from src.config.settings import WatcherSettings
from src.constants import EVENT_STATUS_CHANGED
from src.gateway.subscribers import SubscriberChannel, SubscriberSet, format_sse
from src.infra.errors import SnapshotError
from src.projects.registry import ProjectContext
from src.status.aggregator import StatusAggregator
from src.status.models import StatusSnapshot, fingerprint

logger = structlog.get_logger()


class ProjectHub:
    def __init__(
        self,
        context: ProjectContext,
        aggregator: StatusAggregator,
        settings: WatcherSettings,
    ) -> None:
        self.context = context
        self.subscribers = SubscriberSet(context.name)
        self._aggregator = aggregator
        self._settings = settings
        self._fingerprint: str | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._locks: dict[str, asyncio.Lock] = {}
        self._executor: ThreadPoolExecutor | None = None
        self._inflight: Future[StatusSnapshot] | None = None

    @property
    def watching(self) -> bool:
        return self._watcher is not None and not self._watcher.done()

    @property
    def fetch_pending(self) -> bool:
        """True while an earlier fetch, possibly timed out, still occupies the worker."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def last_fingerprint(self) -> str | None:
        return self._fingerprint

    def lock_for(self, kind: str) -> asyncio.Lock:
        """The lock serializing check-then-act for one process kind of this project."""
        lock = self._locks.get(kind)
        if lock is None:
            lock = self._locks[kind] = asyncio.Lock()
        return lock

    def _fetch_blocking(self) -> StatusSnapshot:
        return self._aggregator.fetch_snapshot(self.context.directory, self.context.config)

    def _submit(self) -> Future[StatusSnapshot]:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"snapshot-{self.context.name}"
            )
        future = self._executor.submit(self._fetch_blocking)
        if not self.fetch_pending:
            self._inflight = future
        return future

    async def fetch_snapshot(self) -> StatusSnapshot:
        """Fresh snapshot from the hub's worker thread, bounded by fetch_timeout_s.

        Raises SnapshotError on collaborator failure or timeout. On timeout a
        queued fetch is cancelled; a running one keeps the worker until it returns.
        """
        future = self._submit()
        try:
            return await asyncio.wait_for(
                asyncio.wrap_future(future),
                timeout=self._settings.fetch_timeout_s,
            )
        except TimeoutError as e:
            raise SnapshotError(
                f"Status fetch for {self.context.name} timed out after "
                f"{self._settings.fetch_timeout_s}s"
            ) from e

    async def subscribe(self) -> SubscriberChannel:
        """Open a channel primed with one status_changed frame of current state.

        Raises SnapshotError when the initial snapshot cannot be derived; no
        channel is registered in that case.
        """
        snapshot = await self.fetch_snapshot()
        channel = SubscriberChannel(maxsize=self._settings.channel_queue_size)
        # Initial frame and registration happen with no suspension point between them
        channel.write(format_sse(EVENT_STATUS_CHANGED, snapshot.to_json()))
        if not self.subscribers:
            self._fingerprint = fingerprint(snapshot)
        self.subscribers.add(channel)
        self.ensure_watcher()
        return channel

    async def tick(self) -> bool:
        """One watcher iteration. Returns True when a status_changed was broadcast."""
        if self._settings.skip_when_idle and not self.subscribers:
            return False
        if self.fetch_pending:
            logger.debug("watcher_tick_skipped", project=self.context.name, reason="fetch_pending")
            return False
        try:
            snapshot = await self.fetch_snapshot()
        except SnapshotError as e:
            logger.warning("watcher_tick_failed", project=self.context.name, error=str(e))
            return False
        except Exception:
            logger.exception("watcher_tick_failed", project=self.context.name)
            return False

        current = fingerprint(snapshot)
        if current == self._fingerprint:
            return False
        self.publish_snapshot(snapshot, fp=current)
        return True

    def publish_snapshot(self, snapshot: StatusSnapshot, *, fp: str | None = None) -> int:
        """Store the snapshot's fingerprint and broadcast it to every subscriber."""
        self._fingerprint = fp or fingerprint(snapshot)
        delivered = self.subscribers.broadcast(EVENT_STATUS_CHANGED, snapshot.to_json())
        logger.debug(
            "status_broadcast",
            project=self.context.name,
            fingerprint=self._fingerprint,
            delivered=delivered,
        )
        return delivered

    def push(self, event: str, payload: dict[str, Any]) -> int:
        return self.subscribers.broadcast(event, json.dumps(payload, separators=(",", ":")))

    async def _run(self) -> None:
        interval = self._settings.poll_interval_s
        logger.info("watcher_started", project=self.context.name, interval_s=interval)
        while True:
            await asyncio.sleep(interval)
            await self.tick()

    def ensure_watcher(self) -> None:
        if self.watching:
            return
        self._watcher = asyncio.create_task(
            self._run(), name=f"watcher:{self.context.name}"
        )

    async def stop(self) -> None:
        if self._watcher is not None:
            self._watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watcher
            self._watcher = None
            logger.info("watcher_stopped", project=self.context.name)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self.subscribers.close_all()


class HubRegistry:
    """Lazily built ProjectHub per project directory."""

    def __init__(self, aggregator: StatusAggregator, settings: WatcherSettings) -> None:
        self._aggregator = aggregator
        self._settings = settings
        self._hubs: dict[Path, ProjectHub] = {}

    def __len__(self) -> int:
        return len(self._hubs)

    def get(self, context: ProjectContext) -> ProjectHub:
        hub = self._hubs.get(context.directory)
        if hub is None:
            hub = ProjectHub(context, self._aggregator, self._settings)
            self._hubs[context.directory] = hub
            logger.info(
                "project_hub_created", project=context.name, directory=str(context.directory)
            )
        return hub

    async def stop_all(self) -> None:
        for hub in list(self._hubs.values()):
            await hub.stop()
        self._hubs.clear()
