"""ProcessTracker: children spawned by this server, keyed by (project, process kind).

Covers the window between spawning a child and the child writing its own lock
file. Snapshot fetches run in worker threads, hence the threading lock. Polling
a child reaps it once it has exited.
"""

from __future__ import annotations

import subprocess
import threading
from pathlib import Path

import structlog

logger = structlog.get_logger()


class ProcessTracker:
    def __init__(self) -> None:
        self._children: dict[tuple[Path, str], list[subprocess.Popen]] = {}
        self._lock = threading.Lock()

    def record(self, project_dir: Path, kind: str, child: subprocess.Popen) -> None:
        with self._lock:
            self._children.setdefault((project_dir, kind), []).append(child)

    def _reap(self, key: tuple[Path, str]) -> list[subprocess.Popen]:
        """Drop exited children under key. Caller holds the lock."""
        alive: list[subprocess.Popen] = []
        for child in self._children.get(key, []):
            returncode = child.poll()
            if returncode is None:
                alive.append(child)
                continue
            logger.info(
                "tracked_process_exited",
                project_dir=str(key[0]),
                kind=key[1],
                pid=child.pid,
                returncode=returncode,
            )
        if alive:
            self._children[key] = alive
        else:
            self._children.pop(key, None)
        return alive

    def live_pid(self, project_dir: Path, kind: str) -> int | None:
        """Pid of the most recent tracked child that is still running."""
        with self._lock:
            alive = self._reap((project_dir, kind))
        return alive[-1].pid if alive else None

    def prune(self) -> int:
        """Reap every exited child. Returns the number still running."""
        with self._lock:
            return sum(len(self._reap(key)) for key in list(self._children))
