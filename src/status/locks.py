"""LockCoordinator: reads and clears advisory lock files owned by the automation CLI.

Lock files live at <project>/<lockDir>/<kind>.lock and are created/removed by the
external executor/reviewer process on its own start/exit. This module only reads
them, and deletes one solely on explicit operator request after re-verifying that
the owning pid is dead.

Lock content may be a bare pid, a pid followed by a start-time line, or a JSON
object {"pid": ..., "startedAt": ...}.
"""

from __future__ import annotations

import contextlib
import json
import os
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.constants import CLAIM_FILE_EXTENSION, DONE_DIR_NAME, LOCK_FILE_EXTENSION
from src.infra.errors import ConflictError

if TYPE_CHECKING:
    from src.config.project_config import ProjectConfig

logger = structlog.get_logger()


class LockKind(StrEnum):
    executor = "executor"
    reviewer = "reviewer"


@dataclass(frozen=True)
class LockState:
    running: bool
    pid: int | None
    started_at: str | None = None


NOT_RUNNING = LockState(running=False, pid=None)


def lock_path(project_dir: Path, kind: LockKind, config: ProjectConfig) -> Path:
    """Deterministic lock path: one file per (project, kind)."""
    return project_dir / config.lock_dir / f"{kind.value}{LOCK_FILE_EXTENSION}"


def is_process_running(pid: int) -> bool:
    """Non-destructive liveness probe (signal 0). Never signals pid <= 0 (process groups)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except (OSError, OverflowError):
        # OverflowError: pid out of range for the platform pid_t
        return False
    return True


def _parse_lock_content(content: str) -> tuple[int, str | None] | None:
    text = content.strip()
    if not text:
        return None

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        pid = data.get("pid") if isinstance(data, dict) else None
        if isinstance(pid, bool) or not isinstance(pid, int):
            return None
        started = data.get("startedAt") or data.get("started_at")
        return pid, str(started) if started is not None else None

    first, _, rest = text.partition("\n")
    try:
        pid = int(first.strip())
    except ValueError:
        return None
    started_at = rest.strip() or None
    if started_at is not None and started_at.isdigit():
        # Epoch seconds as written by shell helpers
        started_at = datetime.fromtimestamp(int(started_at)).isoformat()
    return pid, started_at


def check_lock(path: Path) -> LockState:
    """Report whether the process named by a lock file is alive.

    Missing or unparsable file: not running, pid None. Dead pid: running False with
    the stale pid reported; the file is left on disk.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return NOT_RUNNING
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("lock_unreadable", path=str(path), error=str(e))
        return NOT_RUNNING

    parsed = _parse_lock_content(content)
    if parsed is None:
        return NOT_RUNNING
    pid, started_at = parsed
    return LockState(running=is_process_running(pid), pid=pid, started_at=started_at)


def clear_lock(path: Path, *, label: str = "Process") -> LockState:
    """Delete a stale lock file. Idempotent when the file is already gone.

    Re-checks liveness immediately before deleting. Raises ConflictError carrying
    the live pid if the owning process is still running; the file stays intact.
    Returns the state observed just before deletion.
    """
    state = check_lock(path)
    if state.running:
        raise ConflictError(
            f"{label} is actively running (PID {state.pid}); use Stop instead",
            pid=state.pid,
        )
    with contextlib.suppress(FileNotFoundError):
        path.unlink()
        logger.info("lock_cleared", path=str(path), stale_pid=state.pid)
    return state


def clean_orphaned_claims(prd_dir: Path) -> list[Path]:
    """Recursively remove claim files, skipping any done/ subtree.

    Only meaningful once the executor is known not to be running.
    """
    removed: list[Path] = []
    try:
        entries = list(prd_dir.iterdir())
    except (FileNotFoundError, NotADirectoryError):
        return removed

    for entry in entries:
        if entry.is_dir():
            if entry.name != DONE_DIR_NAME:
                removed.extend(clean_orphaned_claims(entry))
        elif entry.name.endswith(CLAIM_FILE_EXTENSION):
            try:
                entry.unlink()
            except FileNotFoundError:
                continue
            removed.append(entry)
    return removed
