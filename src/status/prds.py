"""PRD inventory: lists work items under the project's PRD directory.

Status derivation:
- files under any done/ directory → done
- a fresh claim file (<name>.md.claim, younger than maxRuntime) corroborated by a
  running executor lock → in-progress
- pending-review overlaid from <home>/prd-states.json
- everything else → ready

Read-only: an uncorroborated claim is reported (claimed=True, status ready) but
never deleted here. Deletion happens only through the clear-lock action.
"""

from __future__ import annotations

import json
import re
import time
from pathlib import Path

import structlog

from src.config.project_config import ProjectConfig
from src.constants import (
    CLAIM_FILE_EXTENSION,
    DONE_DIR_NAME,
    PRD_STATES_FILE_NAME,
    SUMMARY_FILE_NAME,
)
from src.infra.errors import InvalidRequestError, NotFoundError
from src.status.locks import LockKind, check_lock, lock_path
from src.status.models import PrdInfo

logger = structlog.get_logger()

_PRD_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+(\.md)?$")


def validate_prd_name(name: str) -> bool:
    """Reject anything that could escape the PRD directory."""
    return bool(_PRD_NAME_RE.match(name)) and ".." not in name


def _claim_is_fresh(claim_path: Path, max_runtime: int) -> bool:
    try:
        data = json.loads(claim_path.read_text(encoding="utf-8"))
        age = int(time.time()) - int(data["timestamp"])
    except (OSError, ValueError, TypeError, KeyError):
        return False
    return age < max_runtime


def read_prd_states(home: Path, project_dir: Path) -> dict[str, dict]:
    """Per-PRD state entries recorded by the CLI for this project."""
    states_path = home / PRD_STATES_FILE_NAME
    if not states_path.is_file():
        return {}
    try:
        data = json.loads(states_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("prd_states_unreadable", path=str(states_path), error=str(e))
        return {}
    project_states = data.get(str(project_dir)) if isinstance(data, dict) else None
    return project_states if isinstance(project_states, dict) else {}


def _collect(directory: Path, *, max_runtime: int, executor_running: bool) -> list[PrdInfo]:
    prds: list[PrdInfo] = []
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            if entry.name == DONE_DIR_NAME:
                prds.extend(
                    PrdInfo(name=done.stem, status="done")
                    for done in sorted(entry.iterdir(), key=lambda p: p.name)
                    if done.is_file() and done.suffix == ".md"
                )
            else:
                prds.extend(
                    _collect(entry, max_runtime=max_runtime, executor_running=executor_running)
                )
            continue

        if entry.suffix != ".md" or entry.name == SUMMARY_FILE_NAME:
            continue

        claim_path = entry.with_name(entry.name + CLAIM_FILE_EXTENSION)
        claimed = claim_path.exists()
        in_progress = (
            claimed and executor_running and _claim_is_fresh(claim_path, max_runtime)
        )
        prds.append(
            PrdInfo(
                name=entry.stem,
                status="in-progress" if in_progress else "ready",
                claimed=claimed,
            )
        )
    return prds


def collect_prd_info(project_dir: Path, config: ProjectConfig, *, home: Path) -> list[PrdInfo]:
    """List PRDs with derived status. Raises OSError on unreadable directories."""
    prd_dir = project_dir / config.prd_dir
    if not prd_dir.is_dir():
        return []

    executor = check_lock(lock_path(project_dir, LockKind.executor, config))
    prds = _collect(prd_dir, max_runtime=config.max_runtime, executor_running=executor.running)

    states = read_prd_states(home, project_dir)
    for prd in prds:
        state = states.get(prd.name)
        if (
            isinstance(state, dict)
            and state.get("status") == "pending-review"
            and prd.status == "ready"
        ):
            prd.status = "pending-review"
    return prds


def retry_prd(project_dir: Path, config: ProjectConfig, prd_name: str) -> str:
    """Move a PRD from done/ back to the top level of the PRD directory.

    Returns a human-readable message. Raises InvalidRequestError for unsafe names
    and NotFoundError when the PRD is not in done/.
    """
    if not prd_name or not validate_prd_name(prd_name):
        raise InvalidRequestError("Invalid PRD name")

    filename = prd_name if prd_name.endswith(".md") else f"{prd_name}.md"
    prd_dir = project_dir / config.prd_dir
    pending_path = prd_dir / filename
    done_path = prd_dir / DONE_DIR_NAME / filename

    if pending_path.exists():
        return f'"{filename}" is already pending'
    if not done_path.is_file():
        raise NotFoundError(f'PRD "{filename}" not found in done/')

    done_path.rename(pending_path)
    logger.info("prd_retried", project_dir=str(project_dir), prd=filename)
    return f'Moved "{filename}" back to pending'
