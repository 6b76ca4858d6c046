"""Automation log files under <project>/logs/."""

from __future__ import annotations

from collections import deque
from pathlib import Path

from src.config.project_config import ProjectConfig
from src.constants import DEFAULT_LOG_DIR, LOG_NAMES
from src.infra.errors import InvalidRequestError
from src.status.models import LogInfo

# Logical name → file stem written by the CLI
LOG_FILE_NAMES: dict[str, str] = {
    "executor": "executor",
    "reviewer": "reviewer",
    "qa": "night-watch-qa",
}

DEFAULT_TAIL_LINES = 200
MAX_TAIL_LINES = 10_000


def log_path(project_dir: Path, name: str) -> Path:
    return project_dir / DEFAULT_LOG_DIR / f"{LOG_FILE_NAMES.get(name, name)}.log"


def last_lines(path: Path, count: int) -> list[str]:
    if count <= 0:
        return []
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            tail = deque((line.rstrip("\n") for line in f), maxlen=count)
    except (FileNotFoundError, IsADirectoryError):
        return []
    while tail and not tail[-1].strip():
        tail.pop()
    return list(tail)


def collect_log_info(project_dir: Path, config: ProjectConfig) -> list[LogInfo]:
    infos: list[LogInfo] = []
    for name in LOG_NAMES:
        path = log_path(project_dir, name)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            # Absent, or rotated away since the last tick
            infos.append(LogInfo(name=name, path=str(path), exists=False))
            continue
        infos.append(
            LogInfo(
                name=name,
                path=str(path),
                exists=True,
                size=size,
                last_lines=last_lines(path, 5),
            )
        )
    return infos


def tail_log(project_dir: Path, name: str, lines: int | None = None) -> list[str]:
    """Last `lines` lines of a named log (default 200, capped at 10000)."""
    if name not in LOG_NAMES:
        raise InvalidRequestError(f"Invalid log name. Must be one of: {', '.join(LOG_NAMES)}")
    count = DEFAULT_TAIL_LINES if lines is None or lines < 1 else min(lines, MAX_TAIL_LINES)
    return last_lines(log_path(project_dir, name), count)
