"""Crontab inventory: scheduled Night Watch entries for a project.

An entry belongs to a project when it carries the project marker comment, or
when it is a marked Night Watch line that cd's into the project directory.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from src.config.project_config import ProjectConfig
from src.constants import CRONTAB_MARKER_PREFIX
from src.projects.registry import project_name_for
from src.status.models import CrontabInfo

_CRONTAB_TIMEOUT_S = 10


def generate_marker(project_name: str) -> str:
    return f"{CRONTAB_MARKER_PREFIX} {project_name}"


def read_crontab() -> list[str]:
    """Current user crontab lines. [] when there is no crontab or no crontab binary."""
    try:
        result = subprocess.run(
            ["crontab", "-l"],
            capture_output=True,
            text=True,
            timeout=_CRONTAB_TIMEOUT_S,
        )
    except FileNotFoundError:
        return []
    # crontab -l exits non-zero when the user has no crontab
    if result.returncode != 0:
        return []
    return [line for line in result.stdout.splitlines() if line.strip()]


def is_entry_for_project(line: str, project_dir: Path) -> bool:
    if CRONTAB_MARKER_PREFIX not in line:
        return False
    normalized = str(project_dir).rstrip("/")
    candidates = (f"cd {normalized}", f"cd '{normalized}'", f'cd "{normalized}"')
    return any(candidate in line for candidate in candidates)


def get_crontab_info(
    project_name: str, project_dir: Path, lines: list[str] | None = None
) -> CrontabInfo:
    lines = read_crontab() if lines is None else lines
    marker = generate_marker(project_name)
    entries: list[str] = []
    for line in lines:
        if (marker in line or is_entry_for_project(line, project_dir)) and line not in entries:
            entries.append(line)
    return CrontabInfo(installed=bool(entries), entries=entries)


def collect_crontab_info(project_dir: Path, config: ProjectConfig) -> CrontabInfo:
    return get_crontab_info(project_name_for(project_dir), project_dir)
