"""ProjectRegistry: resolves an external project identifier to a validated directory + config.

Global mode reads <home>/projects.json on every lookup, so projects registered by
the CLI after server start are visible immediately. Single-project mode serves one
fixed directory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

import structlog

from src.config.project_config import ProjectConfig, load_project_config
from src.constants import CONFIG_FILE_NAME, REGISTRY_FILE_NAME
from src.infra.errors import NotFoundError

logger = structlog.get_logger()


def project_name_for(directory: Path) -> str:
    """package.json name when present, otherwise the directory basename."""
    package_json = directory / "package.json"
    if package_json.is_file():
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = None
        if isinstance(data, dict) and isinstance(data.get("name"), str) and data["name"]:
            return data["name"]
    return directory.name


@dataclass(frozen=True)
class ProjectContext:
    """A resolved project. config is re-read from disk on every access."""

    name: str
    directory: Path

    @property
    def config(self) -> ProjectConfig:
        return load_project_config(self.directory)


@dataclass(frozen=True)
class RegistryEntry:
    name: str
    path: Path
    valid: bool


def decode_project_id(project_id: str) -> str:
    """Undo the dashboard's URL encoding: percent-escapes, and ~ standing in for /."""
    return unquote(project_id).replace("~", "/")


class ProjectRegistry:
    """Resolves project ids (global mode) or serves a single project directory."""

    def __init__(self, home: Path, *, project_dir: Path | None = None) -> None:
        self._registry_path = home / REGISTRY_FILE_NAME
        self._project_dir = project_dir.resolve() if project_dir is not None else None

    @property
    def single_project(self) -> bool:
        return self._project_dir is not None

    def default(self) -> ProjectContext:
        """The single-project context. Raises NotFoundError in global mode."""
        if self._project_dir is None:
            raise NotFoundError("No default project: server is running in global mode")
        return ProjectContext(
            name=project_name_for(self._project_dir),
            directory=self._project_dir,
        )

    def _load_entries(self) -> list[tuple[str, Path]]:
        if not self._registry_path.is_file():
            return []
        try:
            raw = json.loads(self._registry_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "project_registry_unreadable", path=str(self._registry_path), error=str(e)
            )
            return []
        if not isinstance(raw, list):
            return []
        entries: list[tuple[str, Path]] = []
        for item in raw:
            if (
                isinstance(item, dict)
                and isinstance(item.get("name"), str)
                and isinstance(item.get("path"), str)
            ):
                entries.append((item["name"], Path(item["path"])))
        return entries

    @staticmethod
    def _is_valid(path: Path) -> bool:
        return path.is_dir() and (path / CONFIG_FILE_NAME).is_file()

    def list_projects(self) -> list[RegistryEntry]:
        return [
            RegistryEntry(name=name, path=path, valid=self._is_valid(path))
            for name, path in self._load_entries()
        ]

    def resolve(self, project_id: str) -> ProjectContext:
        """Resolve a registry name to a validated ProjectContext.

        Raises NotFoundError for unknown names and for entries whose directory
        or config file no longer exists.
        """
        decoded = decode_project_id(project_id)
        for name, path in self._load_entries():
            if name != decoded:
                continue
            if not self._is_valid(path):
                raise NotFoundError(f"Project path invalid or missing config: {path}")
            return ProjectContext(name=name, directory=path.resolve())
        raise NotFoundError(f"Project not found: {decoded}")
