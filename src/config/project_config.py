"""Per-project Night Watch configuration.

Load order: defaults < night-watch.config.json < NW_* environment variables.
The file is re-read on every load so callers always see the on-disk value.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import CONFIG_FILE_NAME, DEFAULT_LOCK_DIR, DEFAULT_PRD_DIR

logger = structlog.get_logger()

Provider = Literal["claude", "codex"]
VALID_PROVIDERS: frozenset[str] = frozenset({"claude", "codex"})


class ProjectConfig(BaseModel):
    """Effective configuration of one project. Serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    default_branch: str = ""  # empty = auto-detect
    prd_dir: str = DEFAULT_PRD_DIR
    lock_dir: str = DEFAULT_LOCK_DIR
    max_runtime: int = 7200
    reviewer_max_runtime: int = 3600
    branch_prefix: str = "night-watch"
    branch_patterns: list[str] = Field(default_factory=lambda: ["feat/", "night-watch/"])
    min_review_score: int = 80
    max_log_size: int = 524_288  # 512 KB
    cron_schedule: str = "0 0-21 * * *"
    reviewer_schedule: str = "0 0,3,6,9,12,15,18,21 * * *"
    provider: Provider = "claude"
    reviewer_enabled: bool = True


class _EnvOverrides(BaseSettings):
    """NW_* environment overrides. Unset or unparsable values are ignored."""

    model_config = SettingsConfigDict(env_prefix="NW_", extra="ignore")

    default_branch: str | None = None
    prd_dir: str | None = None
    lock_dir: str | None = None
    max_runtime: str | None = None
    reviewer_max_runtime: str | None = None
    branch_prefix: str | None = None
    branch_patterns: str | None = None
    min_review_score: str | None = None
    max_log_size: str | None = None
    cron_schedule: str | None = None
    reviewer_schedule: str | None = None
    provider: str | None = None
    reviewer_enabled: str | None = None


_INT_FIELDS = ("max_runtime", "reviewer_max_runtime", "min_review_score", "max_log_size")
_STR_FIELDS = (
    "default_branch",
    "prd_dir",
    "lock_dir",
    "branch_prefix",
    "cron_schedule",
    "reviewer_schedule",
)


def _read_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _read_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _read_str_list(value: Any) -> list[str] | None:
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    return None


def _read_obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _parse_bool(raw: str) -> bool | None:
    normalized = raw.strip().lower()
    if normalized in {"true", "1"}:
        return True
    if normalized in {"false", "0"}:
        return False
    return None


def normalize_file_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Map a raw config file (flat or legacy nested keys) to ProjectConfig fields.

    Flat keys take precedence over nested aliases. Wrongly-typed values are dropped.
    """
    cron = _read_obj(raw.get("cron"))
    review = _read_obj(raw.get("review"))
    logging_cfg = _read_obj(raw.get("logging"))

    candidates: dict[str, Any] = {
        "default_branch": _read_str(raw.get("defaultBranch")),
        "prd_dir": _first(_read_str(raw.get("prdDir")), _read_str(raw.get("prdDirectory"))),
        "lock_dir": _read_str(raw.get("lockDir")),
        "max_runtime": _read_int(raw.get("maxRuntime")),
        "reviewer_max_runtime": _read_int(raw.get("reviewerMaxRuntime")),
        "branch_prefix": _read_str(raw.get("branchPrefix")),
        "branch_patterns": _first(
            _read_str_list(raw.get("branchPatterns")),
            _read_str_list(review.get("branchPatterns")),
        ),
        "min_review_score": _first(
            _read_int(raw.get("minReviewScore")), _read_int(review.get("minScore"))
        ),
        "max_log_size": _first(
            _read_int(raw.get("maxLogSize")), _read_int(logging_cfg.get("maxLogSize"))
        ),
        "cron_schedule": _first(
            _read_str(raw.get("cronSchedule")), _read_str(cron.get("executorSchedule"))
        ),
        "reviewer_schedule": _first(
            _read_str(raw.get("reviewerSchedule")), _read_str(cron.get("reviewerSchedule"))
        ),
        "reviewer_enabled": raw.get("reviewerEnabled")
        if isinstance(raw.get("reviewerEnabled"), bool)
        else None,
    }
    provider = raw.get("provider")
    if isinstance(provider, str) and provider in VALID_PROVIDERS:
        candidates["provider"] = provider

    return {k: v for k, v in candidates.items() if v is not None}


def _env_config() -> dict[str, Any]:
    env = _EnvOverrides()
    values: dict[str, Any] = {}

    for name in _STR_FIELDS:
        value = getattr(env, name)
        if value:
            values[name] = value

    for name in _INT_FIELDS:
        value = getattr(env, name)
        if value:
            try:
                values[name] = int(value)
            except ValueError:
                logger.warning("project_config_env_ignored", field=name, value=value)

    if env.branch_patterns:
        try:
            patterns = json.loads(env.branch_patterns)
        except json.JSONDecodeError:
            patterns = [p.strip() for p in env.branch_patterns.split(",")]
        if isinstance(patterns, list) and all(isinstance(p, str) for p in patterns):
            values["branch_patterns"] = patterns

    if env.provider and env.provider in VALID_PROVIDERS:
        values["provider"] = env.provider

    if env.reviewer_enabled:
        enabled = _parse_bool(env.reviewer_enabled)
        if enabled is not None:
            values["reviewer_enabled"] = enabled

    return values


def _file_config(config_path: Path) -> dict[str, Any]:
    if not config_path.is_file():
        return {}
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("project_config_unreadable", path=str(config_path), error=str(e))
        return {}
    if not isinstance(raw, dict):
        logger.warning("project_config_unreadable", path=str(config_path), error="not an object")
        return {}
    return normalize_file_config(raw)


def load_project_config(project_dir: Path) -> ProjectConfig:
    """Load the effective config for a project directory."""
    merged = {**_file_config(project_dir / CONFIG_FILE_NAME), **_env_config()}
    return ProjectConfig(**merged)
