from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import; every BaseSettings subclass sees the env vars
load_dotenv()


class DashboardSettings(BaseSettings):
    """HTTP server settings. Env vars prefixed with DASHBOARD_.

    project_dir set = single-project mode; unset = global (registry) mode.
    """

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "0.0.0.0"
    port: int = 7575
    project_dir: Path | None = None
    json_logs: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v = v.upper()
        if v not in allowed:
            msg = f"DASHBOARD_LOG_LEVEL must be one of {sorted(allowed)} (got '{v}')"
            raise ValueError(msg)
        return v


class WatcherSettings(BaseSettings):
    """Status watcher settings. Env vars prefixed with WATCHER_."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    poll_interval_ms: int = Field(2000, gt=0)
    skip_when_idle: bool = True  # no snapshot fetch while a project has no subscribers
    fetch_timeout_s: float = Field(30.0, gt=0)
    channel_queue_size: int = Field(64, gt=0)
    keepalive_s: float = Field(30.0, gt=0)

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000


class SpawnSettings(BaseSettings):
    """Automation process launch settings. Env vars prefixed with SPAWN_."""

    model_config = SettingsConfigDict(env_prefix="SPAWN_")

    command: str = "night-watch"
    prd_priority_env: str = "NW_PRD_PRIORITY"

    @field_validator("command")
    @classmethod
    def _validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("SPAWN_COMMAND must be a non-empty command")
        return v


class RegistrySettings(BaseSettings):
    """Location of the global Night Watch home (project registry, PRD states)."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    home: Path = Field(
        default_factory=lambda: Path.home() / ".night-watch",
        validation_alias="NIGHT_WATCH_HOME",
    )


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    dashboard: DashboardSettings = Field(default_factory=DashboardSettings)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    spawn: SpawnSettings = Field(default_factory=SpawnSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
