"""Status snapshot value objects.

Snapshots are fresh values with no identity. Two snapshots are compared only
through fingerprint(), never by deep equality.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.config.project_config import ProjectConfig

PrdStatus = Literal["ready", "in-progress", "pending-review", "done"]
CiStatus = Literal["pass", "fail", "pending", "unknown"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessInfo(_CamelModel):
    name: str
    running: bool
    pid: int | None = None


class PrdInfo(_CamelModel):
    name: str
    status: PrdStatus
    claimed: bool = False  # claim file present, whether or not corroborated


class PrInfo(_CamelModel):
    number: int
    title: str
    branch: str
    url: str
    ci_status: CiStatus = "unknown"
    review_score: int | None = None


class LogInfo(_CamelModel):
    name: str
    path: str
    exists: bool
    size: int = 0
    last_lines: list[str] = Field(default_factory=list)


class CrontabInfo(_CamelModel):
    installed: bool
    entries: list[str] = Field(default_factory=list)


class StatusSnapshot(_CamelModel):
    project_name: str
    project_dir: str
    config: ProjectConfig
    prds: list[PrdInfo]
    processes: list[ProcessInfo]
    prs: list[PrInfo]
    logs: list[LogInfo] = Field(default_factory=list)
    crontab: CrontabInfo
    active_prd: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def process(self, name: str) -> ProcessInfo | None:
        return next((p for p in self.processes if p.name == name), None)


def fingerprint(snapshot: StatusSnapshot) -> str:
    """Hash of the mutable summary: process (name, running, pid) and PRD (name, status)."""
    summary = {
        "processes": [[p.name, p.running, p.pid] for p in snapshot.processes],
        "prds": [[p.name, p.status] for p in snapshot.prds],
    }
    encoded = json.dumps(summary, separators=(",", ":")).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()
