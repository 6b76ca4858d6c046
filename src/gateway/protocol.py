from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunActionParams(_CamelModel):
    prd_name: str | None = None  # exported to the executor as a priority hint

    @field_validator("prd_name", mode="before")
    @classmethod
    def _normalize_prd_name(cls, v: Any) -> str | None:
        if v is None:
            return None
        if not isinstance(v, str):
            msg = f"prdName must be a string (got {type(v).__name__})"
            raise ValueError(msg)
        v = v.strip()
        return v or None


class RetryParams(_CamelModel):
    prd_name: str


class SpawnResponse(_CamelModel):
    started: bool
    pid: int


class ClearLockResponse(_CamelModel):
    success: bool = True
    message: str
    removed_claims: int = 0


class MessageResponse(_CamelModel):
    message: str


class ProjectEntryOut(_CamelModel):
    name: str
    path: str
    valid: bool


class LogResponse(_CamelModel):
    name: str
    lines: list[str]


class ErrorBody(BaseModel):
    error: str
    code: str
    pid: int | None = None
