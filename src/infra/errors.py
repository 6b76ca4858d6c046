"""Custom exception hierarchy for the Night Watch dashboard.

All application-specific exceptions inherit from NightWatchError,
which carries an error code for HTTP error body mapping.
"""

from __future__ import annotations


class NightWatchError(Exception):
    """Base exception for all Night Watch dashboard errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class NotFoundError(NightWatchError):
    """Unknown project, PRD, or other missing target."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code)


class ConflictError(NightWatchError):
    """Duplicate spawn attempt, or clear-lock against a live lock.

    Carries the pid of the blocking process when one is known.
    """

    def __init__(self, message: str, *, pid: int | None = None) -> None:
        super().__init__(message, code="CONFLICT")
        self.pid = pid


class InvalidRequestError(NightWatchError):
    """Malformed operator input (bad PRD name, unknown log name, ...)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_REQUEST")


class SnapshotError(NightWatchError):
    """Filesystem or collaborator failure while deriving a status snapshot."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="SNAPSHOT_FAILED")


class SpawnError(NightWatchError):
    """OS process creation failed, or succeeded without a pid."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="SPAWN_FAILED")


class ChannelClosedError(NightWatchError):
    """Write attempted on a subscriber channel that is closed or saturated."""

    def __init__(self, message: str = "Subscriber channel is closed") -> None:
        super().__init__(message, code="CHANNEL_CLOSED")
