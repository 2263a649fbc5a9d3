"""Sync queue job models."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SyncStatus.SUCCEEDED, SyncStatus.FAILED, SyncStatus.CANCELED}
)

LogLevel = Literal["info", "debug", "warn", "error"]


class SyncLogEntry(BaseModel):
    timestamp: datetime
    level: LogLevel
    message: str


class SyncQueueJob(BaseModel):
    """One tracked execution of pulling content from a source."""

    id: str
    source_id: str
    status: SyncStatus
    created_at: datetime
    ended_at: datetime | None = None
    logs: list[SyncLogEntry] = Field(default_factory=list)


class SyncQueueOverview(BaseModel):
    """A job without its log, for listings."""

    id: str
    source_id: str
    status: SyncStatus
    created_at: datetime
    ended_at: datetime | None = None
