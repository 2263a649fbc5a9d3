"""API Pydantic schemas for request/response validation."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from markprompt_sync.models.content import IngestionError
from markprompt_sync.models.search import ReferenceCount, SearchHit, SectionMatch
from markprompt_sync.models.sync import LogLevel, SyncQueueJob, SyncQueueOverview

API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED = "content_token_quota_exceeded"


# ===== Syncs =====

class TriggerSyncRequestSchema(BaseModel):
    """Identifies a source by id, or by its Nango integration and connection."""

    source_id: str | None = None
    integration_id: str | None = None
    connection_id: str | None = None

    @model_validator(mode="after")
    def _check_identifier(self):
        if not self.source_id and not self.connection_id:
            raise ValueError("Provide a source_id or a connection_id")
        return self


class StopSyncRequestSchema(TriggerSyncRequestSchema):
    pass


class TriggerSyncResponseSchema(BaseModel):
    sync_queue_id: str


class SyncListResponseSchema(BaseModel):
    data: list[SyncQueueOverview]


class SyncLogsResponseSchema(BaseModel):
    data: SyncQueueJob


# ===== Sync queues (connector service) =====

class RunningSyncQueueResponseSchema(BaseModel):
    sync_queue_id: str


class AppendLogRequestSchema(BaseModel):
    message: str = Field(..., min_length=1)
    level: LogLevel


class StatusResponseSchema(BaseModel):
    status: str = "ok"


# ===== Retrieval =====

class SectionsResponseSchema(BaseModel):
    data: list[SectionMatch]


class SearchResponseSchema(BaseModel):
    data: list[SearchHit]


class ReferencesResponseSchema(BaseModel):
    data: list[ReferenceCount]


# ===== Training =====

class TrainFileSchema(BaseModel):
    path: str = Field(..., min_length=1)
    content: str
    content_type: str | None = None
    meta: dict = Field(default_factory=dict)


class TrainFileRequestSchema(BaseModel):
    source_id: str
    file: TrainFileSchema


class TrainFileResponseSchema(BaseModel):
    status: Literal["ok"] = "ok"
    errors: list[IngestionError] = Field(default_factory=list)


# ===== GitHub =====

class GitHubFetchRequestSchema(BaseModel):
    url: str
    branch: str | None = None
    include_globs: list[str] | None = None
    exclude_globs: list[str] | None = None
    offset: int = Field(default=0, ge=0)


# ===== Health =====

class ComponentStatusSchema(BaseModel):
    """Status of a system component."""

    database: str = "unknown"
    rate_limiter: str = "unknown"
    embedder: str = "unknown"


class HealthResponseSchema(BaseModel):
    """Health check response schema."""

    status: str
    components: ComponentStatusSchema
    background_tasks: int = 0
