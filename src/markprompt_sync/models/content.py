"""Data models for content records, files and file sections."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ContentRecord(BaseModel):
    """Raw content fetched from a connector before processing."""

    path: str
    content: str
    content_type: str | None = None
    metadata: dict = Field(default_factory=dict)


class FileSectionData(BaseModel):
    """A processed, not yet embedded, chunk of a file."""

    content: str
    lead_heading: str | None = None
    heading_depth: int | None = None
    heading_path: str | None = None


class ProcessedFile(BaseModel):
    """A file after being split into sections."""

    path: str
    title: str
    meta: dict = Field(default_factory=dict)
    sections: list[FileSectionData] = Field(default_factory=list)


class File(BaseModel):
    """One ingested content unit belonging to a source."""

    id: int
    source_id: str
    project_id: str
    path: str
    meta: dict = Field(default_factory=dict)
    raw_content: str | None = None
    checksum: str
    token_count: int = 0
    internal_metadata: dict = Field(default_factory=dict)
    updated_at: datetime | None = None


class FileSection(BaseModel):
    """An embedded chunk of a file, the unit of retrieval."""

    id: int
    file_id: int
    section_index: int
    content: str
    embedding: list[float] | None = None
    token_count: int = 0
    meta: dict = Field(default_factory=dict)


IngestionErrorKind = Literal["quota_exceeded", "embedding", "processing", "canceled"]


class IngestionError(BaseModel):
    """A per-file failure collected during an ingestion run."""

    path: str
    message: str
    kind: IngestionErrorKind = "processing"

    @property
    def is_quota_exceeded(self) -> bool:
        return self.kind == "quota_exceeded"
