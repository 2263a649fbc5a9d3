"""Retrieval result models."""

from pydantic import BaseModel, Field


class SectionMatch(BaseModel):
    """A file section returned by the semantic matcher."""

    section_id: int
    file_id: int
    path: str
    title: str | None = None
    source_type: str
    section_index: int
    content: str
    meta: dict = Field(default_factory=dict)
    similarity: float


class SearchHit(BaseModel):
    """A file section containing the lexical query."""

    section_id: int
    file_id: int
    path: str
    title: str | None = None
    source_type: str
    section_index: int
    content: str
    meta: dict = Field(default_factory=dict)


class ReferenceCount(BaseModel):
    path: str
    count: int
