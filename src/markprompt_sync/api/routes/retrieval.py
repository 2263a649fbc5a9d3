"""Retrieval API routes: semantic sections, lexical search and file training."""

from fastapi import APIRouter, Depends, Header, Query

from markprompt_sync.api.dependencies import get_retrieval_service, get_training_service
from markprompt_sync.api.schemas import (
    SearchResponseSchema,
    SectionsResponseSchema,
    TrainFileRequestSchema,
    TrainFileResponseSchema,
)
from markprompt_sync.api.service import RetrievalService, TrainingService
from markprompt_sync.models.content import ContentRecord

router = APIRouter(prefix="/v1", tags=["retrieval"])


@router.get("/sections/{project_id}", response_model=SectionsResponseSchema)
async def sections(
    project_id: str,
    prompt: str = Query(..., min_length=1),
    threshold: float | None = Query(default=None, ge=0.0, le=1.0),
    count: int | None = Query(default=None, ge=1),
    origin: str | None = Header(default=None),
    service: RetrievalService = Depends(get_retrieval_service),
):
    """
    Sections most similar to the prompt.

    Rate limited per project; outside first-party origins the team's plan
    must include the sections API.
    """
    matches = await service.match_sections(project_id, prompt, threshold, count, origin=origin)
    return SectionsResponseSchema(data=matches)


@router.get("/search/{project_id}", response_model=SearchResponseSchema)
async def search(
    project_id: str,
    query: str = Query(default=""),
    limit: int | None = Query(default=None, ge=1),
    origin: str | None = Header(default=None),
    service: RetrievalService = Depends(get_retrieval_service),
):
    hits = await service.search(project_id, query, limit, origin=origin)
    return SearchResponseSchema(data=hits)


@router.post("/train-file", response_model=TrainFileResponseSchema)
async def train_file(
    body: TrainFileRequestSchema,
    service: TrainingService = Depends(get_training_service),
):
    """Embed one uploaded file into a source; other files of the source are kept."""
    record = ContentRecord(
        path=body.file.path,
        content=body.file.content,
        content_type=body.file.content_type,
        metadata=body.file.meta,
    )
    errors = await service.train_file(body.source_id, record)
    return TrainFileResponseSchema(errors=errors)
