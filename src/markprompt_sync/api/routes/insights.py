"""Insights routes."""

from fastapi import APIRouter, Depends, Query

from markprompt_sync.api.dependencies import get_retrieval_service
from markprompt_sync.api.schemas import ReferencesResponseSchema
from markprompt_sync.api.service import RetrievalService

router = APIRouter(prefix="/projects/{project_id}/insights", tags=["insights"])


@router.get("/references", response_model=ReferencesResponseSchema)
async def top_references(
    project_id: str,
    limit: int = Query(default=10, ge=1, le=50),
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Most cited paths of the project's answered questions."""
    return ReferencesResponseSchema(data=await service.retriever.top_references(project_id, limit))
