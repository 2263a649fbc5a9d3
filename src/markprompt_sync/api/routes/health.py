"""Health and metrics API routes."""

import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import text

from markprompt_sync.api.dependencies import get_store
from markprompt_sync.api.schemas import ComponentStatusSchema, HealthResponseSchema
from markprompt_sync.observability import get_metrics
from markprompt_sync.storage import Store
from markprompt_sync.sync.tasks import pending_tasks

logger = structlog.get_logger()

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponseSchema)
async def health_check(request: Request, store: Store = Depends(get_store)):
    """
    Health check endpoint.

    Returns component status and the number of pending background tasks.
    """
    database = "ok"
    try:
        async with store.session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("health_database_error", error=str(e))
        database = "error"

    state = request.app.state
    rate_limiter = getattr(state, "rate_limiter", None)
    embedder = getattr(state, "embedder", None)
    components = ComponentStatusSchema(
        database=database,
        rate_limiter=type(rate_limiter).__name__ if rate_limiter else "not_ready",
        embedder=embedder.name if embedder else "not_ready",
    )

    return HealthResponseSchema(
        status="healthy" if database == "ok" else "degraded",
        components=components,
        background_tasks=len(pending_tasks()),
    )


@router.get("/metrics")
async def metrics():
    """Get Prometheus metrics."""
    data, content_type = get_metrics()
    return Response(content=data, media_type=content_type)
