"""Sync API routes: trigger, stop and inspect the sync jobs of a project."""

from fastapi import APIRouter, Depends, Query

from markprompt_sync.api.dependencies import get_store, get_sync_queue, get_sync_runner
from markprompt_sync.api.schemas import (
    StopSyncRequestSchema,
    SyncListResponseSchema,
    SyncLogsResponseSchema,
    TriggerSyncRequestSchema,
    TriggerSyncResponseSchema,
)
from markprompt_sync.errors import NotFoundError
from markprompt_sync.models.source import Source
from markprompt_sync.storage import SourceRepository, Store
from markprompt_sync.sync.queue import SyncQueue
from markprompt_sync.sync.runner import SyncRunner

router = APIRouter(prefix="/projects/{project_id}/syncs", tags=["syncs"])


async def resolve_source(store: Store, project_id: str, body: TriggerSyncRequestSchema) -> Source:
    """Find the project's source by id, or by Nango connection id."""
    async with store.session() as session:
        repo = SourceRepository(session)
        if body.source_id:
            source = await repo.get(body.source_id)
        else:
            source = await repo.get_by_connection_id(body.connection_id)

    if source is None or source.project_id != project_id:
        raise NotFoundError("Source not found")
    return source


@router.post("", response_model=TriggerSyncResponseSchema)
async def trigger_sync(
    project_id: str,
    body: TriggerSyncRequestSchema,
    store: Store = Depends(get_store),
    runner: SyncRunner = Depends(get_sync_runner),
):
    """
    Start syncing a source.

    The sync runs in the background; poll the logs of the returned job.
    """
    source = await resolve_source(store, project_id, body)
    sync_queue_id = await runner.trigger(source.id)
    return TriggerSyncResponseSchema(sync_queue_id=sync_queue_id)


@router.post("/stop", response_model=TriggerSyncResponseSchema)
async def stop_sync(
    project_id: str,
    body: StopSyncRequestSchema,
    store: Store = Depends(get_store),
    runner: SyncRunner = Depends(get_sync_runner),
):
    source = await resolve_source(store, project_id, body)
    job = await runner.cancel(source.id)
    return TriggerSyncResponseSchema(sync_queue_id=job.id)


@router.get("/latest", response_model=SyncListResponseSchema)
async def latest_syncs(project_id: str, queue: SyncQueue = Depends(get_sync_queue)):
    """Most recent job of every source of the project."""
    return SyncListResponseSchema(data=await queue.latest_for_project(project_id))


@router.get("", response_model=SyncListResponseSchema)
async def list_syncs(
    project_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    queue: SyncQueue = Depends(get_sync_queue),
):
    return SyncListResponseSchema(data=await queue.overview(project_id, limit=limit, offset=offset))


@router.get("/{sync_queue_id}/logs", response_model=SyncLogsResponseSchema)
async def sync_logs(
    project_id: str,
    sync_queue_id: str,
    store: Store = Depends(get_store),
    queue: SyncQueue = Depends(get_sync_queue),
):
    job = await queue.get(sync_queue_id)
    async with store.session() as session:
        source = await SourceRepository(session).get(job.source_id)
    if source is None or source.project_id != project_id:
        raise NotFoundError("Sync queue not found")
    return SyncLogsResponseSchema(data=job)
