"""Sync queue routes called by the connector sync service."""

from fastapi import APIRouter, Depends, Query

from markprompt_sync.api.dependencies import get_store, get_sync_queue, require_api_token
from markprompt_sync.api.schemas import (
    AppendLogRequestSchema,
    RunningSyncQueueResponseSchema,
    StatusResponseSchema,
)
from markprompt_sync.errors import NotFoundError
from markprompt_sync.storage import SourceRepository, Store
from markprompt_sync.sync.queue import SyncQueue

router = APIRouter(
    prefix="/sync-queues",
    tags=["sync-queues"],
    dependencies=[Depends(require_api_token)],
)


@router.get("/running", response_model=RunningSyncQueueResponseSchema)
async def running_sync_queue(
    connection_id: str = Query(..., min_length=1),
    store: Store = Depends(get_store),
    queue: SyncQueue = Depends(get_sync_queue),
):
    """Get or create the running job of the source owning a Nango connection."""
    async with store.session() as session:
        source = await SourceRepository(session).get_by_connection_id(connection_id)
    if source is None:
        raise NotFoundError(f"No source for connection {connection_id}")

    sync_queue_id = await queue.get_or_create_running(source.id)
    return RunningSyncQueueResponseSchema(sync_queue_id=sync_queue_id)


@router.post("/{sync_queue_id}/append-log", response_model=StatusResponseSchema)
async def append_log(
    sync_queue_id: str,
    body: AppendLogRequestSchema,
    queue: SyncQueue = Depends(get_sync_queue),
):
    await queue.append_log(sync_queue_id, body.message, body.level)
    return StatusResponseSchema()
