"""Scheduling policy: which source should sync next."""

from datetime import datetime

import structlog
from sqlalchemy import func, select

from markprompt_sync.models.source import SYNCABLE_SOURCE_TYPES, Source
from markprompt_sync.models.sync import SyncStatus
from markprompt_sync.storage import SourceORM, SourceRepository, Store, SyncQueueORM

logger = structlog.get_logger()


def _sort_key(source: Source, last_ended_at: datetime | None) -> tuple:
    # Never-synced sources first, then the longest-idle one.
    return (
        last_ended_at is not None,
        last_ended_at or datetime.min,
        source.created_at,
        source.id,
    )


async def next_source_to_sync(store: Store) -> Source | None:
    """
    Pick the connector-backed source that waited longest for a sync.

    Sources whose latest job is still queued or running are skipped, and so
    is every source of a project that already has a running job.
    """
    async with store.session() as session:
        sources = await SourceRepository(session).list_by_types(SYNCABLE_SOURCE_TYPES)
        if not sources:
            return None

        latest = (
            select(
                SyncQueueORM.source_id,
                func.max(SyncQueueORM.created_at).label("created_at"),
            )
            .group_by(SyncQueueORM.source_id)
            .subquery()
        )
        result = await session.execute(
            select(SyncQueueORM.source_id, SyncQueueORM.status, SyncQueueORM.ended_at).join(
                latest,
                (latest.c.source_id == SyncQueueORM.source_id)
                & (latest.c.created_at == SyncQueueORM.created_at),
            )
        )
        latest_jobs = {row.source_id: (row.status, row.ended_at) for row in result}

        result = await session.execute(
            select(SourceORM.project_id)
            .join(SyncQueueORM, SyncQueueORM.source_id == SourceORM.id)
            .where(SyncQueueORM.status == SyncStatus.RUNNING.value)
        )
        busy_projects = set(result.scalars())

    candidates: list[tuple[tuple, Source]] = []
    for source in sources:
        if source.project_id in busy_projects:
            continue
        status, ended_at = latest_jobs.get(source.id, (None, None))
        if status is not None and not SyncStatus(status).is_terminal:
            continue
        candidates.append((_sort_key(source, ended_at), source))

    if not candidates:
        logger.debug("no_source_to_sync", sources=len(sources))
        return None

    candidates.sort(key=lambda item: item[0])
    return candidates[0][1]
