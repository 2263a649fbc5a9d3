"""Sync queue: the state machine tracking each sync execution of a source."""

import uuid
from typing import Awaitable, Callable

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from markprompt_sync.errors import (
    InvalidSyncTransition,
    MarkpromptError,
    NotFoundError,
    SyncQueueNotFound,
)
from markprompt_sync.models.sync import (
    LogLevel,
    SyncLogEntry,
    SyncQueueJob,
    SyncQueueOverview,
    SyncStatus,
)
from markprompt_sync.storage import SourceORM, Store, SyncQueueORM
from markprompt_sync.sync.tasks import fire_and_forget
from markprompt_sync.utils import utcnow

logger = structlog.get_logger()

# Every legal (from, to) pair. Terminal states have no way out.
TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.QUEUED: frozenset({SyncStatus.RUNNING, SyncStatus.CANCELED}),
    SyncStatus.RUNNING: frozenset({SyncStatus.SUCCEEDED, SyncStatus.FAILED, SyncStatus.CANCELED}),
    SyncStatus.SUCCEEDED: frozenset(),
    SyncStatus.FAILED: frozenset(),
    SyncStatus.CANCELED: frozenset(),
}

ACQUIRE_ATTEMPTS = 3


def check_transition(current: SyncStatus, target: SyncStatus) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidSyncTransition(current.value, target.value)


class SyncQueue:
    """
    Sync queue operations on top of the store.

    At most one job per source is ``running``; the store enforces it with a
    partial unique index, so concurrent starts converge on one job id.
    """

    def __init__(self, store: Store):
        self.store = store

    async def get_or_create_running(self, source_id: str) -> str:
        """Return the id of the running job of a source, creating it if needed."""
        job_id, _ = await self.acquire_running(source_id)
        return job_id

    async def acquire_running(self, source_id: str) -> tuple[str, bool]:
        """
        Like :meth:`get_or_create_running`, also telling whether this call
        created the job.

        Only the caller that created the job may run it; every other caller
        gets the same id with ``created=False``.
        """
        self.store.require_elevated("get_or_create_running")

        for _ in range(ACQUIRE_ATTEMPTS):
            job_id = str(uuid.uuid4())
            try:
                async with self.store.session() as session, session.begin():
                    session.add(
                        SyncQueueORM(
                            id=job_id,
                            source_id=source_id,
                            status=SyncStatus.RUNNING.value,
                            logs=[],
                        )
                    )
                logger.info("sync_queue_created", source_id=source_id, sync_queue_id=job_id)
                return job_id, True
            except IntegrityError:
                pass

            existing = await self.running_job_id(source_id)
            if existing is not None:
                return existing, False

            async with self.store.session() as session:
                if await session.get(SourceORM, source_id) is None:
                    raise NotFoundError(f"Source {source_id} not found")
            # The running job ended between our insert and select.

        raise MarkpromptError(f"Could not acquire a running sync queue for source {source_id}")

    async def enqueue(self, source_id: str) -> str:
        """Create a ``queued`` job for a source."""
        self.store.require_elevated("enqueue")
        job_id = str(uuid.uuid4())
        async with self.store.session() as session, session.begin():
            session.add(
                SyncQueueORM(id=job_id, source_id=source_id, status=SyncStatus.QUEUED.value, logs=[])
            )
        logger.info("sync_queue_enqueued", source_id=source_id, sync_queue_id=job_id)
        return job_id

    async def start(self, job_id: str) -> SyncQueueJob:
        """Move a queued job to ``running``."""
        self.store.require_elevated("start")
        try:
            async with self.store.session() as session, session.begin():
                orm = await self._get_orm(session, job_id)
                check_transition(SyncStatus(orm.status), SyncStatus.RUNNING)
                orm.status = SyncStatus.RUNNING.value
        except IntegrityError as e:
            # Another job of the same source is already running.
            raise InvalidSyncTransition(SyncStatus.QUEUED.value, SyncStatus.RUNNING.value) from e
        return await self.get(job_id)

    async def append_log(self, job_id: str, message: str, level: LogLevel = "info") -> None:
        """Append a log entry to a job. Never raises."""
        entry = {"timestamp": utcnow().isoformat(), "level": level, "message": message}
        try:
            async with self.store.session() as session, session.begin():
                result = await session.execute(
                    select(SyncQueueORM).where(SyncQueueORM.id == job_id).with_for_update()
                )
                orm = result.scalar_one_or_none()
                if orm is None:
                    logger.warning("sync_queue_append_log_missing_job", sync_queue_id=job_id)
                    return
                # Reassign so the JSON column is flagged dirty.
                orm.logs = [*(orm.logs or []), entry]
        except Exception as e:
            logger.error(
                "sync_queue_append_log_failed",
                sync_queue_id=job_id,
                message=message,
                error=str(e),
            )

    async def mark_ended(self, job_id: str, status: SyncStatus | str) -> SyncQueueJob:
        """
        End a running job with a terminal status.

        Ending an already-terminal job is a no-op that returns its current
        state. Ending a queued job, or ending with a non-terminal status,
        raises InvalidSyncTransition.
        """
        self.store.require_elevated("mark_ended")
        target = SyncStatus(status)

        async with self.store.session() as session, session.begin():
            orm = await self._get_orm(session, job_id)
            current = SyncStatus(orm.status)

            if current.is_terminal:
                logger.info(
                    "sync_queue_already_ended",
                    sync_queue_id=job_id,
                    status=current.value,
                    requested=target.value,
                )
            else:
                if current is SyncStatus.QUEUED or not target.is_terminal:
                    raise InvalidSyncTransition(current.value, target.value)
                check_transition(current, target)
                orm.status = target.value
                orm.ended_at = utcnow()
                logger.info("sync_queue_ended", sync_queue_id=job_id, status=target.value)

            return self._to_job(orm)

    async def cancel(
        self,
        job_id: str,
        upstream: Callable[[], Awaitable[None]] | None = None,
    ) -> SyncQueueJob:
        """
        Cancel a queued or running job.

        The job is marked ``canceled`` locally first. ``upstream`` (for
        example deleting the Nango connection) then runs in the background;
        its failure is logged and recorded on the job log, and the job stays
        canceled. Canceling a terminal job is a no-op.
        """
        self.store.require_elevated("cancel")

        async with self.store.session() as session, session.begin():
            orm = await self._get_orm(session, job_id)
            current = SyncStatus(orm.status)
            if current.is_terminal:
                return self._to_job(orm)
            check_transition(current, SyncStatus.CANCELED)
            orm.status = SyncStatus.CANCELED.value
            orm.ended_at = utcnow()

        logger.info("sync_queue_canceled", sync_queue_id=job_id)
        await self.append_log(job_id, "Sync canceled.", "info")

        if upstream is not None:
            fire_and_forget(self._cancel_upstream(job_id, upstream), name=f"cancel-upstream-{job_id}")

        return await self.get(job_id)

    async def _cancel_upstream(self, job_id: str, upstream: Callable[[], Awaitable[None]]) -> None:
        try:
            await upstream()
        except Exception as e:
            logger.warning("sync_queue_upstream_cancel_failed", sync_queue_id=job_id, error=str(e))
            await self.append_log(job_id, f"Unable to stop the upstream sync: {e}", "error")

    async def is_running(self, job_id: str) -> bool:
        async with self.store.session() as session:
            result = await session.execute(
                select(SyncQueueORM.status).where(SyncQueueORM.id == job_id)
            )
            return result.scalar_one_or_none() == SyncStatus.RUNNING.value

    async def running_job_id(self, source_id: str) -> str | None:
        async with self.store.session() as session:
            result = await session.execute(
                select(SyncQueueORM.id).where(
                    SyncQueueORM.source_id == source_id,
                    SyncQueueORM.status == SyncStatus.RUNNING.value,
                )
            )
            return result.scalar_one_or_none()

    async def get(self, job_id: str) -> SyncQueueJob:
        async with self.store.session() as session:
            return self._to_job(await self._get_orm(session, job_id))

    async def logs(self, job_id: str) -> list[SyncLogEntry]:
        return (await self.get(job_id)).logs

    async def latest(self, source_id: str) -> SyncQueueJob | None:
        """Most recently created job of a source."""
        async with self.store.session() as session:
            result = await session.execute(
                select(SyncQueueORM)
                .where(SyncQueueORM.source_id == source_id)
                .order_by(SyncQueueORM.created_at.desc())
                .limit(1)
            )
            orm = result.scalar_one_or_none()
            return self._to_job(orm) if orm else None

    async def latest_for_project(self, project_id: str) -> list[SyncQueueOverview]:
        """Most recent job of every source in a project."""
        async with self.store.session() as session:
            latest = (
                select(
                    SyncQueueORM.source_id,
                    func.max(SyncQueueORM.created_at).label("created_at"),
                )
                .join(SourceORM, SourceORM.id == SyncQueueORM.source_id)
                .where(SourceORM.project_id == project_id)
                .group_by(SyncQueueORM.source_id)
                .subquery()
            )
            result = await session.execute(
                select(SyncQueueORM)
                .join(
                    latest,
                    (latest.c.source_id == SyncQueueORM.source_id)
                    & (latest.c.created_at == SyncQueueORM.created_at),
                )
                .order_by(SyncQueueORM.created_at.desc())
            )
            return [self._to_overview(orm) for orm in result.scalars()]

    async def overview(self, project_id: str, limit: int = 20, offset: int = 0) -> list[SyncQueueOverview]:
        """Jobs of a project, newest first, without logs."""
        async with self.store.session() as session:
            result = await session.execute(
                select(SyncQueueORM)
                .join(SourceORM, SourceORM.id == SyncQueueORM.source_id)
                .where(SourceORM.project_id == project_id)
                .order_by(SyncQueueORM.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [self._to_overview(orm) for orm in result.scalars()]

    async def _get_orm(self, session, job_id: str) -> SyncQueueORM:
        orm = await session.get(SyncQueueORM, job_id)
        if orm is None:
            raise SyncQueueNotFound(f"Sync queue {job_id} not found")
        return orm

    def _to_job(self, orm: SyncQueueORM) -> SyncQueueJob:
        return SyncQueueJob(
            id=orm.id,
            source_id=orm.source_id,
            status=SyncStatus(orm.status),
            created_at=orm.created_at,
            ended_at=orm.ended_at,
            logs=[SyncLogEntry.model_validate(entry) for entry in orm.logs or []],
        )

    def _to_overview(self, orm: SyncQueueORM) -> SyncQueueOverview:
        return SyncQueueOverview(
            id=orm.id,
            source_id=orm.source_id,
            status=SyncStatus(orm.status),
            created_at=orm.created_at,
            ended_at=orm.ended_at,
        )
