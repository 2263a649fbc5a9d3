"""Sync runner: drives one sync job from trigger to terminal status."""

import time

import httpx
import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import ConnectorError, NotFoundError
from markprompt_sync.ingestion.connectors import NangoClient, connector_for_source
from markprompt_sync.ingestion.pipeline import IngestionPipeline, IngestResult
from markprompt_sync.limits import tiers
from markprompt_sync.limits.quota import QuotaGate
from markprompt_sync.models.source import NangoSourceData, Source
from markprompt_sync.models.sync import SyncQueueJob, SyncStatus
from markprompt_sync.observability.metrics import SYNC_JOBS, SYNC_LATENCY
from markprompt_sync.storage import SourceRepository, Store
from markprompt_sync.sync.queue import SyncQueue
from markprompt_sync.sync.scheduler import next_source_to_sync
from markprompt_sync.sync.tasks import fire_and_forget

logger = structlog.get_logger()


class SyncRunner:
    """
    Runs sync jobs.

    A run resolves the source's connector, streams its records through the
    ingestion pipeline while polling the job for cancellation, copies the
    per-file errors onto the job log, and ends the job:

    - ``canceled`` when the job was canceled while running
    - ``failed`` when the connector failed or the plan's quota was reached
    - ``succeeded`` otherwise, even if some files could not be processed
    """

    def __init__(
        self,
        store: Store,
        queue: SyncQueue,
        pipeline: IngestionPipeline,
        quota: QuotaGate,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        nango_client: NangoClient | None = None,
    ):
        self.store = store
        self.queue = queue
        self.pipeline = pipeline
        self.quota = quota
        self.settings = settings or get_settings()
        self.http_client = http_client
        self.nango_client = nango_client or NangoClient(self.settings, client=http_client)

    async def get_source(self, source_id: str) -> Source:
        async with self.store.session() as session:
            source = await SourceRepository(session).get(source_id)
        if source is None:
            raise NotFoundError(f"Source {source_id} not found")
        return source

    async def trigger(self, source_id: str) -> str:
        """
        Create the running job of a source and run it in the background.

        Returns the job id immediately. Triggering a source that is already
        syncing returns the running job's id without starting a second run.
        """
        source = await self.get_source(source_id)
        job_id, created = await self.queue.acquire_running(source.id)
        if not created:
            logger.info("sync_already_running", source_id=source.id, sync_queue_id=job_id)
            return job_id

        fire_and_forget(self.run(source, job_id), name=f"sync-{job_id}")
        return job_id

    async def run(self, source: Source, job_id: str | None = None) -> SyncQueueJob:
        """
        Run a sync of ``source`` to completion and return the ended job.

        Without ``job_id`` a running job is acquired first; if another run
        already holds one, that job is returned as is and nothing runs.
        """
        if job_id is None:
            job_id, created = await self.queue.acquire_running(source.id)
            if not created:
                logger.info("sync_already_running", source_id=source.id, sync_queue_id=job_id)
                return await self.queue.get(job_id)

        start_time = time.perf_counter()
        log = logger.bind(source_id=source.id, sync_queue_id=job_id, source_type=source.type)
        log.info("sync_started")
        await self.queue.append_log(job_id, f"Starting sync of {source.type} source.")

        status = SyncStatus.SUCCEEDED
        try:
            result = await self._run(source, job_id)
        except Exception as e:
            log.error("sync_failed", error=str(e), error_type=type(e).__name__)
            message = f"Sync failed: {e}"
            if isinstance(e, ConnectorError) and e.status_code:
                message = f"Sync failed ({e.status_code}): {e}"
            await self.queue.append_log(job_id, message, "error")
            status = SyncStatus.FAILED
        else:
            if result.canceled:
                status = SyncStatus.CANCELED
            elif result.quota_exceeded:
                status = SyncStatus.FAILED
            stats = result.stats
            await self.queue.append_log(
                job_id,
                f"Processed {stats.files_seen} files: {stats.files_written} updated, "
                f"{stats.files_skipped} unchanged, {stats.files_deleted} removed.",
            )

        job = await self.queue.mark_ended(job_id, status)

        duration = time.perf_counter() - start_time
        SYNC_JOBS.labels(source_type=source.type, status=job.status.value).inc()
        SYNC_LATENCY.labels(source_type=source.type).observe(duration)
        log.info("sync_ended", status=job.status.value, duration_seconds=round(duration, 3))
        return job

    async def _run(self, source: Source, job_id: str) -> IngestResult:
        team_id = await self.quota.get_team_id(source.project_id)
        info = await self.quota.get_tier_info(team_id)

        if isinstance(source.data, NangoSourceData):
            await self._ensure_upstream_syncing(source.data, job_id)

        connector = connector_for_source(
            source,
            self.settings,
            http_client=self.http_client,
            nango_client=self.nango_client,
            custom_page_fetcher_allowed=tiers.is_custom_page_fetcher_enabled(info),
        )
        remaining = (await self.quota.get_allowance(team_id)).embeddings.remaining

        async def should_continue() -> bool:
            return await self.queue.is_running(job_id)

        try:
            result = await self.pipeline.run(
                source,
                connector,
                prune=True,
                remaining_tokens=remaining,
                should_continue=should_continue,
                keep_paths=connector.skipped_paths,
            )
        finally:
            # Usage changed even if the run stopped halfway.
            self.quota.embeddings_cache.invalidate(team_id)

        for error in [*connector.errors, *result.errors]:
            if error.kind == "canceled":
                continue
            level = "warn" if error.kind == "processing" else "error"
            await self.queue.append_log(job_id, f"{error.path}: {error.message}", level)
        return result

    async def _ensure_upstream_syncing(self, data: NangoSourceData, job_id: str) -> None:
        try:
            action = await self.nango_client.ensure_syncing(data)
        except ConnectorError as e:
            logger.warning("nango_ensure_syncing_failed", connection_id=data.connection_id, error=str(e))
            await self.queue.append_log(job_id, f"Unable to request an upstream sync: {e}", "warn")
            return
        await self.queue.append_log(job_id, f"Upstream sync action: {action.value}.", "debug")

    async def cancel(self, source_id: str) -> SyncQueueJob:
        """
        Stop the sync of a source.

        The running job (created if absent, so the stop is recorded) is
        canceled locally; for Nango sources the upstream connection is then
        deleted in the background.
        """
        source = await self.get_source(source_id)
        job_id = await self.queue.get_or_create_running(source.id)

        upstream = None
        if isinstance(source.data, NangoSourceData):
            data = source.data

            async def upstream() -> None:
                await self.nango_client.delete_connection(data.integration_id, data.connection_id)

        return await self.queue.cancel(job_id, upstream=upstream)

    async def sync_next(self) -> SyncQueueJob | None:
        """Run the sync of the source that waited longest, if any."""
        source = await next_source_to_sync(self.store)
        if source is None:
            return None
        return await self.run(source)
