"""Ingestion pipeline: checksum diff, section processing, embedding and writes."""

import inspect
import time
from dataclasses import dataclass, field
from typing import AsyncIterable, Awaitable, Callable, Collection, Iterable

import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import QuotaExceededError
from markprompt_sync.ingestion.embeddings import Embedder
from markprompt_sync.ingestion.processor import ContentProcessor
from markprompt_sync.models.content import ContentRecord, FileSectionData, IngestionError
from markprompt_sync.models.source import Source
from markprompt_sync.observability.metrics import INGESTION_FILES, INGESTION_LATENCY
from markprompt_sync.storage import (
    ChecksumStore,
    FileRepository,
    Store,
    TeamRepository,
    UsageRepository,
    compute_checksum,
)

logger = structlog.get_logger()

ShouldContinue = Callable[[], bool | Awaitable[bool]]


@dataclass
class IngestStats:
    """Statistics from an ingestion run."""

    source_id: str
    files_seen: int = 0
    files_written: int = 0
    files_skipped: int = 0
    files_deleted: int = 0
    sections_written: int = 0
    tokens_used: int = 0
    duration_seconds: float = 0.0


@dataclass
class IngestResult:
    stats: IngestStats
    errors: list[IngestionError] = field(default_factory=list)

    @property
    def quota_exceeded(self) -> bool:
        return any(error.is_quota_exceeded for error in self.errors)

    @property
    def canceled(self) -> bool:
        return any(error.kind == "canceled" for error in self.errors)


class IngestionPipeline:
    """
    Orchestrates the ingestion of content records for one source.

    Flow:
    1. Read the checksum map of the source
    2. Skip records whose checksum is unchanged
    3. Process changed records into sections and embed them
    4. Per file, in one transaction: upsert the file, replace its sections
       and write the checksum map with the path updated
    5. In one transaction: delete files absent from the incoming set and
       write the checksum map without them

    The checksum map is only ever written inside the transactions of 4 and
    5, so its keys always equal the persisted file paths of the source.
    """

    def __init__(
        self,
        store: Store,
        embedder: Embedder,
        settings: Settings | None = None,
        processor: ContentProcessor | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.settings = settings or get_settings()
        self.processor = processor or ContentProcessor(self.settings)

    async def ingest(
        self,
        source: Source,
        records: AsyncIterable[ContentRecord] | Iterable[ContentRecord],
        *,
        prune: bool = True,
        remaining_tokens: int | None = None,
        should_continue: ShouldContinue | None = None,
        keep_paths: Collection[str] = (),
    ) -> list[IngestionError]:
        """
        Ingest content records for a source.

        Args:
            source: The source the records belong to
            records: The full current content of the source (when pruning)
            prune: Delete stored files absent from ``records``; uploads pass False
            remaining_tokens: Token allowance left on the team's plan
            should_continue: Polled before each file; False stops the run
            keep_paths: Paths that still exist upstream but were not delivered
                this run; never pruned. Read once the stream is exhausted, so
                a connector may fill it while streaming.

        Returns:
            Per-file errors. A ``quota_exceeded`` or ``canceled`` entry means
            the run stopped early; files committed before that stay committed.
        """
        result = await self.run(
            source,
            records,
            prune=prune,
            remaining_tokens=remaining_tokens,
            should_continue=should_continue,
            keep_paths=keep_paths,
        )
        return result.errors

    async def run(
        self,
        source: Source,
        records: AsyncIterable[ContentRecord] | Iterable[ContentRecord],
        *,
        prune: bool = True,
        remaining_tokens: int | None = None,
        should_continue: ShouldContinue | None = None,
        keep_paths: Collection[str] = (),
    ) -> IngestResult:
        """Same as ``ingest`` but also returns run statistics."""
        self.store.require_elevated("ingestion")

        start_time = time.perf_counter()
        result = IngestResult(stats=IngestStats(source_id=source.id))
        stats = result.stats

        async with self.store.session() as session:
            known = await ChecksumStore(session).get_checksums(source.project_id, source.id)

        seen_paths: set[str] = set()
        quota_stopped = False

        async for record in _aiter(records):
            seen_paths.add(record.path)
            stats.files_seen += 1

            # After a quota stop the stream is drained only to learn which
            # paths still exist upstream.
            if quota_stopped:
                continue

            if should_continue is not None and not await _call(should_continue):
                logger.info("ingestion_canceled", source_id=source.id, path=record.path)
                result.errors.append(
                    IngestionError(path=record.path, message="Sync was canceled.", kind="canceled")
                )
                break

            checksum = compute_checksum(record.content)
            if known.get(record.path) == checksum:
                stats.files_skipped += 1
                INGESTION_FILES.labels(source_type=source.type, status="skipped").inc()
                continue

            error = await self._ingest_record(source, record, checksum, remaining_tokens, stats)
            if error is None:
                known[record.path] = checksum
                continue

            result.errors.append(error)
            INGESTION_FILES.labels(source_type=source.type, status="error").inc()
            if error.is_quota_exceeded:
                quota_stopped = True

        if prune and not result.canceled:
            removed = set(known) - seen_paths - set(keep_paths)
            if removed:
                await self._delete_paths(source, removed)
                stats.files_deleted = len(removed)
                INGESTION_FILES.labels(source_type=source.type, status="deleted").inc(len(removed))

        if stats.tokens_used:
            await self._record_usage(source, stats.tokens_used)

        stats.duration_seconds = time.perf_counter() - start_time
        INGESTION_LATENCY.labels(source_type=source.type).observe(stats.duration_seconds)
        logger.info(
            "ingestion_complete",
            source_id=source.id,
            stats=stats.__dict__,
            errors=len(result.errors),
        )
        return result

    async def _ingest_record(
        self,
        source: Source,
        record: ContentRecord,
        checksum: str,
        remaining_tokens: int | None,
        stats: IngestStats,
    ) -> IngestionError | None:
        """Process, embed and write one changed file. Returns an error instead of raising."""
        try:
            processed = self.processor.process(record.path, record.content, record.content_type)
        except Exception as e:
            logger.error("file_processing_error", source_id=source.id, path=record.path, error=str(e))
            return IngestionError(path=record.path, message=f"Unable to process file: {e}")

        try:
            vectors, token_counts = await self._embed_sections(processed.sections)
        except QuotaExceededError as e:
            logger.warning("embedding_quota_exceeded", source_id=source.id, path=record.path)
            return IngestionError(path=record.path, message=str(e), kind="quota_exceeded")
        except Exception as e:
            logger.error("file_embedding_error", source_id=source.id, path=record.path, error=str(e))
            return IngestionError(
                path=record.path,
                message=f"Unable to generate embeddings: {e}",
                kind="embedding",
            )

        file_tokens = sum(token_counts)
        if remaining_tokens is not None and stats.tokens_used + file_tokens > remaining_tokens:
            return IngestionError(
                path=record.path,
                message=(
                    f"Training quota reached. {remaining_tokens} tokens remained on the plan "
                    f"and processing {record.path} brings usage to "
                    f"{stats.tokens_used + file_tokens} tokens."
                ),
                kind="quota_exceeded",
            )

        metadata = dict(record.metadata)
        internal_metadata = metadata.pop("_internal", {})
        meta = {**{k: v for k, v in metadata.items() if v is not None}, **processed.meta}

        try:
            async with self.store.session() as session, session.begin():
                files = FileRepository(session)
                checksums = ChecksumStore(session)

                file_id = await files.upsert(
                    source,
                    record.path,
                    meta=meta,
                    raw_content=record.content,
                    checksum=checksum,
                    token_count=file_tokens,
                    internal_metadata=internal_metadata,
                )
                await files.replace_sections(file_id, processed.sections, vectors, token_counts)

                current = await checksums.get_checksums(source.project_id, source.id)
                current[record.path] = checksum
                await checksums.set_checksums(source.project_id, source.id, current)
        except Exception as e:
            # The transaction rolled back: the previous version of the file stays.
            logger.error("file_write_error", source_id=source.id, path=record.path, error=str(e))
            return IngestionError(path=record.path, message=f"Unable to save file: {e}")

        stats.files_written += 1
        stats.sections_written += len(processed.sections)
        stats.tokens_used += file_tokens
        INGESTION_FILES.labels(source_type=source.type, status="written").inc()
        logger.debug(
            "file_ingested",
            source_id=source.id,
            path=record.path,
            sections=len(processed.sections),
            tokens=file_tokens,
        )
        return None

    async def _embed_sections(
        self, sections: list[FileSectionData]
    ) -> tuple[list[list[float]], list[int]]:
        """Embed section texts in batches bounded by size and token count."""
        vectors: list[list[float]] = []
        token_counts: list[int] = []

        for batch in self._batches([section.content for section in sections]):
            result = await self.embedder.embed(batch)
            vectors.extend(result.vectors)
            token_counts.extend(result.token_counts or [self.embedder.count_tokens(t) for t in batch])

        return vectors, token_counts

    def _batches(self, texts: list[str]) -> list[list[str]]:
        batch_size = self.settings.embedding_batch_size
        max_tokens = self.settings.embedding_max_batch_tokens

        batches: list[list[str]] = []
        current: list[str] = []
        current_tokens = 0
        for text in texts:
            tokens = self.embedder.count_tokens(text)
            if current and (len(current) >= batch_size or current_tokens + tokens > max_tokens):
                batches.append(current)
                current, current_tokens = [], 0
            current.append(text)
            current_tokens += tokens
        if current:
            batches.append(current)
        return batches

    async def _delete_paths(self, source: Source, paths: set[str]) -> None:
        async with self.store.session() as session, session.begin():
            checksums = ChecksumStore(session)
            await FileRepository(session).delete_by_paths(source.id, paths)

            current = await checksums.get_checksums(source.project_id, source.id)
            for path in paths:
                current.pop(path, None)
            await checksums.set_checksums(source.project_id, source.id, current)

        logger.info("files_deleted", source_id=source.id, count=len(paths))

    async def _record_usage(self, source: Source, tokens: int) -> None:
        async with self.store.session() as session, session.begin():
            team_id = await TeamRepository(session).get_team_id_for_project(source.project_id)
            if team_id is None:
                return
            await UsageRepository(session).record(
                team_id,
                source.project_id,
                "embedding",
                tokens,
                model=self.embedder.model or None,
            )


async def _aiter(records: AsyncIterable[ContentRecord] | Iterable[ContentRecord]):
    if hasattr(records, "__aiter__"):
        async for record in records:
            yield record
    else:
        for record in records:
            yield record


async def _call(should_continue: ShouldContinue) -> bool:
    result = should_continue()
    if inspect.isawaitable(result):
        result = await result
    return bool(result)
