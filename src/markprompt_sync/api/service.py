"""Services behind the retrieval and training endpoints: rate limits, tier gates, quotas."""

import time

import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import (
    AccessDeniedError,
    NotFoundError,
    QuotaExceededError,
    RateLimitExceededError,
)
from markprompt_sync.ingestion.pipeline import IngestionPipeline
from markprompt_sync.limits import tiers
from markprompt_sync.limits.quota import QuotaGate
from markprompt_sync.limits.rate_limit import RateLimitBucket, RateLimiter
from markprompt_sync.models.content import ContentRecord, IngestionError
from markprompt_sync.models.limits import RateLimitKey, RateLimitResult
from markprompt_sync.models.search import SearchHit, SectionMatch
from markprompt_sync.observability.metrics import RETRIEVAL_LATENCY, RETRIEVAL_REQUESTS
from markprompt_sync.retrieval.sections import SectionRetriever
from markprompt_sync.storage import SourceRepository, Store

logger = structlog.get_logger()


def split_origins(value: str) -> frozenset[str]:
    return frozenset(o.strip().rstrip("/") for o in value.split(",") if o.strip())


class RetrievalService:
    """
    Gated access to the retrieval engine.

    Every request is counted against the project's rate limit bucket first;
    a rejected request never reaches the tier gate, the embedder or the
    store. Requests from first-party origins skip the tier gate only.
    """

    def __init__(
        self,
        retriever: SectionRetriever,
        rate_limiter: RateLimiter,
        quota: QuotaGate,
        settings: Settings | None = None,
    ):
        self.retriever = retriever
        self.rate_limiter = rate_limiter
        self.quota = quota
        self.settings = settings or get_settings()
        self.first_party_origins = split_origins(self.settings.first_party_origins)

    def is_first_party(self, origin: str | None) -> bool:
        return bool(origin) and origin.rstrip("/") in self.first_party_origins

    async def match_sections(
        self,
        project_id: str,
        prompt: str,
        threshold: float | None = None,
        count: int | None = None,
        origin: str | None = None,
    ) -> list[SectionMatch]:
        start_time = time.perf_counter()
        await self._check_rate_limit("sections", project_id)

        if not self.is_first_party(origin):
            info = await self.quota.get_project_tier_info(project_id)
            if not tiers.can_access_sections_api(info):
                RETRIEVAL_REQUESTS.labels(endpoint="sections", status="forbidden").inc()
                raise AccessDeniedError(
                    "The sections endpoint is only accessible on Enterprise plans."
                )

        sanitized = prompt.strip().replace("\n", " ")
        matches = await self.retriever.match_sections(project_id, sanitized, threshold, count)

        latency = time.perf_counter() - start_time
        RETRIEVAL_REQUESTS.labels(endpoint="sections", status="success").inc()
        RETRIEVAL_LATENCY.labels(endpoint="sections").observe(latency)
        logger.info(
            "sections_matched",
            project_id=project_id,
            results_count=len(matches),
            latency_ms=round(latency * 1000, 2),
        )
        return matches

    async def search(
        self,
        project_id: str,
        query: str,
        limit: int | None = None,
        origin: str | None = None,
    ) -> list[SearchHit]:
        start_time = time.perf_counter()
        await self._check_rate_limit("search", project_id)

        if not self.is_first_party(origin):
            info = await self.quota.get_project_tier_info(project_id)
            if not tiers.is_at_least_pro(info):
                RETRIEVAL_REQUESTS.labels(endpoint="search", status="forbidden").inc()
                raise AccessDeniedError("The search endpoint is only accessible on the Pro and Enterprise plans.")

        hits = await self.retriever.search(project_id, query, limit)

        latency = time.perf_counter() - start_time
        RETRIEVAL_REQUESTS.labels(endpoint="search", status="success").inc()
        RETRIEVAL_LATENCY.labels(endpoint="search").observe(latency)
        logger.info("search_complete", project_id=project_id, results_count=len(hits))
        return hits

    async def _check_rate_limit(self, bucket: RateLimitBucket, project_id: str) -> RateLimitResult:
        result = await self.rate_limiter.check(bucket, RateLimitKey(type="projectId", value=project_id))
        if not result.success:
            RETRIEVAL_REQUESTS.labels(endpoint=bucket, status="rate_limited").inc()
            raise RateLimitExceededError(result)
        return result


class TrainingService:
    """Upload-style ingestion of single files into a source."""

    def __init__(
        self,
        store: Store,
        pipeline: IngestionPipeline,
        rate_limiter: RateLimiter,
        quota: QuotaGate,
    ):
        self.store = store
        self.pipeline = pipeline
        self.rate_limiter = rate_limiter
        self.quota = quota

    async def train_file(self, source_id: str, record: ContentRecord) -> list[IngestionError]:
        """
        Ingest one uploaded file without pruning the rest of the source.

        Raises:
            NotFoundError: unknown source
            RateLimitExceededError: the project's embeddings bucket is full
            QuotaExceededError: the team's embedding token allowance is spent
        """
        async with self.store.session() as session:
            source = await SourceRepository(session).get(source_id)
        if source is None:
            raise NotFoundError(f"Source {source_id} not found")

        result = await self.rate_limiter.check(
            "embeddings", RateLimitKey(type="projectId", value=source.project_id)
        )
        if not result.success:
            raise RateLimitExceededError(result)

        team_id = await self.quota.get_team_id(source.project_id)
        remaining = (await self.quota.get_allowance(team_id)).embeddings.remaining
        try:
            errors = await self.pipeline.ingest(source, [record], prune=False, remaining_tokens=remaining)
        finally:
            self.quota.embeddings_cache.invalidate(team_id)

        if errors:
            logger.warning("train_file_errors", source_id=source_id, errors=[e.model_dump() for e in errors])

        quota_error = next((e for e in errors if e.is_quota_exceeded), None)
        if quota_error is not None:
            raise QuotaExceededError(quota_error.message)
        return errors
