"""FastAPI application factory."""

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from markprompt_sync import __version__
from markprompt_sync.api.routes import (
    github_router,
    health_router,
    insights_router,
    retrieval_router,
    sync_queues_router,
    syncs_router,
)
from markprompt_sync.api.schemas import API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED
from markprompt_sync.api.service import RetrievalService, TrainingService
from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import (
    ApiError,
    ConnectorError,
    InvalidSyncTransition,
    MarkpromptError,
    NotFoundError,
    QuotaExceededError,
    RateLimitExceededError,
    StoreAccessError,
    UnsupportedSourceError,
)
from markprompt_sync.ingestion.connectors import NangoClient
from markprompt_sync.ingestion.embeddings import Embedder, get_embedder
from markprompt_sync.ingestion.pipeline import IngestionPipeline
from markprompt_sync.limits.quota import QuotaGate
from markprompt_sync.limits.rate_limit import RateLimiter, build_rate_limiter
from markprompt_sync.observability import configure_logging
from markprompt_sync.retrieval import SectionRetriever
from markprompt_sync.storage import Store
from markprompt_sync.sync.queue import SyncQueue
from markprompt_sync.sync.runner import SyncRunner
from markprompt_sync.sync.tasks import drain

logger = structlog.get_logger()

SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the elevated store and every service on ``app.state``. Pieces
    handed to ``create_app`` are used as-is and not closed on shutdown.
    """
    state = app.state
    settings: Settings = state.settings

    owns_store = state.store is None
    if owns_store:
        state.store = Store.from_settings(settings, elevated=True)
    await state.store.create_all()

    owns_rate_limiter = state.rate_limiter is None
    if owns_rate_limiter:
        state.rate_limiter = build_rate_limiter(settings)
    if state.embedder is None:
        state.embedder = get_embedder(settings)

    owns_http_client = state.http_client is None
    if owns_http_client:
        state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    store = state.store
    state.quota = QuotaGate(store, settings)
    state.sync_queue = SyncQueue(store)
    state.pipeline = IngestionPipeline(store, state.embedder, settings)
    state.retriever = SectionRetriever(store, state.embedder, settings)
    state.sync_runner = SyncRunner(
        store,
        state.sync_queue,
        state.pipeline,
        state.quota,
        settings,
        http_client=state.http_client,
        nango_client=state.nango_client or NangoClient(settings, client=state.http_client),
    )
    state.retrieval_service = RetrievalService(state.retriever, state.rate_limiter, state.quota, settings)
    state.training_service = TrainingService(store, state.pipeline, state.rate_limiter, state.quota)

    logger.info("app_started", embedder=state.embedder.name, elevated=store.elevated)

    yield

    await drain(timeout=SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
    if owns_http_client:
        await state.http_client.aclose()
    if owns_rate_limiter:
        await state.rate_limiter.close()
    if owns_store:
        await store.dispose()
    logger.info("app_stopped")


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP responses."""

    @app.exception_handler(RateLimitExceededError)
    async def rate_limited(request: Request, exc: RateLimitExceededError):
        response = _error(429, exc.message)
        response.headers["Retry-After"] = str(max(exc.result.retry_after_seconds, 1))
        response.headers["X-RateLimit-Limit"] = str(exc.result.limit)
        response.headers["X-RateLimit-Remaining"] = str(exc.result.remaining)
        return response

    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded(request: Request, exc: QuotaExceededError):
        return _error(403, str(exc), name=API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(InvalidSyncTransition)
    async def invalid_transition(request: Request, exc: InvalidSyncTransition):
        return _error(409, str(exc))

    @app.exception_handler(StoreAccessError)
    async def store_access(request: Request, exc: StoreAccessError):
        logger.error("store_access_denied", path=request.url.path, error=str(exc))
        return _error(500, "Internal server error")

    @app.exception_handler(ConnectorError)
    async def connector_error(request: Request, exc: ConnectorError):
        return _error(400, str(exc), upstream_status=exc.status_code)

    @app.exception_handler(UnsupportedSourceError)
    async def unsupported_source(request: Request, exc: UnsupportedSourceError):
        return _error(400, str(exc))

    @app.exception_handler(MarkpromptError)
    async def markprompt_error(request: Request, exc: MarkpromptError):
        return _error(400, str(exc))


def create_app(
    settings: Settings | None = None,
    *,
    store: Store | None = None,
    embedder: Embedder | None = None,
    rate_limiter: RateLimiter | None = None,
    http_client: httpx.AsyncClient | None = None,
    nango_client: NangoClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(json=settings.log_json, debug=settings.debug)

    app = FastAPI(
        title="markprompt-sync",
        description="Content sync, checksum-diff ingestion and rate-limited retrieval",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.embedder = embedder
    app.state.rate_limiter = rate_limiter
    app.state.http_client = http_client
    app.state.nango_client = nango_client

    # CORS for frontend
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Register routes
    app.include_router(syncs_router)
    app.include_router(sync_queues_router)
    app.include_router(retrieval_router)
    app.include_router(github_router)
    app.include_router(insights_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        return {
            "name": "markprompt-sync",
            "version": __version__,
            "docs": "/docs",
        }

    return app


# Create app instance for uvicorn
app = create_app()
