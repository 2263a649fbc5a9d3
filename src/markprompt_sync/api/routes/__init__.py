"""Routes package."""

from markprompt_sync.api.routes.github import router as github_router
from markprompt_sync.api.routes.health import router as health_router
from markprompt_sync.api.routes.insights import router as insights_router
from markprompt_sync.api.routes.retrieval import router as retrieval_router
from markprompt_sync.api.routes.sync_queues import router as sync_queues_router
from markprompt_sync.api.routes.syncs import router as syncs_router

__all__ = [
    "github_router",
    "health_router",
    "insights_router",
    "retrieval_router",
    "sync_queues_router",
    "syncs_router",
]
