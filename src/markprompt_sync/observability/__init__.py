"""Observability package."""

from markprompt_sync.observability.logging import configure_logging
from markprompt_sync.observability.metrics import (
    CACHE_HITS,
    CACHE_MISSES,
    EMBEDDING_REQUESTS,
    EMBEDDING_TOKENS,
    INGESTION_FILES,
    INGESTION_LATENCY,
    RATE_LIMITED,
    RETRIEVAL_LATENCY,
    RETRIEVAL_REQUESTS,
    SYNC_JOBS,
    SYNC_LATENCY,
    get_metrics,
)

__all__ = [
    "CACHE_HITS",
    "CACHE_MISSES",
    "EMBEDDING_REQUESTS",
    "EMBEDDING_TOKENS",
    "INGESTION_FILES",
    "INGESTION_LATENCY",
    "RATE_LIMITED",
    "RETRIEVAL_LATENCY",
    "RETRIEVAL_REQUESTS",
    "SYNC_JOBS",
    "SYNC_LATENCY",
    "configure_logging",
    "get_metrics",
]
