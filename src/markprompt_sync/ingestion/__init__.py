"""Ingestion package."""

from markprompt_sync.ingestion.connectors import BaseConnector, connector_for_source
from markprompt_sync.ingestion.embeddings import (
    Embedder,
    EmbeddingResult,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    get_embedder,
)
from markprompt_sync.ingestion.pipeline import IngestionPipeline, IngestResult, IngestStats
from markprompt_sync.ingestion.processor import ContentProcessor

__all__ = [
    "BaseConnector",
    "ContentProcessor",
    "Embedder",
    "EmbeddingResult",
    "IngestResult",
    "IngestStats",
    "IngestionPipeline",
    "OpenAIEmbedder",
    "SentenceTransformerEmbedder",
    "connector_for_source",
    "get_embedder",
]
