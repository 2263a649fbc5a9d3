"""Content sync, checksum-diff ingestion and rate-limited retrieval."""

__version__ = "0.1.0"
