"""Connectors package."""

import httpx

from markprompt_sync.config import Settings
from markprompt_sync.errors import UnsupportedSourceError
from markprompt_sync.ingestion.connectors.base import BaseConnector
from markprompt_sync.ingestion.connectors.github import (
    ArchivePayload,
    GitHubArchiveConnector,
    cap_payload,
    parse_github_url,
)
from markprompt_sync.ingestion.connectors.nango import (
    NangoClient,
    NangoConnector,
    NangoSyncStatus,
    SyncAction,
    action_for_status,
)
from markprompt_sync.ingestion.connectors.website import WebsiteConnector
from markprompt_sync.models.source import (
    ApiUploadSourceData,
    FileUploadSourceData,
    GitHubSourceData,
    MotifSourceData,
    NangoSourceData,
    Source,
    WebsiteSourceData,
)


def connector_for_source(
    source: Source,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    nango_client: NangoClient | None = None,
    custom_page_fetcher_allowed: bool = False,
) -> BaseConnector:
    """
    Build the pull connector for a source.

    Raises:
        UnsupportedSourceError: for push-only sources (uploads, motif)
    """
    match source.data:
        case GitHubSourceData():
            return GitHubArchiveConnector(source, settings, client=http_client)
        case WebsiteSourceData():
            return WebsiteConnector(
                source,
                settings,
                client=http_client,
                custom_page_fetcher_allowed=custom_page_fetcher_allowed,
            )
        case NangoSourceData():
            return NangoConnector(source, settings, client=nango_client)
        case FileUploadSourceData() | ApiUploadSourceData() | MotifSourceData():
            raise UnsupportedSourceError(
                f"Source type {source.type!r} has no connector; its content is uploaded"
            )
        case _:
            raise UnsupportedSourceError(f"Unknown source type {source.type!r}")


__all__ = [
    "ArchivePayload",
    "BaseConnector",
    "GitHubArchiveConnector",
    "NangoClient",
    "NangoConnector",
    "NangoSyncStatus",
    "SyncAction",
    "WebsiteConnector",
    "action_for_status",
    "cap_payload",
    "connector_for_source",
    "parse_github_url",
]
