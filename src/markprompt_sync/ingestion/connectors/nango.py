"""Nango connector: pages through the records of a hosted sync."""

from enum import Enum
from typing import AsyncIterator

import httpx
import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import ConnectorError
from markprompt_sync.ingestion.connectors.base import BaseConnector
from markprompt_sync.models.content import ContentRecord, IngestionError
from markprompt_sync.models.source import NangoSourceData, Source
from markprompt_sync.utils import truncate

logger = structlog.get_logger()


class NangoSyncStatus(str, Enum):
    INITIAL = "INITIAL"
    PAUSED = "PAUSED"
    RUNNING = "RUNNING"
    ERROR = "ERROR"
    STOPPED = "STOPPED"
    SUCCESS = "SUCCESS"


class SyncAction(str, Enum):
    NONE = "none"
    START = "start"
    TRIGGER = "trigger"


# Total over NangoSyncStatus: a paused or stopped schedule must be started
# again, a running sync is left alone, anything else gets a one-off run.
SYNC_STATUS_ACTIONS: dict[NangoSyncStatus, SyncAction] = {
    NangoSyncStatus.INITIAL: SyncAction.TRIGGER,
    NangoSyncStatus.PAUSED: SyncAction.START,
    NangoSyncStatus.RUNNING: SyncAction.NONE,
    NangoSyncStatus.ERROR: SyncAction.TRIGGER,
    NangoSyncStatus.STOPPED: SyncAction.START,
    NangoSyncStatus.SUCCESS: SyncAction.TRIGGER,
}


def action_for_status(status: NangoSyncStatus | None) -> SyncAction:
    """Trigger action for a sync status; an unknown sync is triggered."""
    if status is None:
        return SyncAction.TRIGGER
    return SYNC_STATUS_ACTIONS[status]


class NangoClient:
    """Minimal async client for the Nango REST API."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        settings = settings or get_settings()
        self.host = settings.nango_host.rstrip("/")
        self.secret_key = settings.nango_secret_key
        self.timeout = settings.http_timeout_seconds
        self._client = client

    def _get_headers(self, integration_id: str | None = None, connection_id: str | None = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret_key:
            headers["Authorization"] = f"Bearer {self.secret_key}"
        if integration_id:
            headers["Provider-Config-Key"] = integration_id
        if connection_id:
            headers["Connection-Id"] = connection_id
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.host}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ConnectorError(f"Nango request failed: {e}") from e

        if not response.is_success:
            logger.warning("nango_request_failed", method=method, path=path, status_code=response.status_code)
            raise ConnectorError(truncate(response.text, 500), status_code=response.status_code)
        return response

    async def get_records(
        self,
        integration_id: str,
        connection_id: str,
        model: str,
        offset: int = 0,
        limit: int = 100,
        sort_by: str = "updatedAt",
    ) -> list[dict]:
        response = await self._request(
            "GET",
            "/sync/records",
            params={"model": model, "offset": offset, "limit": limit, "sort_by": sort_by},
            headers=self._get_headers(integration_id, connection_id),
        )
        body = response.json()
        if isinstance(body, dict):
            return body.get("records", [])
        return body

    async def trigger_sync(self, integration_id: str, connection_id: str, syncs: list[str]) -> None:
        await self._request(
            "POST",
            "/sync/trigger",
            json={"provider_config_key": integration_id, "connection_id": connection_id, "syncs": syncs},
            headers=self._get_headers(),
        )

    async def start_sync(self, integration_id: str, connection_id: str, syncs: list[str]) -> None:
        await self._request(
            "POST",
            "/sync/start",
            json={"provider_config_key": integration_id, "connection_id": connection_id, "syncs": syncs},
            headers=self._get_headers(),
        )

    async def sync_status(
        self, integration_id: str, connection_id: str, sync_id: str
    ) -> NangoSyncStatus | None:
        response = await self._request(
            "GET",
            "/sync/status",
            params={
                "provider_config_key": integration_id,
                "connection_id": connection_id,
                "syncs": sync_id,
            },
            headers=self._get_headers(),
        )
        for sync in response.json().get("syncs", []):
            if sync.get("name") == sync_id:
                try:
                    return NangoSyncStatus(sync.get("status"))
                except ValueError:
                    logger.warning("nango_unknown_sync_status", sync_id=sync_id, status=sync.get("status"))
                    return None
        return None

    async def delete_connection(self, integration_id: str, connection_id: str) -> None:
        await self._request(
            "DELETE",
            f"/connection/{connection_id}",
            params={"provider_config_key": integration_id},
            headers=self._get_headers(),
        )

    async def ensure_syncing(self, data: NangoSourceData) -> SyncAction:
        """Start, trigger or leave alone the upstream sync depending on its status."""
        status = await self.sync_status(data.integration_id, data.connection_id, data.sync_id)
        action = action_for_status(status)

        if action is SyncAction.START:
            await self.start_sync(data.integration_id, data.connection_id, [data.sync_id])
        elif action is SyncAction.TRIGGER:
            await self.trigger_sync(data.integration_id, data.connection_id, [data.sync_id])

        logger.info(
            "nango_sync_requested",
            connection_id=data.connection_id,
            status=status.value if status else None,
            action=action.value,
        )
        return action


class NangoConnector(BaseConnector):
    """
    Connector for Nango-hosted syncs.

    Maps each ``NangoFile`` record into a content record. Records carrying
    an upstream ``error`` are skipped and reported in ``errors``; their paths
    go to ``skipped_paths`` so pruning keeps the stored copy. Records Nango
    marks as deleted are skipped so pruning removes them.
    """

    def __init__(
        self,
        source: Source,
        settings: Settings | None = None,
        client: NangoClient | None = None,
    ):
        super().__init__(source)
        if not isinstance(source.data, NangoSourceData):
            raise ConnectorError(f"Source {source.id} is not a Nango source")
        self.data: NangoSourceData = source.data
        settings = settings or get_settings()
        self.page_size = settings.nango_page_size
        self.client = client or NangoClient(settings)

    async def fetch(self, since_cursor: str | None = None) -> AsyncIterator[ContentRecord]:
        """Page through records; ``since_cursor`` is a start offset."""
        offset = int(since_cursor) if since_cursor else 0

        while True:
            records = await self.client.get_records(
                self.data.integration_id,
                self.data.connection_id,
                self.data.model,
                offset=offset,
                limit=self.page_size,
            )

            for record in records:
                content_record = self._to_content_record(record)
                if content_record is not None:
                    yield content_record

            if len(records) < self.page_size:
                break
            offset += len(records)

    def _to_content_record(self, record: dict) -> ContentRecord | None:
        path = record.get("path") or record.get("id") or ""

        if record.get("error"):
            logger.warning("nango_record_error", source_id=self.source_id, path=path, error=record["error"])
            self.errors.append(IngestionError(path=path, message=str(record["error"])))
            self.skipped_paths.add(path)
            return None

        if (record.get("_nango_metadata") or {}).get("deleted_at"):
            return None

        metadata = {"title": record.get("title"), **(record.get("meta") or {})}
        if record.get("id"):
            metadata["_internal"] = {"nango_record_id": record["id"]}

        return ContentRecord(
            path=path,
            content=record.get("content") or "",
            content_type=record.get("contentType"),
            metadata=metadata,
        )
