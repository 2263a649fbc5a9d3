"""Website connector: fetches the raw content of a single page."""

from typing import AsyncIterator

import httpx
import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import ConnectorError
from markprompt_sync.ingestion.connectors.base import BaseConnector
from markprompt_sync.models.content import ContentRecord
from markprompt_sync.models.source import Source, WebsiteSourceData
from markprompt_sync.utils import truncate

logger = structlog.get_logger()

ERROR_BODY_MAX_LENGTH = 500


class WebsiteConnector(BaseConnector):
    """
    Connector for website pages.

    Pages are fetched directly, or through the configured page-rendering
    service when the source asks for it and the team's plan allows it.
    """

    def __init__(
        self,
        source: Source,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        custom_page_fetcher_allowed: bool = False,
    ):
        super().__init__(source)
        if not isinstance(source.data, WebsiteSourceData):
            raise ConnectorError(f"Source {source.id} is not a website source")
        self.data: WebsiteSourceData = source.data
        self.settings = settings or get_settings()
        self.custom_page_fetcher_allowed = custom_page_fetcher_allowed
        self._client = client

    @property
    def use_custom_page_fetcher(self) -> bool:
        return (
            self.data.use_custom_page_fetcher
            and self.custom_page_fetcher_allowed
            and bool(self.settings.custom_page_fetch_service_url)
        )

    async def fetch(self, since_cursor: str | None = None) -> AsyncIterator[ContentRecord]:
        content = await self.fetch_page(self.data.url)
        yield ContentRecord(
            path=self.data.url,
            content=content,
            content_type="html",
            metadata={"url": self.data.url},
        )

    async def fetch_page(self, url: str) -> str:
        """
        Fetch the raw text of a page.

        Raises:
            ConnectorError: carrying the upstream body, truncated to 500 characters
        """
        if self._client is not None:
            return await self._fetch(self._client, url)
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
            return await self._fetch(client, url)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        try:
            if self.use_custom_page_fetcher:
                response = await client.post(
                    self.settings.custom_page_fetch_service_url,
                    json={"url": url},
                    headers={
                        "Authorization": f"Bearer {self.settings.custom_page_fetch_token or ''}",
                        "Content-Type": "application/json",
                    },
                )
            else:
                response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("website_fetch_error", url=url, error=str(e))
            raise ConnectorError(f"Failed to fetch {url}: {e}") from e

        if not response.is_success:
            logger.warning("website_fetch_failed", url=url, status_code=response.status_code)
            raise ConnectorError(
                truncate(response.text, ERROR_BODY_MAX_LENGTH),
                status_code=response.status_code,
            )

        if self.use_custom_page_fetcher:
            return response.json().get("content") or ""
        return response.text
