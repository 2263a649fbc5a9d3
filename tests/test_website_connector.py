"""Tests for the website connector."""

import json

import httpx
import pytest

from markprompt_sync.errors import ConnectorError
from markprompt_sync.ingestion.connectors.website import WebsiteConnector
from markprompt_sync.models.source import Source, WebsiteSourceData

from conftest import make_settings

PAGE_URL = "https://example.com/docs"
FETCHER_URL = "https://fetcher.example.com/fetch"


def make_connector(handler, settings, use_custom_page_fetcher=False, allowed=False):
    source = Source(
        id="web-1",
        project_id="project-1",
        data=WebsiteSourceData(url=PAGE_URL, use_custom_page_fetcher=use_custom_page_fetcher),
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebsiteConnector(source, settings, client=client, custom_page_fetcher_allowed=allowed)


async def test_fetches_page_directly(settings):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text="<h1>Docs</h1>")

    connector = make_connector(handler, settings)

    records = [record async for record in connector.fetch()]

    assert len(records) == 1
    assert records[0].path == PAGE_URL
    assert records[0].content == "<h1>Docs</h1>"
    assert records[0].content_type == "html"
    assert requests[0].method == "GET"
    assert str(requests[0].url) == PAGE_URL


async def test_error_body_is_truncated(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="x" * 2000)

    connector = make_connector(handler, settings)

    with pytest.raises(ConnectorError) as exc_info:
        await connector.fetch_page(PAGE_URL)

    assert exc_info.value.status_code == 500
    assert str(exc_info.value) == "x" * 500


async def test_transport_error_becomes_connector_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    connector = make_connector(handler, settings)

    with pytest.raises(ConnectorError):
        await connector.fetch_page(PAGE_URL)


async def test_custom_page_fetcher_when_allowed(tmp_path):
    settings = make_settings(
        tmp_path,
        custom_page_fetch_service_url=FETCHER_URL,
        custom_page_fetch_token="fetch-token",
    )
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"content": "<p>Rendered</p>"})

    connector = make_connector(handler, settings, use_custom_page_fetcher=True, allowed=True)

    assert await connector.fetch_page(PAGE_URL) == "<p>Rendered</p>"
    assert requests[0].method == "POST"
    assert str(requests[0].url) == FETCHER_URL
    assert requests[0].headers["Authorization"] == "Bearer fetch-token"
    assert json.loads(requests[0].content) == {"url": PAGE_URL}


@pytest.mark.parametrize(
    ("configured", "use_custom_page_fetcher", "allowed"),
    [
        (True, True, False),
        (True, False, True),
        (False, True, True),
    ],
)
async def test_direct_fetch_unless_fetcher_fully_enabled(
    tmp_path, configured, use_custom_page_fetcher, allowed
):
    overrides = {"custom_page_fetch_service_url": FETCHER_URL} if configured else {}
    settings = make_settings(tmp_path, **overrides)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text="plain")

    connector = make_connector(handler, settings, use_custom_page_fetcher, allowed)

    assert await connector.fetch_page(PAGE_URL) == "plain"
    assert requests[0].method == "GET"
    assert str(requests[0].url) == PAGE_URL
