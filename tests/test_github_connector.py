"""Tests for the GitHub archive connector."""

import io
import json
import secrets
import zipfile
import zlib

import httpx
import pytest

from markprompt_sync.errors import ConnectorError
from markprompt_sync.ingestion.connectors.github import (
    GitHubArchiveConnector,
    cap_payload,
    compress_payload,
    parse_github_url,
)
from markprompt_sync.models.source import GitHubSourceData, Source

ARCHIVE_FILES = {
    "acme-docs-3f2a1b/README.md": "# Acme\n\nRead me first.",
    "acme-docs-3f2a1b/docs/guide.md": "# Guide\n\nStep by step.",
    "acme-docs-3f2a1b/docs/page.html": "<h1>Page</h1><p>Html body</p>",
    "acme-docs-3f2a1b/.github/workflow.md": "# CI",
    "acme-docs-3f2a1b/src/app.py": "print('hi')",
    "acme-docs-3f2a1b/logo.png": "binary",
}


def build_zip(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("acme-docs-3f2a1b/", "")
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


class ZipballHandler:
    """Serves the archive for the given refs and 404 for anything else."""

    def __init__(self, refs: set[str]):
        self.refs = refs
        self.requested: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        ref = request.url.path.rsplit("/", 1)[-1]
        self.requested.append(ref)
        if ref in self.refs:
            return httpx.Response(200, content=build_zip(ARCHIVE_FILES))
        return httpx.Response(404, json={"message": "Not Found"})


def make_connector(handler, settings, **data) -> GitHubArchiveConnector:
    source = Source(
        id="gh-1",
        project_id="project-1",
        data=GitHubSourceData(url="https://github.com/acme/docs", **data),
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubArchiveConnector(source, settings, client=client)


async def collect(connector) -> list:
    return [record async for record in connector.fetch()]


def test_parse_github_url():
    assert parse_github_url("https://github.com/acme/docs") == ("acme", "docs")
    assert parse_github_url("https://github.com/acme/docs.git") == ("acme", "docs")
    assert parse_github_url("https://github.com/acme/docs/tree/main") == ("acme", "docs")
    with pytest.raises(ConnectorError):
        parse_github_url("https://gitlab.com/acme/docs")


async def test_falls_back_to_master(settings):
    handler = ZipballHandler({"master"})
    connector = make_connector(handler, settings)

    records = await collect(connector)

    assert handler.requested == ["main", "master"]
    assert [record.path for record in records] == [
        "/README.md",
        "/docs/guide.md",
        "/docs/page.html",
    ]
    assert records[0].content == "# Acme\n\nRead me first."


async def test_explicit_branch_never_falls_back(settings):
    handler = ZipballHandler({"master"})
    connector = make_connector(handler, settings, branch="develop")

    with pytest.raises(ConnectorError) as exc_info:
        await collect(connector)

    assert handler.requested == ["develop"]
    assert exc_info.value.status_code == 404


async def test_missing_repository(settings):
    handler = ZipballHandler(set())
    connector = make_connector(handler, settings)

    with pytest.raises(ConnectorError):
        await collect(connector)

    assert handler.requested == ["main", "master"]


async def test_exclude_globs(settings):
    connector = make_connector(ZipballHandler({"main"}), settings, exclude_globs=["docs/*.html"])

    records = await collect(connector)

    assert [record.path for record in records] == ["/README.md", "/docs/guide.md"]


async def test_include_globs(settings):
    connector = make_connector(ZipballHandler({"main"}), settings, include_globs=["docs/**"])

    records = await collect(connector)

    assert [record.path for record in records] == ["/docs/guide.md", "/docs/page.html"]


async def test_offset_skips_leading_files(settings):
    connector = make_connector(ZipballHandler({"main"}), settings)
    connector.offset = 1

    records = await collect(connector)

    assert [record.path for record in records] == ["/docs/guide.md", "/docs/page.html"]


def test_invalid_archive(settings):
    connector = make_connector(ZipballHandler(set()), settings)

    with pytest.raises(ConnectorError):
        connector.extract_files(b"not a zip")


def test_cap_payload_returns_everything_that_fits():
    files = [{"path": "/a.md", "content": "small"}]

    included, capped, data = cap_payload(files, 10_000)

    assert included == files
    assert not capped
    assert json.loads(zlib.decompress(data)) == {"files": files}


def test_cap_payload_drops_trailing_files():
    # Random content barely compresses, so each file adds roughly its size.
    files = [{"path": f"/{i}.md", "content": secrets.token_urlsafe(3000)} for i in range(4)]
    max_bytes = len(compress_payload(files[:2], capped=True)) + 100

    included, capped, data = cap_payload(files, max_bytes)

    assert capped
    assert included == files[:2]
    assert len(data) < max_bytes
    payload = json.loads(zlib.decompress(data))
    assert payload["capped"] is True
    assert [file["path"] for file in payload["files"]] == ["/0.md", "/1.md"]


async def test_fetch_payload(settings):
    connector = make_connector(ZipballHandler({"main"}), settings)

    payload = await connector.fetch_payload()

    assert not payload.capped
    assert payload.file_count == 3
    files = json.loads(zlib.decompress(payload.data))["files"]
    assert files[1] == {"path": "/docs/guide.md", "content": "# Guide\n\nStep by step."}
