"""GitHub connector: downloads a repository archive and extracts its files."""

import io
import json
import re
import zipfile
import zlib
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import ConnectorError
from markprompt_sync.ingestion.connectors.base import BaseConnector
from markprompt_sync.models.content import ContentRecord
from markprompt_sync.models.source import GitHubSourceData, Source
from markprompt_sync.utils import should_include_path

logger = structlog.get_logger()

GITHUB_URL_PATTERN = re.compile(r"^https://github\.com/([a-zA-Z0-9\-_.]+)/([a-zA-Z0-9\-_.]+)")

DEFAULT_BRANCH = "main"
FALLBACK_BRANCH = "master"


@dataclass
class ArchivePayload:
    """A compressed ``{"files": [...]}`` payload, ready to ship as-is."""

    data: bytes
    capped: bool
    file_count: int


def parse_github_url(url: str) -> tuple[str, str]:
    """Return (owner, repo) for a https://github.com/<owner>/<repo> URL."""
    match = GITHUB_URL_PATTERN.match(url)
    if not match:
        raise ConnectorError(f"Invalid GitHub URL: {url}")
    repo = match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return match.group(1), repo


def compress_payload(files: list[dict], capped: bool = False) -> bytes:
    """zlib-compress the JSON payload the fetch endpoint returns."""
    payload: dict = {"files": files}
    if capped:
        payload["capped"] = True
    return zlib.compress(json.dumps(payload).encode("utf-8"))


def cap_payload(files: list[dict], max_bytes: int) -> tuple[list[dict], bool, bytes]:
    """
    Keep the compressed payload under ``max_bytes``.

    If everything fits it is returned unchanged. Otherwise whole files are
    added in order until adding the next one would reach the cap; that
    file and all following ones are left out and the payload is flagged
    ``capped``.

    Returns:
        (included files, capped flag, compressed payload)
    """
    compressed = compress_payload(files)
    if len(compressed) < max_bytes:
        return files, False, compressed

    included: list[dict] = []
    for file in files:
        included.append(file)
        if len(compress_payload(included, capped=True)) >= max_bytes:
            included.pop()
            break

    return included, True, compress_payload(included, capped=True)


class GitHubArchiveConnector(BaseConnector):
    """
    Connector for GitHub repositories.

    Downloads the zipball of a branch. When no branch is configured,
    ``main`` is tried first and ``master`` on failure; an explicitly
    configured branch never falls back.
    """

    def __init__(
        self,
        source: Source,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        offset: int = 0,
    ):
        super().__init__(source)
        if not isinstance(source.data, GitHubSourceData):
            raise ConnectorError(f"Source {source.id} is not a GitHub source")
        self.data: GitHubSourceData = source.data
        self.settings = settings or get_settings()
        self.offset = offset
        self._client = client

    def _get_headers(self) -> dict:
        """Get HTTP headers for the GitHub API."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "markprompt-sync",
        }
        if self.settings.github_token:
            headers["Authorization"] = f"Bearer {self.settings.github_token}"
        return headers

    async def fetch(self, since_cursor: str | None = None) -> AsyncIterator[ContentRecord]:
        """Fetch the repository files; ``since_cursor`` is a start offset."""
        offset = int(since_cursor) if since_cursor else self.offset
        archive = await self.download_archive()
        for record in self.extract_files(archive, offset):
            yield record

    async def fetch_payload(self) -> ArchivePayload:
        """Fetch the files as a compressed, possibly capped, payload."""
        archive = await self.download_archive()
        records = self.extract_files(archive, self.offset)
        files = [{"path": record.path, "content": record.content} for record in records]

        included, capped, data = cap_payload(files, self.settings.github_payload_max_bytes)
        logger.info(
            "github_payload_built",
            source_id=self.source_id,
            files=len(files),
            included=len(included),
            payload_bytes=len(data),
            capped=capped,
        )
        return ArchivePayload(data=data, capped=capped, file_count=len(included))

    async def download_archive(self) -> bytes:
        owner, repo = parse_github_url(self.data.url)
        branch = self.data.branch or DEFAULT_BRANCH

        if self._client is not None:
            response = await self._download(self._client, owner, repo, branch)
        else:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
                response = await self._download(client, owner, repo, branch)

        if response is None or response.status_code != 200:
            raise ConnectorError(
                "Failed to download repository. Make sure the \"main\" or \"master\" "
                "branch is accessible, or specify a branch explicitly.",
                status_code=404,
            )

        logger.info("github_archive_fetched", owner=owner, repo=repo, bytes=len(response.content))
        return response.content

    async def _download(
        self, client: httpx.AsyncClient, owner: str, repo: str, branch: str
    ) -> httpx.Response | None:
        response = await self._get_zipball(client, owner, repo, branch)

        # Only an implicit default branch falls back to master.
        if (response is None or response.status_code != 200) and self.data.branch is None:
            logger.info("github_branch_fallback", owner=owner, repo=repo, branch=FALLBACK_BRANCH)
            response = await self._get_zipball(client, owner, repo, FALLBACK_BRANCH)

        return response

    async def _get_zipball(
        self, client: httpx.AsyncClient, owner: str, repo: str, ref: str
    ) -> httpx.Response | None:
        url = f"{self.settings.github_api_base}/repos/{owner}/{repo}/zipball/{ref}"
        try:
            return await client.get(url, headers=self._get_headers(), follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("github_archive_fetch_error", url=url, ref=ref, error=str(e))
            return None

    def extract_files(self, archive: bytes, offset: int = 0) -> list[ContentRecord]:
        """
        Extract supported files from a GitHub zipball.

        Entries are sorted so offsets are stable between downloads. The
        archive's top-level ``<repo>-<sha>`` folder is stripped and paths
        get a leading slash.
        """
        try:
            zf = zipfile.ZipFile(io.BytesIO(archive))
        except zipfile.BadZipFile as e:
            raise ConnectorError(f"Invalid repository archive: {e}") from e

        with zf:
            entries = sorted(info.filename for info in zf.infolist() if not info.is_dir())
            included = [
                name
                for name in entries
                if should_include_path(
                    _strip_archive_root(name),
                    self.data.include_globs,
                    self.data.exclude_globs,
                )
            ]

            records = []
            for name in included[offset:]:
                content = zf.read(name).decode("utf-8", errors="replace")
                records.append(ContentRecord(path=_strip_archive_root(name), content=content))
            return records


def _strip_archive_root(name: str) -> str:
    path = "/".join(name.split("/")[1:])
    return path if path.startswith("/") else f"/{path}"
