"""GitHub archive fetch route."""

import httpx
from fastapi import APIRouter, Depends, Response

from markprompt_sync.api.dependencies import get_http_client, get_settings_dep
from markprompt_sync.api.schemas import GitHubFetchRequestSchema
from markprompt_sync.config import Settings
from markprompt_sync.ingestion.connectors import GitHubArchiveConnector
from markprompt_sync.models.source import GitHubSourceData, Source

router = APIRouter(prefix="/github", tags=["github"])


@router.post("/fetch")
async def fetch_repository(
    body: GitHubFetchRequestSchema,
    settings: Settings = Depends(get_settings_dep),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Download a repository and return its files as a zlib-compressed JSON payload.

    The payload is capped below the configured size; a capped payload
    carries ``"capped": true`` and the ``X-Payload-Capped`` header.
    """
    globs = body.model_dump(include={"include_globs", "exclude_globs"}, exclude_none=True)
    data = GitHubSourceData(url=body.url, branch=body.branch, **globs)

    source = Source(id="github-fetch", project_id="", data=data)
    payload = await GitHubArchiveConnector(
        source, settings, client=client, offset=body.offset
    ).fetch_payload()

    return Response(
        content=payload.data,
        media_type="application/octet-stream",
        headers={
            "X-Payload-Capped": "true" if payload.capped else "false",
            "X-Payload-File-Count": str(payload.file_count),
        },
    )
