"""Source models: one configured content origin per project."""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from markprompt_sync.utils import utcnow


class GitHubSourceData(BaseModel):
    """A GitHub repository, fetched as a zip archive."""

    type: Literal["github"] = "github"
    url: str
    branch: str | None = None
    include_globs: list[str] = Field(default_factory=lambda: ["**/*"])
    exclude_globs: list[str] = Field(default_factory=list)


class WebsiteSourceData(BaseModel):
    """A single web page."""

    type: Literal["website"] = "website"
    url: str
    use_custom_page_fetcher: bool = False


class FileUploadSourceData(BaseModel):
    type: Literal["file-upload"] = "file-upload"


class ApiUploadSourceData(BaseModel):
    type: Literal["api-upload"] = "api-upload"


class MotifSourceData(BaseModel):
    type: Literal["motif"] = "motif"
    project_domain: str | None = None


class NangoSourceData(BaseModel):
    """A source backed by a Nango-hosted sync."""

    type: Literal["nango"] = "nango"
    integration_id: str
    connection_id: str
    model: str = "NangoFile"

    @property
    def sync_id(self) -> str:
        # Sync ids and integration ids are identical.
        return self.integration_id


SourceData = Annotated[
    Union[
        GitHubSourceData,
        WebsiteSourceData,
        FileUploadSourceData,
        ApiUploadSourceData,
        MotifSourceData,
        NangoSourceData,
    ],
    Field(discriminator="type"),
]

SourceType = Literal["github", "website", "file-upload", "api-upload", "motif", "nango"]

SOURCE_DATA_ADAPTER: TypeAdapter[SourceData] = TypeAdapter(SourceData)

# Source types whose content is pulled by a connector.
SYNCABLE_SOURCE_TYPES: tuple[str, ...] = ("github", "website", "nango")


class Source(BaseModel):
    """A configured content origin attached to a project."""

    id: str
    project_id: str
    data: SourceData
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def type(self) -> SourceType:
        return self.data.type

    @property
    def is_syncable(self) -> bool:
        return self.data.type in SYNCABLE_SOURCE_TYPES
