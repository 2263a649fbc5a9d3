"""Models package."""

from markprompt_sync.models.content import (
    ContentRecord,
    File,
    FileSection,
    FileSectionData,
    IngestionError,
    ProcessedFile,
)
from markprompt_sync.models.limits import (
    Allowance,
    AllowanceAndUsage,
    PlanDetails,
    RateLimitKey,
    RateLimitResult,
    TeamTierInfo,
    Tier,
    TierDetails,
)
from markprompt_sync.models.search import ReferenceCount, SearchHit, SectionMatch
from markprompt_sync.models.source import (
    ApiUploadSourceData,
    FileUploadSourceData,
    GitHubSourceData,
    MotifSourceData,
    NangoSourceData,
    Source,
    SourceData,
    WebsiteSourceData,
)
from markprompt_sync.models.sync import (
    SyncLogEntry,
    SyncQueueJob,
    SyncQueueOverview,
    SyncStatus,
)

__all__ = [
    "Allowance",
    "AllowanceAndUsage",
    "ApiUploadSourceData",
    "ContentRecord",
    "File",
    "FileSection",
    "FileSectionData",
    "FileUploadSourceData",
    "GitHubSourceData",
    "IngestionError",
    "MotifSourceData",
    "NangoSourceData",
    "PlanDetails",
    "ProcessedFile",
    "RateLimitKey",
    "RateLimitResult",
    "ReferenceCount",
    "SearchHit",
    "SectionMatch",
    "Source",
    "SourceData",
    "SyncLogEntry",
    "SyncQueueJob",
    "SyncQueueOverview",
    "SyncStatus",
    "TeamTierInfo",
    "Tier",
    "TierDetails",
    "WebsiteSourceData",
]
