"""Storage package."""

from markprompt_sync.storage.checksums import ChecksumStore, compute_checksum
from markprompt_sync.storage.database import (
    Base,
    ChecksumORM,
    FileORM,
    FileSectionORM,
    ProjectORM,
    QueryStatORM,
    SourceORM,
    Store,
    SyncQueueORM,
    TeamORM,
    UsageEventORM,
)
from markprompt_sync.storage.repositories import (
    FileRepository,
    QueryStatRepository,
    SourceRepository,
    TeamRepository,
    UsageRepository,
)

__all__ = [
    "Base",
    "ChecksumORM",
    "ChecksumStore",
    "FileORM",
    "FileRepository",
    "FileSectionORM",
    "ProjectORM",
    "QueryStatORM",
    "QueryStatRepository",
    "SourceORM",
    "SourceRepository",
    "Store",
    "SyncQueueORM",
    "TeamORM",
    "TeamRepository",
    "UsageEventORM",
    "UsageRepository",
    "compute_checksum",
]
