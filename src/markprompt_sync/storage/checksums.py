"""Checksum Store: one ``{path: checksum}`` map per (project, source)."""

import hashlib

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from markprompt_sync.storage.database import ChecksumORM
from markprompt_sync.utils import utcnow


def compute_checksum(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ChecksumStore:
    """
    Reads and fully replaces checksum maps.

    There is no partial-update method. The map is written in the caller's
    transaction, next to the file writes that produced it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_checksums(self, project_id: str, source_id: str) -> dict[str, str]:
        result = await self.session.execute(
            select(ChecksumORM.checksums).where(
                ChecksumORM.project_id == project_id,
                ChecksumORM.source_id == source_id,
            )
        )
        checksums = result.scalar_one_or_none()
        return dict(checksums) if checksums else {}

    async def set_checksums(
        self, project_id: str, source_id: str, checksums: dict[str, str]
    ) -> None:
        orm = await self.session.get(ChecksumORM, (project_id, source_id))
        if orm is None:
            self.session.add(
                ChecksumORM(
                    project_id=project_id,
                    source_id=source_id,
                    checksums=dict(checksums),
                )
            )
        else:
            # Reassign so the JSON column is flagged dirty.
            orm.checksums = dict(checksums)
            orm.updated_at = utcnow()
        await self.session.flush()
