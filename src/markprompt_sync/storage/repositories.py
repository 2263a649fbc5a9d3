"""Repository pattern for database operations.

Repositories never commit: callers own the transaction, so several writes
(file row, its sections and the checksum map) can land atomically.
"""

from collections import Counter
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from markprompt_sync.models.content import File, FileSection, FileSectionData
from markprompt_sync.models.limits import PlanDetails, TeamTierInfo
from markprompt_sync.models.search import ReferenceCount
from markprompt_sync.models.source import SOURCE_DATA_ADAPTER, Source
from markprompt_sync.storage.database import (
    FileORM,
    FileSectionORM,
    ProjectORM,
    QueryStatORM,
    SourceORM,
    TeamORM,
    UsageEventORM,
)
from markprompt_sync.utils import utcnow


class SourceRepository:
    """Repository for source CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, source_id: str) -> Source | None:
        """Get a source by ID."""
        orm = await self.session.get(SourceORM, source_id)
        return self._to_model(orm) if orm else None

    async def get_by_connection_id(self, connection_id: str) -> Source | None:
        """Get the Nango-backed source owning a connection."""
        result = await self.session.execute(
            select(SourceORM)
            .where(
                SourceORM.type == "nango",
                SourceORM.data["connection_id"].as_string() == connection_id,
            )
            .order_by(SourceORM.created_at)
            .limit(1)
        )
        orm = result.scalar_one_or_none()
        return self._to_model(orm) if orm else None

    async def list_for_project(self, project_id: str) -> list[Source]:
        result = await self.session.execute(
            select(SourceORM)
            .where(SourceORM.project_id == project_id)
            .order_by(SourceORM.created_at)
        )
        return [self._to_model(orm) for orm in result.scalars()]

    async def list_by_types(self, types: tuple[str, ...]) -> list[Source]:
        result = await self.session.execute(
            select(SourceORM).where(SourceORM.type.in_(types)).order_by(SourceORM.created_at)
        )
        return [self._to_model(orm) for orm in result.scalars()]

    async def create(self, source: Source) -> Source:
        """Create a new source."""
        self.session.add(
            SourceORM(
                id=source.id,
                project_id=source.project_id,
                type=source.type,
                data=source.data.model_dump(),
                created_at=source.created_at,
            )
        )
        await self.session.flush()
        return source

    async def delete(self, source_id: str) -> bool:
        """Delete a source, its files, sections, jobs and checksum map."""
        orm = await self.session.get(SourceORM, source_id)
        if orm is None:
            return False
        await self.session.delete(orm)
        await self.session.flush()
        return True

    def _to_model(self, orm: SourceORM) -> Source:
        data = dict(orm.data or {})
        data.setdefault("type", orm.type)
        return Source(
            id=orm.id,
            project_id=orm.project_id,
            data=SOURCE_DATA_ADAPTER.validate_python(data),
            created_at=orm.created_at,
        )


class FileRepository:
    """Repository for file rows and their sections."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_path(self, source_id: str, path: str) -> File | None:
        result = await self.session.execute(
            select(FileORM).where(FileORM.source_id == source_id, FileORM.path == path)
        )
        orm = result.scalar_one_or_none()
        return self._to_model(orm) if orm else None

    async def list_paths(self, source_id: str) -> set[str]:
        result = await self.session.execute(
            select(FileORM.path).where(FileORM.source_id == source_id)
        )
        return set(result.scalars())

    async def list_for_source(self, source_id: str) -> list[File]:
        result = await self.session.execute(
            select(FileORM).where(FileORM.source_id == source_id).order_by(FileORM.path)
        )
        return [self._to_model(orm) for orm in result.scalars()]

    async def upsert(
        self,
        source: Source,
        path: str,
        *,
        meta: dict,
        raw_content: str,
        checksum: str,
        token_count: int,
        internal_metadata: dict | None = None,
    ) -> int:
        """Create or update the file at ``path``; returns its id."""
        result = await self.session.execute(
            select(FileORM).where(FileORM.source_id == source.id, FileORM.path == path)
        )
        orm = result.scalar_one_or_none()

        if orm is None:
            orm = FileORM(
                source_id=source.id,
                project_id=source.project_id,
                path=path,
                meta=meta,
                raw_content=raw_content,
                checksum=checksum,
                token_count=token_count,
                internal_metadata=internal_metadata or {},
            )
            self.session.add(orm)
        else:
            orm.meta = meta
            orm.raw_content = raw_content
            orm.checksum = checksum
            orm.token_count = token_count
            orm.internal_metadata = internal_metadata or {}
            orm.updated_at = utcnow()

        await self.session.flush()
        return orm.id

    async def replace_sections(
        self,
        file_id: int,
        sections: list[FileSectionData],
        embeddings: list[list[float]],
        token_counts: list[int],
    ) -> int:
        """Delete every section of a file, then insert the new ones."""
        await self.session.execute(
            delete(FileSectionORM).where(FileSectionORM.file_id == file_id)
        )
        for index, (section, embedding, tokens) in enumerate(
            zip(sections, embeddings, token_counts, strict=True)
        ):
            meta = {}
            if section.lead_heading:
                meta["lead_heading"] = {"value": section.lead_heading, "depth": section.heading_depth}
            if section.heading_path:
                meta["heading_path"] = section.heading_path
            self.session.add(
                FileSectionORM(
                    file_id=file_id,
                    section_index=index,
                    content=section.content,
                    embedding=embedding,
                    token_count=tokens,
                    meta=meta,
                )
            )
        await self.session.flush()
        return len(sections)

    async def get_sections(self, file_id: int) -> list[FileSection]:
        result = await self.session.execute(
            select(FileSectionORM)
            .where(FileSectionORM.file_id == file_id)
            .order_by(FileSectionORM.section_index)
        )
        return [
            FileSection(
                id=orm.id,
                file_id=orm.file_id,
                section_index=orm.section_index,
                content=orm.content,
                embedding=orm.embedding,
                token_count=orm.token_count,
                meta=orm.meta or {},
            )
            for orm in result.scalars()
        ]

    async def delete_by_paths(self, source_id: str, paths: set[str]) -> int:
        """Delete files (and their sections) at the given paths."""
        if not paths:
            return 0
        file_ids = select(FileORM.id).where(
            FileORM.source_id == source_id, FileORM.path.in_(paths)
        )
        await self.session.execute(
            delete(FileSectionORM).where(FileSectionORM.file_id.in_(file_ids))
        )
        result = await self.session.execute(
            delete(FileORM).where(FileORM.source_id == source_id, FileORM.path.in_(paths))
        )
        return result.rowcount

    async def count_sections(self, source_id: str) -> int:
        result = await self.session.execute(
            select(func.count(FileSectionORM.id))
            .join(FileORM, FileORM.id == FileSectionORM.file_id)
            .where(FileORM.source_id == source_id)
        )
        return result.scalar() or 0

    def _to_model(self, orm: FileORM) -> File:
        return File(
            id=orm.id,
            source_id=orm.source_id,
            project_id=orm.project_id,
            path=orm.path,
            meta=orm.meta or {},
            raw_content=orm.raw_content,
            checksum=orm.checksum,
            token_count=orm.token_count,
            internal_metadata=orm.internal_metadata or {},
            updated_at=orm.updated_at,
        )


class TeamRepository:
    """Repository for team plan data."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, team_id: str) -> TeamORM | None:
        return await self.session.get(TeamORM, team_id)

    async def get_team_id_for_project(self, project_id: str) -> str | None:
        result = await self.session.execute(
            select(ProjectORM.team_id).where(ProjectORM.id == project_id)
        )
        return result.scalar_one_or_none()

    async def get_tier_info(self, team_id: str) -> TeamTierInfo | None:
        team = await self.get(team_id)
        if team is None:
            return None
        return TeamTierInfo(
            stripe_price_id=team.stripe_price_id,
            plan_details=PlanDetails.model_validate(team.plan_details) if team.plan_details else None,
        )


class UsageRepository:
    """Repository for usage events and usage aggregates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        team_id: str,
        project_id: str,
        kind: str,
        tokens: int,
        model: str | None = None,
    ) -> None:
        self.session.add(
            UsageEventORM(
                team_id=team_id,
                project_id=project_id,
                kind=kind,
                tokens=tokens,
                model=model,
            )
        )
        await self.session.flush()

    async def count_completions(self, team_id: str, start: datetime, end: datetime) -> int:
        result = await self.session.execute(
            select(func.count(UsageEventORM.id)).where(
                UsageEventORM.team_id == team_id,
                UsageEventORM.kind == "completion",
                UsageEventORM.created_at >= start,
                UsageEventORM.created_at < end,
            )
        )
        return result.scalar() or 0

    async def embedding_tokens_used(self, team_id: str) -> int:
        """Accumulated token count of all files owned by the team."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(FileORM.token_count), 0))
            .join(ProjectORM, ProjectORM.id == FileORM.project_id)
            .where(ProjectORM.team_id == team_id)
        )
        return int(result.scalar() or 0)


class QueryStatRepository:
    """Repository for logged questions and their citations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        project_id: str,
        prompt: str,
        response: str | None = None,
        cited_paths: list[str] | None = None,
        no_response: bool | None = None,
    ) -> int:
        orm = QueryStatORM(
            project_id=project_id,
            prompt=prompt,
            response=response,
            cited_paths=cited_paths or [],
            no_response=no_response,
        )
        self.session.add(orm)
        await self.session.flush()
        return orm.id

    async def top_references(
        self,
        project_id: str,
        limit: int = 10,
        since: datetime | None = None,
    ) -> list[ReferenceCount]:
        """Most cited paths, most cited first, ties by path."""
        query = select(QueryStatORM.cited_paths).where(QueryStatORM.project_id == project_id)
        if since is not None:
            query = query.where(QueryStatORM.created_at >= since)
        result = await self.session.execute(query)

        counts: Counter[str] = Counter()
        for paths in result.scalars():
            counts.update(paths or [])

        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [ReferenceCount(path=path, count=count) for path, count in ranked[:limit]]
