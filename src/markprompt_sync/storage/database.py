"""Database setup with SQLAlchemy async support (SQLite for local, Postgres for prod)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy import JSON as SA_JSON
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, relationship

from markprompt_sync.config import Settings
from markprompt_sync.errors import StoreAccessError
from markprompt_sync.utils import utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _json_type():
    """JSONB on Postgres, JSON elsewhere."""
    return SA_JSON().with_variant(PG_JSONB, "postgresql")


class TeamORM(Base):
    """Teams table - plan and billing information."""

    __tablename__ = "teams"

    id = Column(String, primary_key=True)
    slug = Column(String, nullable=True)
    stripe_price_id = Column(String, nullable=True)
    plan_details = Column(_json_type(), nullable=True)
    billing_cycle_start = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    projects = relationship("ProjectORM", back_populates="team", cascade="all, delete-orphan")


class ProjectORM(Base):
    """Projects table - owned by a team, owns sources."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    team = relationship("TeamORM", back_populates="projects")


class SourceORM(Base):
    """Sources table - where files come from."""

    __tablename__ = "sources"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)
    data = Column(_json_type(), nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    files = relationship("FileORM", back_populates="source", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_sources_project", "project_id"),)


class FileORM(Base):
    """Files table - one ingested content unit per (source, path)."""

    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(String, ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String, nullable=False)
    path = Column(String, nullable=False)
    meta = Column(_json_type(), default=dict)
    raw_content = Column(Text, nullable=True)
    checksum = Column(String, nullable=False)
    token_count = Column(Integer, default=0, nullable=False)
    internal_metadata = Column(_json_type(), default=dict)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    source = relationship("SourceORM", back_populates="files")
    sections = relationship("FileSectionORM", back_populates="file", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("source_id", "path", name="uq_files_source_path"),
        Index("idx_files_project", "project_id"),
    )


class FileSectionORM(Base):
    """File sections table - embedded, searchable units."""

    __tablename__ = "file_sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    section_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(_json_type(), nullable=True)
    token_count = Column(Integer, default=0, nullable=False)
    meta = Column(_json_type(), default=dict)

    file = relationship("FileORM", back_populates="sections")

    __table_args__ = (Index("idx_file_sections_file", "file_id", "section_index"),)


class ChecksumORM(Base):
    """Checksum maps - {path: checksum} per (project, source)."""

    __tablename__ = "checksums"

    project_id = Column(String, primary_key=True)
    source_id = Column(String, ForeignKey("sources.id", ondelete="CASCADE"), primary_key=True)
    checksums = Column(_json_type(), nullable=False, default=dict)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class SyncQueueORM(Base):
    """Sync queues table - one row per sync execution of a source."""

    __tablename__ = "sync_queues"

    id = Column(String, primary_key=True)
    source_id = Column(String, ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    logs = Column(_json_type(), nullable=False, default=list)

    __table_args__ = (
        Index("idx_sync_queues_source_created", "source_id", "created_at"),
        # At most one running job per source.
        Index(
            "uq_sync_queues_running_source",
            "source_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )


class QueryStatORM(Base):
    """Query stats table - logged questions, answers and citations."""

    __tablename__ = "query_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    prompt = Column(Text, nullable=True)
    response = Column(Text, nullable=True)
    no_response = Column(Boolean, nullable=True)
    feedback = Column(_json_type(), nullable=True)
    cited_paths = Column(_json_type(), nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_query_stats_project_created", "project_id", "created_at"),)


class UsageEventORM(Base):
    """Usage events table - completion and embedding token usage."""

    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String, nullable=False)
    project_id = Column(String, nullable=False)
    kind = Column(String, nullable=False)  # "completion" | "embedding"
    model = Column(String, nullable=True)
    tokens = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_usage_events_team_kind_created", "team_id", "kind", "created_at"),)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Store:
    """
    Explicitly constructed handle on the persistent store.

    A store built with ``elevated=True`` acts with service-role privileges:
    it may write files, sections, checksum maps and sync queues on behalf of
    any project. Request-scoped handlers that only read receive a plain
    store. The handle is created by the app factory or the CLI and passed
    to the components that need it; there is no module-level engine.
    """

    def __init__(self, database_url: str, *, elevated: bool = False, echo: bool = False):
        self.database_url = database_url
        self.elevated = elevated

        engine_kwargs: dict = {"echo": echo}

        # Pooling options should NOT be forced on SQLite.
        if not _is_sqlite(database_url):
            engine_kwargs.update(
                {
                    "pool_pre_ping": True,
                    "pool_size": 5,
                    "max_overflow": 5,
                }
            )

        self.engine = create_async_engine(database_url, **engine_kwargs)
        if _is_sqlite(database_url):
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings, *, elevated: bool = False) -> "Store":
        return cls(settings.database_url, elevated=elevated, echo=settings.debug)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; the caller owns transaction boundaries."""
        async with self.session_factory() as session:
            yield session

    def require_elevated(self, operation: str) -> None:
        if not self.elevated:
            raise StoreAccessError(f"{operation} requires an elevated store handle")

    async def create_all(self) -> None:
        """
        Create tables if they don't exist.

        Production deployments manage the schema with migrations; this is
        used for local databases and tests.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
