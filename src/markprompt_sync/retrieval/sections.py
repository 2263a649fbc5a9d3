"""Section retrieval: semantic matching with numpy and lexical containment search."""

import numpy as np
import structlog
from sqlalchemy import func, select

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.ingestion.embeddings import Embedder
from markprompt_sync.models.search import ReferenceCount, SearchHit, SectionMatch
from markprompt_sync.storage import (
    FileORM,
    FileSectionORM,
    QueryStatRepository,
    SourceORM,
    Store,
)

logger = structlog.get_logger()


class SectionRetriever:
    """
    Retrieval over the file sections of one project.

    Similarity is the cosine of the query embedding and each stored section
    embedding, computed with numpy over the candidate sections.
    """

    def __init__(self, store: Store, embedder: Embedder, settings: Settings | None = None):
        self.store = store
        self.embedder = embedder
        self.settings = settings or get_settings()

    async def match_sections(
        self,
        project_id: str,
        prompt: str,
        threshold: float | None = None,
        count: int | None = None,
    ) -> list[SectionMatch]:
        """
        Find the sections most similar to ``prompt``.

        Args:
            project_id: Project whose sections are searched
            prompt: Natural language query
            threshold: Minimum similarity; sections at or below it are dropped
            count: Maximum number of matches, capped at the configured maximum

        Returns:
            Matches by similarity descending, ties by path then section index
        """
        threshold = self.settings.sections_match_threshold if threshold is None else threshold
        count = self.settings.sections_match_count if count is None else count
        count = max(0, min(count, self.settings.sections_match_count_max))

        prompt = prompt.strip()
        if not prompt or count == 0:
            return []

        result = await self.embedder.embed([prompt])
        query = np.asarray(result.vectors[0], dtype=np.float32)

        rows = await self._candidate_rows(project_id, self.settings.sections_min_content_length)
        rows = [row for row in rows if row.embedding and len(row.embedding) == query.shape[0]]
        if not rows:
            return []

        matrix = np.asarray([row.embedding for row in rows], dtype=np.float32)
        scores = _cosine_similarities(matrix, query)

        scored = [(float(score), row) for score, row in zip(scores, rows) if score > threshold]
        scored.sort(key=lambda item: (-item[0], item[1].path, item[1].section_index))

        return [
            SectionMatch(
                section_id=row.id,
                file_id=row.file_id,
                path=row.path,
                title=(row.file_meta or {}).get("title"),
                source_type=row.source_type,
                section_index=row.section_index,
                content=row.content,
                meta=row.meta or {},
                similarity=score,
            )
            for score, row in scored[:count]
        ]

    async def search(self, project_id: str, query: str, limit: int | None = None) -> list[SearchHit]:
        """
        Case-insensitive substring search over section content.

        ``%`` and ``_`` in the query match literally. An empty query
        returns nothing.
        """
        query = query.strip()
        if not query:
            return []

        limit = self.settings.search_default_limit if limit is None else limit
        limit = max(0, min(limit, self.settings.search_max_limit))
        if limit == 0:
            return []

        async with self.store.session() as session:
            result = await session.execute(
                self._section_query(project_id)
                .where(func.lower(FileSectionORM.content).contains(query.lower(), autoescape=True))
                .order_by(FileORM.path, FileSectionORM.section_index)
                .limit(limit)
            )
            rows = result.all()

        return [
            SearchHit(
                section_id=row.id,
                file_id=row.file_id,
                path=row.path,
                title=(row.file_meta or {}).get("title"),
                source_type=row.source_type,
                section_index=row.section_index,
                content=row.content,
                meta=row.meta or {},
            )
            for row in rows
        ]

    async def top_references(self, project_id: str, limit: int = 10) -> list[ReferenceCount]:
        async with self.store.session() as session:
            return await QueryStatRepository(session).top_references(project_id, limit=limit)

    def _section_query(self, project_id: str):
        return (
            select(
                FileSectionORM.id,
                FileSectionORM.file_id,
                FileSectionORM.section_index,
                FileSectionORM.content,
                FileSectionORM.meta,
                FileSectionORM.embedding,
                FileORM.path,
                FileORM.meta.label("file_meta"),
                SourceORM.type.label("source_type"),
            )
            .join(FileORM, FileORM.id == FileSectionORM.file_id)
            .join(SourceORM, SourceORM.id == FileORM.source_id)
            .where(FileORM.project_id == project_id)
        )

    async def _candidate_rows(self, project_id: str, min_content_length: int) -> list:
        async with self.store.session() as session:
            result = await session.execute(
                self._section_query(project_id).where(
                    func.length(FileSectionORM.content) >= min_content_length
                )
            )
            return result.all()


def _cosine_similarities(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    # Zero vectors score 0 instead of NaN.
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
