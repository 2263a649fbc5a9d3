"""Abstract base connector interface for pull-style sources."""

from abc import ABC, abstractmethod
from typing import AsyncIterator

from markprompt_sync.models.content import ContentRecord, IngestionError
from markprompt_sync.models.source import Source


class BaseConnector(ABC):
    """
    Abstract base class for source connectors.

    A fetch is a finite stream of content records. It is not restartable
    mid-stream: a new sync starts a new fetch.
    """

    def __init__(self, source: Source):
        self.source = source
        # Records the connector skipped, surfaced on the sync job log.
        self.errors: list[IngestionError] = []
        # Paths that exist upstream but were not delivered; kept on pruning.
        self.skipped_paths: set[str] = set()

    @property
    def source_id(self) -> str:
        return self.source.id

    @property
    def source_type(self) -> str:
        return self.source.type

    @abstractmethod
    async def fetch(self, since_cursor: str | None = None) -> AsyncIterator[ContentRecord]:
        """
        Fetch content records from this source.

        Args:
            since_cursor: Optional connector-specific resume point

        Yields ContentRecord objects.
        """
        pass

    async def __aiter__(self):
        """Allow async iteration over records."""
        async for record in self.fetch():
            yield record
