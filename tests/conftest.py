"""Shared fixtures: a temporary SQLite store, seeded teams and a deterministic embedder."""

import pytest

from markprompt_sync.config import Settings
from markprompt_sync.ingestion.embeddings import Embedder, EmbeddingResult
from markprompt_sync.models.source import Source, WebsiteSourceData
from markprompt_sync.storage import (
    ChecksumStore,
    FileRepository,
    ProjectORM,
    SourceRepository,
    Store,
    TeamORM,
)

KEYWORDS = ("deploy", "billing", "search", "auth")

PRO_PRICE_ID = "price_1N0U0ICv3sM26vDes1KHwQ4y"


class FakeEmbedder(Embedder):
    """
    Embeds texts as keyword counts, so similarities are predictable.

    Tokens are whitespace-separated words. ``fail_on`` maps a substring to
    the exception raised when a batch contains it.
    """

    name = "fake"
    model = "fake-embedding"

    def __init__(self):
        self.calls: list[list[str]] = []
        self.fail_on: dict[str, Exception] = {}

    async def embed(self, texts: list[str]) -> EmbeddingResult:
        for marker, error in self.fail_on.items():
            if any(marker in text for text in texts):
                raise error
        self.calls.append(list(texts))
        return EmbeddingResult(
            vectors=[self.vector(text) for text in texts],
            token_counts=[self.count_tokens(text) for text in texts],
        )

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    @staticmethod
    def vector(text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(keyword)) for keyword in KEYWORDS]

    @property
    def embedded_texts(self) -> list[str]:
        return [text for call in self.calls for text in call]


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path}/test.db",
        "min_content_length": 5,
        "api_token": "test-token",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def seed_team(
    store: Store,
    team_id: str = "team-1",
    project_id: str = "project-1",
    stripe_price_id: str | None = None,
    plan_details: dict | None = None,
    billing_cycle_start=None,
) -> str:
    async with store.session() as session, session.begin():
        session.add(
            TeamORM(
                id=team_id,
                slug=team_id,
                stripe_price_id=stripe_price_id,
                plan_details=plan_details,
                billing_cycle_start=billing_cycle_start,
            )
        )
        session.add(ProjectORM(id=project_id, team_id=team_id, name="Docs"))
    return project_id


async def create_source(
    store: Store,
    data=None,
    source_id: str = "source-1",
    project_id: str = "project-1",
    created_at=None,
) -> Source:
    source = Source(
        id=source_id,
        project_id=project_id,
        data=data or WebsiteSourceData(url="https://example.com/docs"),
    )
    if created_at is not None:
        source.created_at = created_at
    async with store.session() as session, session.begin():
        await SourceRepository(session).create(source)
    return source


async def checksum_map(store: Store, source: Source) -> dict[str, str]:
    async with store.session() as session:
        return await ChecksumStore(session).get_checksums(source.project_id, source.id)


async def file_paths(store: Store, source: Source) -> set[str]:
    async with store.session() as session:
        return await FileRepository(session).list_paths(source.id)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
async def store(settings):
    store = Store.from_settings(settings, elevated=True)
    await store.create_all()
    yield store
    await store.dispose()


@pytest.fixture
async def project_id(store) -> str:
    return await seed_team(store)


@pytest.fixture
async def source(store, project_id) -> Source:
    return await create_source(store, project_id=project_id)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
