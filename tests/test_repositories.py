"""Tests for repository lookups."""

from markprompt_sync.models.source import NangoSourceData
from markprompt_sync.storage import SourceRepository

from conftest import create_source


def nango(connection_id: str) -> NangoSourceData:
    return NangoSourceData(integration_id="notion-pages", connection_id=connection_id)


async def test_source_by_connection_id(store, project_id):
    await create_source(store, project_id=project_id)
    await create_source(store, data=nango("conn-1"), source_id="nango-1", project_id=project_id)
    await create_source(store, data=nango("conn-2"), source_id="nango-2", project_id=project_id)

    async with store.session() as session:
        repo = SourceRepository(session)
        found = await repo.get_by_connection_id("conn-2")
        missing = await repo.get_by_connection_id("conn-3")

    assert found.id == "nango-2"
    assert found.data == nango("conn-2")
    assert missing is None
