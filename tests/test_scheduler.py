"""Tests for picking the next source to sync."""

import uuid
from datetime import datetime

from markprompt_sync.models.source import FileUploadSourceData, GitHubSourceData
from markprompt_sync.storage import SyncQueueORM
from markprompt_sync.sync import next_source_to_sync

from conftest import create_source, seed_team

GITHUB = GitHubSourceData(url="https://github.com/acme/docs")


async def add_job(store, source_id: str, status: str, created_at: datetime, ended_at=None) -> None:
    async with store.session() as session, session.begin():
        session.add(
            SyncQueueORM(
                id=str(uuid.uuid4()),
                source_id=source_id,
                status=status,
                created_at=created_at,
                ended_at=ended_at,
                logs=[],
            )
        )


async def test_nothing_to_sync(store, project_id):
    assert await next_source_to_sync(store) is None

    await create_source(store, data=FileUploadSourceData(), project_id=project_id)

    assert await next_source_to_sync(store) is None


async def test_never_synced_sources_come_first(store, project_id):
    await create_source(store, source_id="synced", project_id=project_id, created_at=datetime(2023, 1, 1))
    await create_source(store, data=GITHUB, source_id="fresh", project_id=project_id, created_at=datetime(2024, 1, 1))
    await add_job(store, "synced", "succeeded", datetime(2024, 2, 1), datetime(2024, 2, 1, 0, 5))

    assert (await next_source_to_sync(store)).id == "fresh"


async def test_longest_idle_source_wins(store, project_id):
    await create_source(store, source_id="recent", project_id=project_id)
    await create_source(store, data=GITHUB, source_id="stale", project_id=project_id)
    await add_job(store, "recent", "succeeded", datetime(2024, 3, 1), datetime(2024, 3, 1, 0, 1))
    await add_job(store, "stale", "failed", datetime(2024, 1, 1), datetime(2024, 1, 1, 0, 1))

    assert (await next_source_to_sync(store)).id == "stale"


async def test_creation_order_breaks_ties(store, project_id):
    await create_source(store, source_id="b-newer", project_id=project_id, created_at=datetime(2024, 2, 1))
    await create_source(store, source_id="a-older", project_id=project_id, created_at=datetime(2024, 1, 1))

    assert (await next_source_to_sync(store)).id == "a-older"


async def test_queued_source_is_skipped(store, project_id):
    await create_source(store, source_id="queued", project_id=project_id, created_at=datetime(2023, 1, 1))
    await create_source(store, source_id="idle", project_id=project_id, created_at=datetime(2024, 1, 1))
    await add_job(store, "queued", "queued", datetime(2024, 2, 1))

    assert (await next_source_to_sync(store)).id == "idle"


async def test_projects_with_a_running_job_are_skipped(store, project_id):
    other_project = await seed_team(store, team_id="team-2", project_id="project-2")
    await create_source(store, source_id="busy", project_id=project_id, created_at=datetime(2023, 1, 1))
    await create_source(store, source_id="sibling", project_id=project_id, created_at=datetime(2023, 1, 2))
    await create_source(store, source_id="elsewhere", project_id=other_project, created_at=datetime(2024, 1, 1))
    await add_job(store, "busy", "running", datetime(2024, 2, 1))

    assert (await next_source_to_sync(store)).id == "elsewhere"


async def test_only_the_latest_job_counts(store, project_id):
    await create_source(store, source_id="retried", project_id=project_id)
    await add_job(store, "retried", "queued", datetime(2024, 1, 1))
    await add_job(store, "retried", "succeeded", datetime(2024, 2, 1), datetime(2024, 2, 1, 0, 1))

    assert (await next_source_to_sync(store)).id == "retried"
