"""Tests for the sync queue state machine."""

import asyncio

import pytest

from markprompt_sync.errors import InvalidSyncTransition, NotFoundError, StoreAccessError
from markprompt_sync.models.sync import SyncStatus
from markprompt_sync.storage import Store
from markprompt_sync.sync import TRANSITIONS, SyncQueue, check_transition, drain

from conftest import create_source


@pytest.fixture
def queue(store) -> SyncQueue:
    return SyncQueue(store)


async def test_get_or_create_running_is_idempotent(queue, source):
    first = await queue.get_or_create_running(source.id)
    second = await queue.get_or_create_running(source.id)

    assert first == second
    job = await queue.get(first)
    assert job.status is SyncStatus.RUNNING
    assert job.logs == []


async def test_concurrent_get_or_create_running_converges(queue, source):
    ids = await asyncio.gather(*(queue.get_or_create_running(source.id) for _ in range(5)))

    assert len(set(ids)) == 1
    assert await queue.running_job_id(source.id) == ids[0]


async def test_get_or_create_running_for_missing_source(queue, project_id):
    with pytest.raises(NotFoundError):
        await queue.get_or_create_running("no-such-source")


async def test_writes_need_the_elevated_store(settings, source):
    plain = Store.from_settings(settings)
    try:
        with pytest.raises(StoreAccessError):
            await SyncQueue(plain).get_or_create_running(source.id)
    finally:
        await plain.dispose()


async def test_job_lifecycle(queue, source):
    job_id = await queue.enqueue(source.id)
    assert (await queue.get(job_id)).status is SyncStatus.QUEUED

    started = await queue.start(job_id)
    assert started.status is SyncStatus.RUNNING
    assert await queue.is_running(job_id)

    ended = await queue.mark_ended(job_id, SyncStatus.SUCCEEDED)
    assert ended.status is SyncStatus.SUCCEEDED
    assert ended.ended_at is not None
    assert not await queue.is_running(job_id)


async def test_mark_ended_on_terminal_job_is_a_no_op(queue, source):
    job_id = await queue.get_or_create_running(source.id)
    first = await queue.mark_ended(job_id, "failed")

    again = await queue.mark_ended(job_id, "succeeded")

    assert again.status is SyncStatus.FAILED
    assert again.ended_at == first.ended_at


async def test_mark_ended_rejects_queued_jobs(queue, source):
    job_id = await queue.enqueue(source.id)

    with pytest.raises(InvalidSyncTransition):
        await queue.mark_ended(job_id, SyncStatus.SUCCEEDED)


async def test_mark_ended_rejects_non_terminal_status(queue, source):
    job_id = await queue.get_or_create_running(source.id)

    with pytest.raises(InvalidSyncTransition):
        await queue.mark_ended(job_id, SyncStatus.QUEUED)


async def test_start_fails_while_another_job_runs(queue, source):
    await queue.get_or_create_running(source.id)
    queued = await queue.enqueue(source.id)

    with pytest.raises(InvalidSyncTransition):
        await queue.start(queued)

    assert (await queue.get(queued)).status is SyncStatus.QUEUED


async def test_mark_ended_on_missing_job(queue):
    with pytest.raises(NotFoundError):
        await queue.mark_ended("no-such-job", SyncStatus.SUCCEEDED)


def test_transitions_cover_every_status():
    assert set(TRANSITIONS) == set(SyncStatus)
    for status in SyncStatus:
        if status.is_terminal:
            assert TRANSITIONS[status] == frozenset()

    check_transition(SyncStatus.RUNNING, SyncStatus.CANCELED)
    with pytest.raises(InvalidSyncTransition):
        check_transition(SyncStatus.SUCCEEDED, SyncStatus.RUNNING)


async def test_append_log_keeps_order(queue, source):
    job_id = await queue.get_or_create_running(source.id)

    await queue.append_log(job_id, "one")
    await queue.append_log(job_id, "two", "warn")
    await queue.append_log(job_id, "three", "error")

    logs = await queue.logs(job_id)
    assert [(entry.level, entry.message) for entry in logs] == [
        ("info", "one"),
        ("warn", "two"),
        ("error", "three"),
    ]
    assert logs[0].timestamp <= logs[1].timestamp <= logs[2].timestamp


async def test_append_log_on_missing_job_does_not_raise(queue):
    await queue.append_log("no-such-job", "lost")


async def test_cancel_records_upstream_failure(queue, source):
    job_id = await queue.get_or_create_running(source.id)
    calls = []

    async def upstream():
        calls.append(job_id)
        raise RuntimeError("connection refused")

    canceled = await queue.cancel(job_id, upstream)
    assert canceled.status is SyncStatus.CANCELED

    await drain(timeout=5)

    job = await queue.get(job_id)
    assert calls == [job_id]
    assert job.status is SyncStatus.CANCELED
    assert job.logs[0].message == "Sync canceled."
    assert job.logs[-1].level == "error"
    assert "connection refused" in job.logs[-1].message


async def test_cancel_of_terminal_job_is_a_no_op(queue, source):
    job_id = await queue.get_or_create_running(source.id)
    await queue.mark_ended(job_id, SyncStatus.SUCCEEDED)

    job = await queue.cancel(job_id)

    assert job.status is SyncStatus.SUCCEEDED
    assert job.logs == []


async def test_latest_and_overview(queue, store, project_id, source):
    other = await create_source(store, source_id="source-2", project_id=project_id)

    first = await queue.get_or_create_running(source.id)
    await queue.mark_ended(first, SyncStatus.FAILED)
    second = await queue.get_or_create_running(source.id)
    other_job = await queue.get_or_create_running(other.id)

    assert (await queue.latest(source.id)).id == second
    assert await queue.latest("no-such-source") is None

    overview = await queue.overview(project_id)
    assert {job.id for job in overview} == {first, second, other_job}

    latest = await queue.latest_for_project(project_id)
    assert {job.id for job in latest} == {second, other_job}
