"""Fire-and-forget side calls with tracked tasks and logged failures."""

import asyncio
from typing import Any, Coroutine

import structlog

logger = structlog.get_logger()

# Strong references to pending tasks; the event loop only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
    """
    Schedule ``coro`` without awaiting it.

    The task is referenced until it finishes. A failure is logged with the
    task name, never silently dropped.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.info("background_task_cancelled", task=task.get_name())
        return
    error = task.exception()
    if error is not None:
        logger.error("background_task_failed", task=task.get_name(), error=str(error))


def pending_tasks() -> set[asyncio.Task]:
    return set(_background_tasks)


async def drain(timeout: float | None = None) -> None:
    """Wait for every pending background task (shutdown and tests)."""
    tasks = pending_tasks()
    if tasks:
        await asyncio.wait(tasks, timeout=timeout)
