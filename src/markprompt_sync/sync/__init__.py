"""Sync package."""

from markprompt_sync.sync.queue import TRANSITIONS, SyncQueue, check_transition
from markprompt_sync.sync.runner import SyncRunner
from markprompt_sync.sync.scheduler import next_source_to_sync
from markprompt_sync.sync.tasks import drain, fire_and_forget, pending_tasks

__all__ = [
    "SyncQueue",
    "SyncRunner",
    "TRANSITIONS",
    "check_transition",
    "drain",
    "fire_and_forget",
    "next_source_to_sync",
    "pending_tasks",
]
