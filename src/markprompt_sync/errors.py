"""Error taxonomy shared by the sync, ingestion and retrieval layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from markprompt_sync.models.limits import RateLimitResult


class MarkpromptError(Exception):
    """Base class for all errors raised by this package."""


class ApiError(MarkpromptError):
    """An error that maps directly onto an HTTP status code."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class AccessDeniedError(ApiError):
    """The team's plan does not include the requested capability."""

    def __init__(self, message: str):
        super().__init__(401, message)


class RateLimitExceededError(ApiError):
    """A rate limit bucket rejected the request."""

    def __init__(self, result: RateLimitResult, message: str = "Too many requests"):
        super().__init__(429, message)
        self.result = result


class QuotaExceededError(MarkpromptError):
    """The embedding backend or the plan's token allowance is exhausted."""


class EmbeddingError(MarkpromptError):
    """A transient or unexpected failure of the embedding backend."""


class ConnectorError(MarkpromptError):
    """An upstream fetch failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnsupportedSourceError(MarkpromptError):
    """The source type has no pull connector (content is pushed instead)."""


class NotFoundError(MarkpromptError):
    """A referenced entity does not exist."""


class SyncQueueNotFound(NotFoundError):
    pass


class InvalidSyncTransition(MarkpromptError):
    """A sync job was asked to move between two states that are not linked."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition sync job from {current} to {target}")
        self.current = current
        self.target = target


class StoreAccessError(MarkpromptError):
    """An operation needs the elevated store handle."""
