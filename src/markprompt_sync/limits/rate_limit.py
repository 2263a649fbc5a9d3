"""Sliding-window rate limiting per bucket and key."""

import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Callable, Literal

import redis.asyncio as aioredis
import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.models.limits import RateLimitKey, RateLimitResult
from markprompt_sync.observability.metrics import RATE_LIMITED

logger = structlog.get_logger()

RateLimitBucket = Literal["embeddings", "sections", "search"]


@dataclass(frozen=True)
class Limit:
    requests: int
    window_seconds: int


def parse_limit(value: str) -> Limit:
    """Parse ``"<requests>/<window seconds>"``, e.g. ``"100/60"``."""
    try:
        requests, window = value.split("/", 1)
        limit = Limit(requests=int(requests), window_seconds=int(window))
    except ValueError as e:
        raise ValueError(f"Invalid rate limit {value!r}, expected '<requests>/<seconds>'") from e
    if limit.requests <= 0 or limit.window_seconds <= 0:
        raise ValueError(f"Invalid rate limit {value!r}, both parts must be positive")
    return limit


def limits_from_settings(settings: Settings) -> dict[str, Limit]:
    return {
        "embeddings": parse_limit(settings.rate_limit_embeddings),
        "sections": parse_limit(settings.rate_limit_sections),
        "search": parse_limit(settings.rate_limit_search),
    }


def _result(limit: Limit, used: int, retry_after_seconds: float) -> RateLimitResult:
    success = used < limit.requests
    if success:
        return RateLimitResult(success=True, limit=limit.requests, remaining=limit.requests - used - 1)

    retry_after_seconds = max(retry_after_seconds, 0)
    hours, rest = divmod(retry_after_seconds, 3600)
    minutes = math.ceil(rest / 60)
    if minutes == 60:
        hours, minutes = hours + 1, 0
    # Never advertise "retry in 0 minutes" to a rejected caller.
    if hours == 0 and minutes == 0:
        minutes = 1
    return RateLimitResult(
        success=False,
        limit=limit.requests,
        remaining=0,
        retry_after_hours=int(hours),
        retry_after_minutes=int(minutes),
    )


class RateLimiter(ABC):
    """Checks and counts one request against a bucket's sliding window."""

    def __init__(self, limits: dict[str, Limit]):
        self.limits = limits

    async def check(self, bucket: RateLimitBucket, key: RateLimitKey) -> RateLimitResult:
        """
        Count a request and tell whether it is allowed.

        Rejected requests are not counted against the window.
        """
        limit = self.limits[bucket]
        result = await self._check(f"ratelimit:{bucket}:{key}", limit)
        if not result.success:
            RATE_LIMITED.labels(bucket=bucket).inc()
            logger.info(
                "rate_limited",
                bucket=bucket,
                key=str(key),
                retry_after_seconds=result.retry_after_seconds,
            )
        return result

    @abstractmethod
    async def _check(self, name: str, limit: Limit) -> RateLimitResult:
        pass

    async def close(self) -> None:
        pass


class InMemoryRateLimiter(RateLimiter):
    """In-process sliding log, for development and tests."""

    def __init__(self, limits: dict[str, Limit], clock: Callable[[], float] = time.monotonic):
        super().__init__(limits)
        self._clock = clock
        self._logs: dict[str, deque[float]] = {}

    async def _check(self, name: str, limit: Limit) -> RateLimitResult:
        now = self._clock()
        log = self._logs.setdefault(name, deque())
        while log and log[0] <= now - limit.window_seconds:
            log.popleft()

        retry_after = log[0] + limit.window_seconds - now if log else 0.0
        result = _result(limit, len(log), retry_after)
        if result.success:
            log.append(now)
        return result


class RedisRateLimiter(RateLimiter):
    """Sliding window on a Redis sorted set of request timestamps."""

    def __init__(self, limits: dict[str, Limit], client: aioredis.Redis):
        super().__init__(limits)
        self.client = client

    @classmethod
    def from_url(cls, limits: dict[str, Limit], redis_url: str) -> "RedisRateLimiter":
        return cls(limits, aioredis.from_url(redis_url, decode_responses=True))

    async def _check(self, name: str, limit: Limit) -> RateLimitResult:
        """
        Add the request first, then count it in the same transaction.

        Concurrent requests each see every request added before them, so at
        most ``limit.requests`` of them are admitted. A rejected request
        removes its own entry again.
        """
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(name, 0, now - limit.window_seconds)
            pipe.zadd(name, {member: now})
            pipe.zcard(name)
            pipe.zrange(name, 0, 0, withscores=True)
            pipe.expire(name, limit.window_seconds)
            _, _, count, oldest, _ = await pipe.execute()

        retry_after = oldest[0][1] + limit.window_seconds - now if oldest else 0.0
        result = _result(limit, count - 1, retry_after)
        if not result.success:
            await self.client.zrem(name, member)
        return result

    async def close(self) -> None:
        await self.client.aclose()


def build_rate_limiter(settings: Settings | None = None) -> RateLimiter:
    """Build the configured backend."""
    settings = settings or get_settings()
    limits = limits_from_settings(settings)

    if settings.rate_limit_backend == "redis":
        logger.info("rate_limiter_backend", backend="redis", url=settings.redis_url)
        return RedisRateLimiter.from_url(limits, settings.redis_url)
    if settings.rate_limit_backend == "memory":
        logger.info("rate_limiter_backend", backend="memory")
        return InMemoryRateLimiter(limits)
    raise ValueError(f"Unknown rate limit backend: {settings.rate_limit_backend}")
