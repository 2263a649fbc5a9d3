"""Tests for the sliding-window rate limiter."""

import asyncio

import pytest

from markprompt_sync.limits.rate_limit import (
    InMemoryRateLimiter,
    Limit,
    RedisRateLimiter,
    build_rate_limiter,
    limits_from_settings,
    parse_limit,
)
from markprompt_sync.models.limits import RateLimitKey

from conftest import make_settings

PROJECT = RateLimitKey(type="projectId", value="project-1")
OTHER_PROJECT = RateLimitKey(type="projectId", value="project-2")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def limiter_for(limit: str, clock: FakeClock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter({"sections": parse_limit(limit)}, clock=clock)


def test_parse_limit():
    assert parse_limit("100/60") == Limit(requests=100, window_seconds=60)

    for invalid in ("100", "a/60", "0/60", "10/0", "-1/60"):
        with pytest.raises(ValueError):
            parse_limit(invalid)


def test_limits_from_settings(settings):
    limits = limits_from_settings(settings)

    assert set(limits) == {"embeddings", "sections", "search"}
    assert limits["sections"] == Limit(requests=100, window_seconds=60)


async def test_allows_up_to_the_limit_then_rejects():
    clock = FakeClock()
    limiter = limiter_for("2/60", clock)

    first = await limiter.check("sections", PROJECT)
    clock.advance(1)
    second = await limiter.check("sections", PROJECT)
    clock.advance(1)
    third = await limiter.check("sections", PROJECT)

    assert (first.success, first.remaining) == (True, 1)
    assert (second.success, second.remaining) == (True, 0)
    assert not third.success
    assert third.limit == 2
    assert third.remaining == 0
    assert (third.retry_after_hours, third.retry_after_minutes) == (0, 1)


async def test_window_slides():
    clock = FakeClock()
    limiter = limiter_for("2/60", clock)
    await limiter.check("sections", PROJECT)
    clock.advance(30)
    await limiter.check("sections", PROJECT)

    clock.advance(29)
    assert not (await limiter.check("sections", PROJECT)).success

    clock.advance(1)
    assert (await limiter.check("sections", PROJECT)).success
    assert not (await limiter.check("sections", PROJECT)).success


async def test_rejected_requests_are_not_counted():
    clock = FakeClock()
    limiter = limiter_for("1/10", clock)

    assert (await limiter.check("sections", PROJECT)).success
    clock.advance(5)
    assert not (await limiter.check("sections", PROJECT)).success
    clock.advance(5)
    assert (await limiter.check("sections", PROJECT)).success


async def test_keys_are_independent():
    limiter = limiter_for("1/60", FakeClock())

    assert (await limiter.check("sections", PROJECT)).success
    assert (await limiter.check("sections", OTHER_PROJECT)).success
    assert not (await limiter.check("sections", PROJECT)).success


@pytest.mark.parametrize(
    ("window", "expected"),
    [
        (7200, (2, 0)),
        (5400, (1, 30)),
        (3599, (1, 0)),
        (90, (0, 2)),
    ],
)
async def test_retry_after_in_hours_and_minutes(window, expected):
    limiter = limiter_for(f"1/{window}", FakeClock())
    await limiter.check("sections", PROJECT)

    result = await limiter.check("sections", PROJECT)

    assert (result.retry_after_hours, result.retry_after_minutes) == expected
    assert result.retry_after_seconds == expected[0] * 3600 + expected[1] * 60


async def test_build_rate_limiter(tmp_path):
    assert isinstance(build_rate_limiter(make_settings(tmp_path)), InMemoryRateLimiter)

    redis_limiter = build_rate_limiter(make_settings(tmp_path, rate_limit_backend="redis"))
    assert isinstance(redis_limiter, RedisRateLimiter)
    await redis_limiter.close()

    with pytest.raises(ValueError):
        build_rate_limiter(make_settings(tmp_path, rate_limit_backend="carrier-pigeon"))


class FakeRedis:
    """The sorted-set commands the limiter uses; a pipeline applies all at once."""

    def __init__(self):
        self.sets: dict[str, dict[str, float]] = {}

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def zrem(self, name: str, member: str) -> int:
        await asyncio.sleep(0)
        return 1 if self.sets.get(name, {}).pop(member, None) is not None else 0

    async def aclose(self) -> None:
        pass


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, command):
        return lambda *args, **kwargs: self.commands.append((command, args))

    async def execute(self) -> list:
        # Yield first so concurrent callers interleave between pipelines.
        await asyncio.sleep(0)
        return [getattr(self, f"_{command}")(*args) for command, args in self.commands]

    def _zremrangebyscore(self, name, low, high):
        members = self.redis.sets.setdefault(name, {})
        stale = [m for m, score in members.items() if low <= score <= high]
        for member in stale:
            del members[member]
        return len(stale)

    def _zadd(self, name, mapping):
        self.redis.sets.setdefault(name, {}).update(mapping)
        return len(mapping)

    def _zcard(self, name):
        return len(self.redis.sets.get(name, {}))

    def _zrange(self, name, start, end):
        ordered = sorted(self.redis.sets.get(name, {}).items(), key=lambda item: item[1])
        return ordered[start : end + 1]

    def _expire(self, name, seconds):
        return True


async def test_redis_limiter_admits_up_to_the_limit():
    redis = FakeRedis()
    limiter = RedisRateLimiter({"sections": parse_limit("2/60")}, redis)

    results = [await limiter.check("sections", PROJECT) for _ in range(3)]

    assert [r.success for r in results] == [True, True, False]
    assert [r.remaining for r in results] == [1, 0, 0]
    assert results[2].retry_after_minutes == 1
    # The rejected request left no entry behind.
    assert len(redis.sets["ratelimit:sections:projectId:project-1"]) == 2


async def test_redis_limiter_never_over_admits_concurrent_requests():
    redis = FakeRedis()
    limiter = RedisRateLimiter({"sections": parse_limit("3/60")}, redis)

    results = await asyncio.gather(*(limiter.check("sections", PROJECT) for _ in range(10)))

    assert sum(r.success for r in results) == 3
    assert len(redis.sets["ratelimit:sections:projectId:project-1"]) == 3
