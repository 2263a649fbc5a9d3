"""Quota/tier gate: per-team tier info and usage allowances, cached."""

from datetime import datetime
from typing import Callable

import structlog

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import NotFoundError
from markprompt_sync.limits import tiers
from markprompt_sync.limits.cache import TTLCache
from markprompt_sync.models.limits import Allowance, AllowanceAndUsage, TeamTierInfo
from markprompt_sync.storage import Store, TeamRepository, UsageRepository
from markprompt_sync.utils import utcnow

logger = structlog.get_logger()


def add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 into a non-leap year
        return value.replace(year=value.year + years, day=28)


def usage_window(
    usage_period: str,
    billing_cycle_start: datetime | None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """
    The ``[start, end)`` window completions usage is counted in.

    Yearly plans with a billing cycle start count from that start for a
    year; everything else counts the current calendar month.
    """
    if usage_period == "yearly" and billing_cycle_start is not None:
        return billing_cycle_start, add_years(billing_cycle_start, 1)

    now = now or utcnow()
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class QuotaGate:
    """
    Resolves what a team may do and how much it has used.

    Tier info and both usage figures are cached per team in TTL caches;
    values may be stale up to their TTL.
    """

    def __init__(
        self,
        store: Store,
        settings: Settings | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.store = store
        settings = settings or get_settings()

        cache_kwargs: dict = {"max_size": settings.cache_max_size}
        if clock is not None:
            cache_kwargs["clock"] = clock

        self.tier_cache = TTLCache("tier_info", settings.tier_cache_ttl_seconds, **cache_kwargs)
        self.completions_cache = TTLCache(
            "completions_usage", settings.completions_cache_ttl_seconds, **cache_kwargs
        )
        self.embeddings_cache = TTLCache(
            "embeddings_usage", settings.embeddings_cache_ttl_seconds, **cache_kwargs
        )

    async def get_team_id(self, project_id: str) -> str:
        async with self.store.session() as session:
            team_id = await TeamRepository(session).get_team_id_for_project(project_id)
        if team_id is None:
            raise NotFoundError(f"Project {project_id} not found")
        return team_id

    async def get_tier_info(self, team_id: str) -> TeamTierInfo:
        cached = self.tier_cache.get(team_id)
        if cached is not None:
            return cached

        async with self.store.session() as session:
            info = await TeamRepository(session).get_tier_info(team_id)
        if info is None:
            raise NotFoundError(f"Team {team_id} not found")

        self.tier_cache.set(team_id, info)
        return info

    async def get_project_tier_info(self, project_id: str) -> TeamTierInfo:
        return await self.get_tier_info(await self.get_team_id(project_id))

    async def get_allowance(self, team_id: str) -> Allowance:
        """Allowances and usage of a team for its current billing window."""
        info = await self.get_tier_info(team_id)
        usage_period = tiers.get_usage_period(info)

        async with self.store.session() as session:
            team = await TeamRepository(session).get(team_id)
            billing_cycle_start = team.billing_cycle_start if team else None
        period_start, period_end = usage_window(usage_period, billing_cycle_start)

        completions_used = self.completions_cache.get(team_id)
        if completions_used is None:
            async with self.store.session() as session:
                completions_used = await UsageRepository(session).count_completions(
                    team_id, period_start, period_end
                )
            self.completions_cache.set(team_id, completions_used)

        embeddings_used = self.embeddings_cache.get(team_id)
        if embeddings_used is None:
            async with self.store.session() as session:
                embeddings_used = await UsageRepository(session).embedding_tokens_used(team_id)
            self.embeddings_cache.set(team_id, embeddings_used)

        return Allowance(
            team_id=team_id,
            usage_period=usage_period,
            billing_cycle_start=billing_cycle_start,
            period_start=period_start,
            period_end=period_end,
            completions=AllowanceAndUsage(
                allowance=tiers.get_completions_allowance(info),
                used=completions_used,
            ),
            embeddings=AllowanceAndUsage(
                allowance=tiers.get_embedding_tokens_allowance(info),
                used=embeddings_used,
            ),
        )

    async def remaining_embedding_tokens(self, project_id: str) -> int:
        """Embedding tokens the project's team may still spend."""
        team_id = await self.get_team_id(project_id)
        allowance = await self.get_allowance(team_id)
        logger.debug(
            "embedding_allowance",
            team_id=team_id,
            allowance=allowance.embeddings.allowance,
            used=allowance.embeddings.used,
        )
        return allowance.embeddings.remaining

    def invalidate(self, team_id: str | None = None) -> None:
        """Drop cached values for one team, or for all teams."""
        for cache in (self.tier_cache, self.completions_cache, self.embeddings_cache):
            cache.invalidate(team_id)
