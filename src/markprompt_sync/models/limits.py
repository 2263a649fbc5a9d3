"""Models for rate limits, plan tiers and usage allowances."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RateLimitKey(BaseModel):
    type: Literal["projectId", "ip", "token"]
    value: str

    def __str__(self) -> str:
        return f"{self.type}:{self.value}"


class RateLimitResult(BaseModel):
    success: bool
    limit: int
    remaining: int
    retry_after_hours: int = 0
    retry_after_minutes: int = 0

    @property
    def retry_after_seconds(self) -> int:
        return self.retry_after_hours * 3600 + self.retry_after_minutes * 60


class Quotas(BaseModel):
    embeddings: int | None = None
    completions: int | None = None
    usage_period: Literal["monthly", "yearly"] | None = None


class FeatureFlag(BaseModel):
    enabled: bool = False


class InsightsFeature(BaseModel):
    type: Literal["basic", "advanced"]


class TierFeatures(BaseModel):
    insights: InsightsFeature | None = None
    sections_api: FeatureFlag | None = None
    custom_model_config: FeatureFlag | None = None
    custom_page_fetcher: FeatureFlag | None = None
    can_remove_branding: bool | None = None


class TierDetails(BaseModel):
    quotas: Quotas | None = None
    features: TierFeatures | None = None
    max_projects: int | None = None
    max_team_members: int | None = None


class Price(BaseModel):
    amount: float
    price_id: str


class TierPrice(BaseModel):
    monthly: Price | None = None
    yearly: Price | None = None

    def matches(self, price_id: str) -> bool:
        return any(p is not None and p.price_id == price_id for p in (self.monthly, self.yearly))


class Tier(BaseModel):
    id: str
    name: str | None = None
    description: str | None = None
    price: TierPrice | None = None
    details: TierDetails | None = None


class TrialDetails(BaseModel):
    expires: str | None = None
    details: TierDetails


class PlanDetails(BaseModel):
    """Per-team plan overrides: a trial and/or offered custom tiers."""

    trial: TrialDetails | None = None
    tiers: list[Tier] = Field(default_factory=list)


class TeamTierInfo(BaseModel):
    stripe_price_id: str | None = None
    plan_details: PlanDetails | None = None


class AllowanceAndUsage(BaseModel):
    allowance: int
    used: int

    @property
    def remaining(self) -> int:
        return max(self.allowance - self.used, 0)


class Allowance(BaseModel):
    """Resolved quotas and usage of a team for its current billing window."""

    team_id: str
    usage_period: Literal["monthly", "yearly"]
    billing_cycle_start: datetime | None = None
    period_start: datetime
    period_end: datetime
    completions: AllowanceAndUsage
    embeddings: AllowanceAndUsage
