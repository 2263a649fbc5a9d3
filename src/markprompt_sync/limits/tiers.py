"""Plan tiers and the rules resolving a team's effective tier details."""

from markprompt_sync.models.limits import (
    Price,
    Quotas,
    TeamTierInfo,
    Tier,
    TierDetails,
    TierPrice,
)

# Plans with an "unlimited" embeddings allowance still stop here.
MAX_EMBEDDINGS_TOKEN_ALLOWANCE = 1_000_000_000

HOBBY_TIER = Tier(
    id="hobby",
    name="Hobby",
    description="For personal and non-commercial projects",
    details=TierDetails(quotas=Quotas(completions=25, embeddings=30_000)),
)

STARTER_TIER = Tier(
    id="starter",
    name="Starter",
    description="For small projects",
    price=TierPrice(
        monthly=Price(amount=25, price_id="price_1N8WfxCv3sM26vDeN9BnA5D3"),
        yearly=Price(amount=20, price_id="price_1N8WfxCv3sM26vDerkB8Tkmz"),
    ),
    details=TierDetails(quotas=Quotas(completions=200, embeddings=120_000)),
)

PRO_TIER = Tier(
    id="pro",
    name="Pro",
    description="For production",
    price=TierPrice(
        monthly=Price(amount=120, price_id="price_1N0U0ICv3sM26vDes1KHwQ4y"),
        yearly=Price(amount=100, price_id="price_1N0U0ICv3sM26vDebBlSdU2k"),
    ),
    details=TierDetails(quotas=Quotas(completions=1000, embeddings=600_000)),
)

DEFAULT_TIERS: tuple[Tier, ...] = (HOBBY_TIER, STARTER_TIER, PRO_TIER)


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``; override wins."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _merge_details(base: TierDetails | None, override: TierDetails | None) -> TierDetails:
    base_dict = base.model_dump(exclude_none=True) if base else {}
    override_dict = override.model_dump(exclude_none=True) if override else {}
    return TierDetails.model_validate(deep_merge(base_dict, override_dict))


def get_default_tier_from_price_id(price_id: str) -> Tier | None:
    for tier in DEFAULT_TIERS:
        if tier.price and tier.price.matches(price_id):
            return tier
    return None


def get_custom_tier(info: TeamTierInfo) -> Tier | None:
    """The offered custom tier the team subscribed to, matched by price id."""
    if not info.stripe_price_id or info.plan_details is None:
        return None
    for tier in info.plan_details.tiers:
        if tier.price and tier.price.matches(info.stripe_price_id):
            return tier
    return None


def get_tier(info: TeamTierInfo) -> Tier:
    """
    Resolve the team's tier.

    A custom tier wins; otherwise the default tier with the team's price id.
    Unknown (deprecated) price ids count as Pro; no price id means Hobby.
    """
    custom_tier = get_custom_tier(info)
    if custom_tier is not None:
        return custom_tier
    if info.stripe_price_id:
        return get_default_tier_from_price_id(info.stripe_price_id) or PRO_TIER
    return HOBBY_TIER


def get_tier_details(info: TeamTierInfo) -> TierDetails:
    """
    Effective tier details of a team.

    Custom tier details are merged over the Pro details and ignore any
    trial. Otherwise trial details are merged over the resolved default
    tier. In both merges the first-named details lose on conflicts.
    """
    custom_tier = get_custom_tier(info)
    if custom_tier is not None and custom_tier.details is not None:
        return _merge_details(PRO_TIER.details, custom_tier.details)

    trial = info.plan_details.trial if info.plan_details else None
    return _merge_details(get_tier(info).details, trial.details if trial else None)


def is_pro_or_custom_tier(info: TeamTierInfo) -> bool:
    if get_custom_tier(info) is not None:
        return True
    return get_tier(info).id == PRO_TIER.id


def is_at_least_pro(info: TeamTierInfo) -> bool:
    return is_pro_or_custom_tier(info)


def can_access_sections_api(info: TeamTierInfo) -> bool:
    features = get_tier_details(info).features
    return bool(features and features.sections_api and features.sections_api.enabled)


def is_custom_page_fetcher_enabled(info: TeamTierInfo) -> bool:
    features = get_tier_details(info).features
    return bool(features and features.custom_page_fetcher and features.custom_page_fetcher.enabled)


def can_view_insights(info: TeamTierInfo) -> bool:
    features = get_tier_details(info).features
    return bool(features and features.insights and features.insights.type in ("basic", "advanced"))


def get_completions_allowance(info: TeamTierInfo) -> int:
    quotas = get_tier_details(info).quotas
    return (quotas.completions if quotas else None) or 0


def get_embedding_tokens_allowance(info: TeamTierInfo) -> int:
    """Accumulated (not per-period) embeddings token allowance."""
    quotas = get_tier_details(info).quotas
    allowance = (quotas.embeddings if quotas else None) or 0
    return min(allowance, MAX_EMBEDDINGS_TOKEN_ALLOWANCE)


def get_usage_period(info: TeamTierInfo) -> str:
    quotas = get_tier_details(info).quotas
    return (quotas.usage_period if quotas else None) or "monthly"
