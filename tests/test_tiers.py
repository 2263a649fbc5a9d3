"""Tests for tier resolution and feature checks."""

from markprompt_sync.limits import tiers
from markprompt_sync.models.limits import (
    FeatureFlag,
    PlanDetails,
    Price,
    Quotas,
    TeamTierInfo,
    Tier,
    TierDetails,
    TierFeatures,
    TierPrice,
    TrialDetails,
)

CUSTOM_PRICE_ID = "price_custom_enterprise"

ENTERPRISE_TIER = Tier(
    id="enterprise-acme",
    name="Enterprise",
    price=TierPrice(monthly=Price(amount=1000, price_id=CUSTOM_PRICE_ID)),
    details=TierDetails(
        quotas=Quotas(embeddings=5_000_000),
        features=TierFeatures(sections_api=FeatureFlag(enabled=True)),
    ),
)


def info(price_id=None, **plan) -> TeamTierInfo:
    return TeamTierInfo(
        stripe_price_id=price_id,
        plan_details=PlanDetails(**plan) if plan else None,
    )


def test_no_price_id_is_hobby():
    assert tiers.get_tier(info()) is tiers.HOBBY_TIER
    assert tiers.get_completions_allowance(info()) == 25
    assert tiers.get_embedding_tokens_allowance(info()) == 30_000


def test_default_tiers_resolve_from_monthly_and_yearly_prices():
    assert tiers.get_tier(info("price_1N8WfxCv3sM26vDeN9BnA5D3")) is tiers.STARTER_TIER
    assert tiers.get_tier(info("price_1N8WfxCv3sM26vDerkB8Tkmz")) is tiers.STARTER_TIER
    assert tiers.get_tier(info("price_1N0U0ICv3sM26vDebBlSdU2k")) is tiers.PRO_TIER


def test_unknown_price_id_is_pro():
    legacy = info("price_legacy_2022")

    assert tiers.get_tier(legacy) is tiers.PRO_TIER
    assert tiers.is_at_least_pro(legacy)


def test_custom_tier_wins_and_merges_over_pro():
    team = info(CUSTOM_PRICE_ID, tiers=[ENTERPRISE_TIER])

    assert tiers.get_tier(team) is ENTERPRISE_TIER
    assert tiers.is_pro_or_custom_tier(team)
    assert tiers.can_access_sections_api(team)

    details = tiers.get_tier_details(team)
    assert details.quotas.embeddings == 5_000_000
    # Completions come from the Pro details underneath.
    assert details.quotas.completions == 1000


def test_custom_tier_merge_leaves_pro_untouched():
    before = tiers.PRO_TIER.model_dump()

    tiers.get_tier_details(info(CUSTOM_PRICE_ID, tiers=[ENTERPRISE_TIER]))

    assert tiers.PRO_TIER.model_dump() == before
    assert not tiers.can_access_sections_api(info(tiers.PRO_TIER.price.monthly.price_id))


def test_custom_tier_not_subscribed_is_ignored():
    team = info(tiers.STARTER_TIER.price.monthly.price_id, tiers=[ENTERPRISE_TIER])

    assert tiers.get_tier(team) is tiers.STARTER_TIER
    assert not tiers.is_pro_or_custom_tier(team)


def test_trial_overrides_default_tier_details():
    team = info(
        trial=TrialDetails(
            expires="2030-01-01",
            details=TierDetails(
                quotas=Quotas(completions=500),
                features=TierFeatures(custom_page_fetcher=FeatureFlag(enabled=True)),
            ),
        )
    )

    assert tiers.get_tier(team) is tiers.HOBBY_TIER
    assert tiers.get_completions_allowance(team) == 500
    assert tiers.get_embedding_tokens_allowance(team) == 30_000
    assert tiers.is_custom_page_fetcher_enabled(team)
    assert not tiers.can_view_insights(team)


def test_embeddings_allowance_is_capped():
    unlimited = Tier(
        id="unlimited",
        price=TierPrice(yearly=Price(amount=1, price_id="price_unlimited")),
        details=TierDetails(quotas=Quotas(embeddings=10**12, usage_period="yearly")),
    )
    team = info("price_unlimited", tiers=[unlimited])

    assert tiers.get_embedding_tokens_allowance(team) == tiers.MAX_EMBEDDINGS_TOKEN_ALLOWANCE
    assert tiers.get_usage_period(team) == "yearly"
    assert tiers.get_usage_period(info()) == "monthly"


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"b": 1, "c": 2}}
    override = {"a": {"c": 3}, "d": 4}

    merged = tiers.deep_merge(base, override)

    assert merged == {"a": {"b": 1, "c": 3}, "d": 4}
    assert base == {"a": {"b": 1, "c": 2}}
