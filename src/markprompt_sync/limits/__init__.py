"""Rate limits, plan tiers and quota allowances."""

from markprompt_sync.limits.cache import TTLCache
from markprompt_sync.limits.quota import QuotaGate, usage_window
from markprompt_sync.limits.rate_limit import (
    InMemoryRateLimiter,
    Limit,
    RateLimiter,
    RedisRateLimiter,
    build_rate_limiter,
    parse_limit,
)
from markprompt_sync.limits.tiers import (
    DEFAULT_TIERS,
    MAX_EMBEDDINGS_TOKEN_ALLOWANCE,
    can_access_sections_api,
    get_tier,
    get_tier_details,
    is_at_least_pro,
    is_custom_page_fetcher_enabled,
    is_pro_or_custom_tier,
)

__all__ = [
    "DEFAULT_TIERS",
    "InMemoryRateLimiter",
    "Limit",
    "MAX_EMBEDDINGS_TOKEN_ALLOWANCE",
    "QuotaGate",
    "RateLimiter",
    "RedisRateLimiter",
    "TTLCache",
    "build_rate_limiter",
    "can_access_sections_api",
    "get_tier",
    "get_tier_details",
    "is_at_least_pro",
    "is_custom_page_fetcher_enabled",
    "is_pro_or_custom_tier",
    "parse_limit",
    "usage_window",
]
