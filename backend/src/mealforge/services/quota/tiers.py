"""Subscription tiers and their monthly resource limits."""

from typing import Mapping

import structlog

from mealforge.models.quota import UNLIMITED

logger = structlog.get_logger(__name__)

TIER_LIMITS: dict[str, dict[str, int]] = {
    "starter": {
        "ai_generations": 100,
        "recipes": 1000,
        "meal_plans": 50,
        "customers": 9,
    },
    "professional": {
        "ai_generations": 500,
        "recipes": 2500,
        "meal_plans": 200,
        "customers": 20,
    },
    "enterprise": {
        "ai_generations": UNLIMITED,
        "recipes": 4000,
        "meal_plans": UNLIMITED,
        "customers": UNLIMITED,
    },
}


class StaticTierConfigSource:
    """Resolve account limits from a static account -> tier mapping.

    Accounts without an entry get ``default_tier``. Resource kinds a tier
    does not list have a limit of 0.
    """

    def __init__(
        self,
        account_tiers: Mapping[str, str] | None = None,
        default_tier: str = "starter",
        tier_limits: Mapping[str, Mapping[str, int]] | None = None,
    ):
        self.tier_limits = dict(tier_limits or TIER_LIMITS)
        if default_tier not in self.tier_limits:
            raise ValueError(f"Unknown default tier: {default_tier}")
        self.account_tiers = dict(account_tiers or {})
        self.default_tier = default_tier

    def tier_for(self, account_id: str) -> str:
        tier = self.account_tiers.get(account_id, self.default_tier)
        if tier not in self.tier_limits:
            logger.warning("quota.unknown_tier", account_id=account_id, tier=tier)
            return self.default_tier
        return tier

    async def get_limits(self, account_id: str) -> dict[str, int]:
        return dict(self.tier_limits[self.tier_for(account_id)])

    async def get_limit(self, account_id: str, resource_kind: str) -> int:
        limits = await self.get_limits(account_id)
        return limits.get(resource_kind, 0)
