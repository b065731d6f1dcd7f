"""Tier limits and the quota ledger."""

from mealforge.services.quota.ledger import QuotaLedger, QuotaUsage, Reservation
from mealforge.services.quota.tiers import TIER_LIMITS, StaticTierConfigSource

__all__ = ["QuotaLedger", "QuotaUsage", "Reservation", "TIER_LIMITS", "StaticTierConfigSource"]
