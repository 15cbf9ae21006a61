"""Ledger policy constants resolved from settings and injected into components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Literal

from rcn_api.core.settings import Settings
from rcn_api.domain.tiers import CustomerTier

TieBreak = Literal["earliest_to_max", "most_recent"]


@dataclass(frozen=True, slots=True)
class LedgerPolicy:
    """Tunable business rules for earning, redemption and bonuses."""

    daily_cap: Decimal = Decimal("50")
    monthly_cap: Decimal = Decimal("500")
    capped_sources: frozenset[str] = frozenset({"shop_repair", "referral_bonus"})
    cross_shop_ratio: Decimal = Decimal("0.20")
    home_shop_tie_break: TieBreak = "earliest_to_max"
    session_ttl: timedelta = timedelta(minutes=5)
    repair_reward_large: Decimal = Decimal("25")
    repair_reward_small: Decimal = Decimal("10")
    repair_large_threshold: Decimal = Decimal("100")
    repair_small_threshold: Decimal = Decimal("50")
    tier_bonuses: dict[CustomerTier, Decimal] = field(
        default_factory=lambda: {
            CustomerTier.BRONZE: Decimal("10"),
            CustomerTier.SILVER: Decimal("20"),
            CustomerTier.GOLD: Decimal("30"),
        }
    )
    referrer_reward: Decimal = Decimal("25")
    referee_reward: Decimal = Decimal("10")
    referral_expiry: timedelta = timedelta(days=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerPolicy":
        return cls(
            daily_cap=Decimal(settings.daily_earning_cap),
            monthly_cap=Decimal(settings.monthly_earning_cap),
            capped_sources=frozenset(settings.capped_source_types),
            cross_shop_ratio=Decimal(str(settings.cross_shop_ratio)),
            home_shop_tie_break=settings.home_shop_tie_break,
            session_ttl=timedelta(seconds=settings.redemption_session_ttl_seconds),
            repair_reward_large=Decimal(settings.repair_reward_large),
            repair_reward_small=Decimal(settings.repair_reward_small),
            repair_large_threshold=Decimal(settings.repair_large_threshold),
            repair_small_threshold=Decimal(settings.repair_small_threshold),
            tier_bonuses={
                CustomerTier.BRONZE: Decimal(settings.tier_bonus_bronze),
                CustomerTier.SILVER: Decimal(settings.tier_bonus_silver),
                CustomerTier.GOLD: Decimal(settings.tier_bonus_gold),
            },
            referrer_reward=Decimal(settings.referrer_reward),
            referee_reward=Decimal(settings.referee_reward),
            referral_expiry=timedelta(days=settings.referral_expiry_days),
        )

    def tier_bonus(self, tier: CustomerTier) -> Decimal:
        return self.tier_bonuses.get(tier, Decimal("0"))

    def base_repair_reward(self, repair_amount: Decimal) -> Decimal | None:
        """Return the base reward for a repair bill, or ``None`` below the minimum."""

        if repair_amount >= self.repair_large_threshold:
            return self.repair_reward_large
        if repair_amount >= self.repair_small_threshold:
            return self.repair_reward_small
        return None


__all__ = ["LedgerPolicy", "TieBreak"]
