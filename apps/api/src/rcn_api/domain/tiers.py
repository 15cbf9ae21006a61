"""Tier calculation from lifetime earnings."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class CustomerTier(str, Enum):
    """Customer loyalty tiers ordered by lifetime earnings."""

    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"


# Lower bound (inclusive) of each tier, highest first.
TIER_THRESHOLDS: tuple[tuple[CustomerTier, Decimal], ...] = (
    (CustomerTier.GOLD, Decimal("1000")),
    (CustomerTier.SILVER, Decimal("200")),
    (CustomerTier.BRONZE, Decimal("0")),
)


@dataclass(frozen=True, slots=True)
class TierProgress:
    """Where a customer sits relative to the next tier."""

    tier: CustomerTier
    next_tier: CustomerTier | None
    amount_to_next: Decimal
    progress_percent: Decimal


def calculate_tier(lifetime_earnings: Decimal | int) -> CustomerTier:
    """Return the tier for ``lifetime_earnings``; negative input is treated as zero."""

    earnings = Decimal(lifetime_earnings)
    for tier, threshold in TIER_THRESHOLDS:
        if earnings >= threshold:
            return tier
    return CustomerTier.BRONZE


def tier_progress(lifetime_earnings: Decimal | int) -> TierProgress:
    earnings = max(Decimal(lifetime_earnings), Decimal("0"))
    tier = calculate_tier(earnings)
    ordered = [item for item in reversed(TIER_THRESHOLDS)]
    index = [candidate for candidate, _ in ordered].index(tier)
    if index + 1 >= len(ordered):
        return TierProgress(tier=tier, next_tier=None, amount_to_next=Decimal("0"), progress_percent=Decimal("100"))

    next_tier, next_threshold = ordered[index + 1]
    current_threshold = ordered[index][1]
    span = next_threshold - current_threshold
    percent = ((earnings - current_threshold) / span * 100).quantize(Decimal("0.01"))
    return TierProgress(
        tier=tier,
        next_tier=next_tier,
        amount_to_next=next_threshold - earnings,
        progress_percent=percent,
    )


__all__ = ["CustomerTier", "TIER_THRESHOLDS", "TierProgress", "calculate_tier", "tier_progress"]
