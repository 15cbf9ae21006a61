"""Promo code eligibility and bonus math, independent of persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from rcn_api.domain.errors import LedgerValidationError


class PromoBonusType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


@dataclass(frozen=True, slots=True)
class PromoSnapshot:
    """Point-in-time copy of a promo code row."""

    promo_code_id: int
    code: str
    shop_id: str
    bonus_type: PromoBonusType
    bonus_value: Decimal
    max_bonus: Decimal | None
    start_date: datetime
    end_date: datetime
    is_active: bool
    total_usage_limit: int | None
    per_customer_limit: int
    times_used: int


def normalize_code(code: str) -> str:
    return code.strip().upper()


def validate_promo(snapshot: PromoSnapshot, *, customer_uses: int, now: datetime) -> None:
    """Raise ``LedgerValidationError`` when the code cannot be used right now."""

    if not snapshot.is_active:
        raise LedgerValidationError("Promo code is not active", code=snapshot.code, reason="inactive")
    if now < snapshot.start_date:
        raise LedgerValidationError("Promo code is not yet valid", code=snapshot.code, reason="not_started")
    if now > snapshot.end_date:
        raise LedgerValidationError("Promo code has expired", code=snapshot.code, reason="ended")
    if snapshot.total_usage_limit is not None and snapshot.times_used >= snapshot.total_usage_limit:
        raise LedgerValidationError(
            "Promo code usage limit reached",
            code=snapshot.code,
            reason="total_limit",
            limit=snapshot.total_usage_limit,
        )
    if customer_uses >= snapshot.per_customer_limit:
        raise LedgerValidationError(
            "You have already used this promo code",
            code=snapshot.code,
            reason="customer_limit",
            limit=snapshot.per_customer_limit,
        )


def compute_bonus(snapshot: PromoSnapshot, base_reward: Decimal) -> Decimal:
    """Bonus RCN for ``base_reward``; percentage bonuses never exceed ``max_bonus``."""

    if snapshot.bonus_type == PromoBonusType.FIXED:
        return snapshot.bonus_value

    bonus = (base_reward * snapshot.bonus_value / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if snapshot.max_bonus is not None and bonus > snapshot.max_bonus:
        return snapshot.max_bonus
    return bonus


def validate_definition(
    *,
    bonus_type: PromoBonusType,
    bonus_value: Decimal,
    max_bonus: Decimal | None,
    start_date: datetime,
    end_date: datetime,
    total_usage_limit: int | None,
    per_customer_limit: int,
) -> None:
    if end_date <= start_date:
        raise LedgerValidationError("End date must be after start date")
    if bonus_type == PromoBonusType.PERCENTAGE and not (Decimal("1") <= bonus_value <= Decimal("100")):
        raise LedgerValidationError("Percentage bonus must be between 1 and 100", bonus_value=str(bonus_value))
    if bonus_type == PromoBonusType.FIXED and bonus_value <= 0:
        raise LedgerValidationError("Fixed bonus must be greater than 0", bonus_value=str(bonus_value))
    if max_bonus is not None and max_bonus <= 0:
        raise LedgerValidationError("Maximum bonus must be greater than 0")
    if total_usage_limit is not None and total_usage_limit < 1:
        raise LedgerValidationError("Total usage limit must be at least 1")
    if per_customer_limit < 1:
        raise LedgerValidationError("Per-customer limit must be at least 1")


__all__ = [
    "PromoBonusType",
    "PromoSnapshot",
    "compute_bonus",
    "normalize_code",
    "validate_definition",
    "validate_promo",
]
