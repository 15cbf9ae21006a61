"""Daily and monthly earning caps with lazy date rollover."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from rcn_api.domain.errors import LedgerValidationError, LimitExceededError

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class EarningCounters:
    """Rolling earning counters anchored at ``last_earned_date``."""

    daily: Decimal
    monthly: Decimal
    last_earned_date: date | None


@dataclass(frozen=True, slots=True)
class EarningCapacity:
    """Counters after rollover together with the remaining allowance."""

    counters: EarningCounters
    daily_remaining: Decimal
    monthly_remaining: Decimal

    @property
    def remaining(self) -> Decimal:
        return min(self.daily_remaining, self.monthly_remaining)


def roll_over(counters: EarningCounters, today: date) -> EarningCounters:
    """Reset counters whose day or month window has passed."""

    anchor = counters.last_earned_date
    if anchor is None:
        return EarningCounters(daily=_ZERO, monthly=_ZERO, last_earned_date=None)

    daily = counters.daily if anchor == today else _ZERO
    monthly = counters.monthly if (anchor.year, anchor.month) == (today.year, today.month) else _ZERO
    return EarningCounters(daily=daily, monthly=monthly, last_earned_date=anchor)


def evaluate_capacity(
    counters: EarningCounters,
    *,
    today: date,
    daily_cap: Decimal,
    monthly_cap: Decimal,
) -> EarningCapacity:
    current = roll_over(counters, today)
    return EarningCapacity(
        counters=current,
        daily_remaining=max(daily_cap - current.daily, _ZERO),
        monthly_remaining=max(monthly_cap - current.monthly, _ZERO),
    )


def reserve_capacity(
    counters: EarningCounters,
    amount: Decimal,
    *,
    today: date,
    daily_cap: Decimal,
    monthly_cap: Decimal,
) -> EarningCounters:
    """Return counters incremented by ``amount`` or raise ``LimitExceededError``."""

    if amount <= _ZERO:
        raise LedgerValidationError("Credit amount must be positive", amount=str(amount))

    capacity = evaluate_capacity(counters, today=today, daily_cap=daily_cap, monthly_cap=monthly_cap)
    if capacity.daily_remaining <= _ZERO or amount > capacity.daily_remaining:
        raise LimitExceededError(
            "Daily earning limit reached",
            limit="daily",
            requested=str(amount),
            remaining=str(capacity.daily_remaining),
        )
    if capacity.monthly_remaining <= _ZERO or amount > capacity.monthly_remaining:
        raise LimitExceededError(
            "Monthly earning limit reached",
            limit="monthly",
            requested=str(amount),
            remaining=str(capacity.monthly_remaining),
        )

    return EarningCounters(
        daily=capacity.counters.daily + amount,
        monthly=capacity.counters.monthly + amount,
        last_earned_date=today,
    )


__all__ = ["EarningCapacity", "EarningCounters", "evaluate_capacity", "reserve_capacity", "roll_over"]
