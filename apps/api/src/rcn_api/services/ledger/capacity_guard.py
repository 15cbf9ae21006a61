"""Earning capacity guard bound to customer rows."""

from __future__ import annotations

from decimal import Decimal

from loguru import logger

from rcn_api.core.clock import Clock, utcnow
from rcn_api.domain.capacity import EarningCapacity, EarningCounters, evaluate_capacity, reserve_capacity
from rcn_api.domain.errors import LimitExceededError
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.models.customer import Customer


class EarningCapacityGuard:
    """Applies daily/monthly caps to a locked customer row."""

    def __init__(self, policy: LedgerPolicy, *, clock: Clock = utcnow) -> None:
        self._policy = policy
        self._clock = clock

    @staticmethod
    def _counters(customer: Customer) -> EarningCounters:
        return EarningCounters(
            daily=Decimal(customer.daily_earnings or 0),
            monthly=Decimal(customer.monthly_earnings or 0),
            last_earned_date=customer.last_earned_date,
        )

    def capacity(self, customer: Customer) -> EarningCapacity:
        return evaluate_capacity(
            self._counters(customer),
            today=self._clock().date(),
            daily_cap=self._policy.daily_cap,
            monthly_cap=self._policy.monthly_cap,
        )

    def reserve(self, customer: Customer, amount: Decimal) -> EarningCounters:
        """Increment the customer's counters or raise ``LimitExceededError``.

        Callers must hold the customer row lock and write the gated credit in
        the same transaction.
        """

        try:
            updated = reserve_capacity(
                self._counters(customer),
                amount,
                today=self._clock().date(),
                daily_cap=self._policy.daily_cap,
                monthly_cap=self._policy.monthly_cap,
            )
        except LimitExceededError as exc:
            logger.info("Earning cap reached", address=customer.address, amount=str(amount), **exc.details)
            raise

        customer.daily_earnings = updated.daily
        customer.monthly_earnings = updated.monthly
        customer.last_earned_date = updated.last_earned_date
        return updated


__all__ = ["EarningCapacityGuard"]
