"""Redemption decisions combining earned balance and home shop."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from loguru import logger

from rcn_api.domain.errors import LedgerError, LedgerValidationError
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.services.directory import DirectoryService
from rcn_api.services.ledger.home_shop import HomeShopResolver
from rcn_api.services.ledger.provenance import ProvenanceLedger

_ZERO = Decimal("0")


@dataclass(slots=True)
class RedemptionDecision:
    can_redeem: bool
    requested_amount: Decimal
    earned_balance: Decimal
    max_redeemable: Decimal
    is_home_shop: bool
    home_shop_id: str | None
    cross_shop_limit: Decimal
    message: str


@dataclass(slots=True)
class RedemptionRequest:
    customer_address: str
    shop_id: str
    amount: Decimal


@dataclass(slots=True)
class BatchVerification:
    """Outcome for one entry of a batch; ``error`` is set when no decision was reached."""

    index: int
    request: RedemptionRequest
    decision: RedemptionDecision | None = None
    error: str | None = None
    message: str | None = None

    @property
    def can_redeem(self) -> bool:
        return self.decision is not None and self.decision.can_redeem


def cross_shop_cap(earned_balance: Decimal, ratio: Decimal) -> Decimal:
    """Whole-RCN share of the earned balance redeemable away from the home shop."""

    if earned_balance <= _ZERO:
        return _ZERO
    return (earned_balance * ratio).to_integral_value(rounding=ROUND_FLOOR)


class RedemptionVerifier:
    """Decides how much a customer may redeem at a given shop."""

    def __init__(
        self,
        *,
        directory: DirectoryService,
        ledger: ProvenanceLedger,
        home_shop_resolver: HomeShopResolver,
        policy: LedgerPolicy,
    ) -> None:
        self._directory = directory
        self._ledger = ledger
        self._home_shops = home_shop_resolver
        self._policy = policy

    async def verify(self, customer_address: str, shop_id: str, requested_amount: Decimal) -> RedemptionDecision:
        customer = await self._directory.require_customer(customer_address)
        if not customer.is_active:
            raise LedgerValidationError("Customer account is deactivated", address=customer.address)
        await self._directory.require_active_shop(shop_id)

        requested = Decimal(requested_amount)
        earned = max(await self._ledger.earned_balance(customer.address), _ZERO)
        home_shop_id = await self._home_shops.resolve(customer.address)
        is_home_shop = home_shop_id is not None and home_shop_id == shop_id
        cross_limit = cross_shop_cap(earned, self._policy.cross_shop_ratio)
        max_redeemable = earned if is_home_shop else cross_limit

        can_redeem = _ZERO < requested <= max_redeemable
        if can_redeem:
            message = f"Redemption approved for {requested} RCN"
        elif requested <= _ZERO:
            message = "Invalid redemption amount"
        elif is_home_shop:
            message = f"Insufficient earned balance. Available: {earned} RCN"
        else:
            message = (
                f"Cross-shop redemption limit is {cross_limit} RCN "
                f"({self._policy.cross_shop_ratio * 100:.0f}% of {earned} earned RCN)"
            )

        logger.info(
            "Redemption verification completed",
            address=customer.address,
            shop_id=shop_id,
            requested=str(requested),
            can_redeem=can_redeem,
            earned_balance=str(earned),
            max_redeemable=str(max_redeemable),
            is_home_shop=is_home_shop,
        )
        return RedemptionDecision(
            can_redeem=can_redeem,
            requested_amount=requested,
            earned_balance=earned,
            max_redeemable=max_redeemable,
            is_home_shop=is_home_shop,
            home_shop_id=home_shop_id,
            cross_shop_limit=cross_limit,
            message=message,
        )

    async def verify_many(self, requests: Sequence[RedemptionRequest]) -> list[BatchVerification]:
        """Verify each request independently so one bad entry does not sink the batch."""

        results: list[BatchVerification] = []
        for index, request in enumerate(requests):
            try:
                decision = await self.verify(request.customer_address, request.shop_id, request.amount)
            except LedgerError as exc:
                logger.info("Batch redemption entry rejected", index=index, error_code=exc.code, reason=exc.message)
                results.append(BatchVerification(index=index, request=request, error=exc.code, message=exc.message))
            else:
                results.append(
                    BatchVerification(index=index, request=request, decision=decision, message=decision.message)
                )
        return results


__all__ = [
    "BatchVerification",
    "RedemptionDecision",
    "RedemptionRequest",
    "RedemptionVerifier",
    "cross_shop_cap",
]
