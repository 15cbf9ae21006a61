"""Repair rewards, gift transfers and market purchases."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.domain.errors import LedgerValidationError
from rcn_api.domain.metadata import GiftMeta, MarketPurchaseMeta, RepairMeta
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.domain.signatures import normalize_address
from rcn_api.domain.tiers import CustomerTier, calculate_tier
from rcn_api.models.customer import Customer
from rcn_api.models.ledger import LedgerTransaction, RcnSourceType
from rcn_api.services.directory import DirectoryService
from rcn_api.services.ledger.provenance import CreditResult, ProvenanceLedger
from rcn_api.services.promotions.promo_service import PromoService

_ZERO = Decimal("0")


@dataclass(slots=True)
class RepairReward:
    customer_address: str
    shop_id: str
    repair_amount: Decimal
    base_reward: Decimal
    tier_bonus: Decimal
    promo_bonus: Decimal
    old_tier: CustomerTier
    new_tier: CustomerTier
    customer_created: bool
    promo_code: str | None = None
    transaction_ids: list[str] = field(default_factory=list)

    @property
    def total_reward(self) -> Decimal:
        return self.base_reward + self.tier_bonus + self.promo_bonus


@dataclass(slots=True)
class GiftTransfer:
    from_address: str
    to_address: str
    amount: Decimal
    debit: LedgerTransaction
    credit: CreditResult
    recipient_created: bool


class EarningService:
    """Shop-facing credit flows that feed the provenance ledger."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        directory: DirectoryService,
        ledger: ProvenanceLedger,
        promotions: PromoService,
        policy: LedgerPolicy,
    ) -> None:
        self._db = db_session
        self._directory = directory
        self._ledger = ledger
        self._promotions = promotions
        self._policy = policy

    async def issue_repair_reward(
        self,
        shop_id: str,
        customer_address: str,
        repair_amount: Decimal,
        *,
        promo_code: str | None = None,
        skip_tier_bonus: bool = False,
        reference: str | None = None,
    ) -> RepairReward:
        """Credit the base repair reward plus tier and promo bonuses.

        Only the base reward counts against the daily and monthly caps. The
        tier bonus is chosen from the customer's tier before this repair.
        """

        await self._directory.require_active_shop(shop_id)
        repair_amount = Decimal(repair_amount)
        base_reward = self._policy.base_repair_reward(repair_amount)
        if base_reward is None:
            raise LedgerValidationError(
                f"Repair amount must be at least ${self._policy.repair_small_threshold} to earn RCN",
                repair_amount=str(repair_amount),
            )

        customer, created = await self._directory.ensure_customer(customer_address)
        old_tier = CustomerTier(customer.tier)
        tier_bonus = _ZERO if skip_tier_bonus else self._policy.tier_bonus(old_tier)
        lifetime = await self._ledger.lifetime_earnings(customer.address)
        reference = reference or uuid4().hex

        reward = RepairReward(
            customer_address=customer.address,
            shop_id=shop_id,
            repair_amount=repair_amount,
            base_reward=base_reward,
            tier_bonus=tier_bonus,
            promo_bonus=_ZERO,
            old_tier=old_tier,
            new_tier=old_tier,
            customer_created=created,
        )
        repair_meta = RepairMeta(
            repair_amount=repair_amount,
            base_reward=base_reward,
            tier_bonus=tier_bonus,
            old_tier=old_tier.value,
            new_tier=calculate_tier(lifetime + base_reward + tier_bonus).value,
        )

        base_credit = await self._ledger.record_source(
            customer,
            source_type=RcnSourceType.SHOP_REPAIR,
            amount=base_reward,
            transaction_id=f"repair_{shop_id}_{reference}",
            shop_id=shop_id,
            metadata=repair_meta,
            reason=f"Repair reward from {shop_id}",
        )
        reward.transaction_ids.append(base_credit.entry.transaction_id)

        if tier_bonus > _ZERO:
            bonus_credit = await self._ledger.record_source(
                customer,
                source_type=RcnSourceType.TIER_BONUS,
                amount=tier_bonus,
                transaction_id=f"tier_bonus_{shop_id}_{reference}",
                shop_id=shop_id,
                metadata=repair_meta,
                reason=f"{old_tier.value} tier bonus",
            )
            reward.transaction_ids.append(bonus_credit.entry.transaction_id)

        if promo_code:
            application = await self._promotions.apply_promo_code(
                promo_code,
                shop_id,
                customer,
                base_reward,
                transaction_id=f"promo_{shop_id}_{reference}",
            )
            reward.promo_bonus = application.evaluation.bonus_amount
            reward.promo_code = application.evaluation.code
            reward.transaction_ids.append(application.credit.entry.transaction_id)

        reward.new_tier = CustomerTier(customer.tier)
        logger.info(
            "Issued repair reward",
            address=customer.address,
            shop_id=shop_id,
            repair_amount=str(repair_amount),
            base_reward=str(base_reward),
            tier_bonus=str(tier_bonus),
            promo_bonus=str(reward.promo_bonus),
            old_tier=old_tier.value,
            new_tier=reward.new_tier.value,
        )
        return reward

    async def transfer_tokens(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        *,
        message: str | None = None,
    ) -> GiftTransfer:
        """Gift RCN to another wallet; the recipient's tokens are never redeemable."""

        sender_key = normalize_address(from_address)
        recipient_key = normalize_address(to_address)
        amount = Decimal(amount)
        if sender_key == recipient_key:
            raise LedgerValidationError("Cannot transfer tokens to yourself")
        if amount <= _ZERO:
            raise LedgerValidationError("Transfer amount must be positive", amount=str(amount))

        locked: dict[str, Customer] = {}
        recipient_created = False
        for address in sorted((sender_key, recipient_key)):
            if address == sender_key:
                locked[address] = await self._directory.require_customer(address, lock=True)
            else:
                locked[address], recipient_created = await self._directory.ensure_customer(address)
        sender, recipient = locked[sender_key], locked[recipient_key]
        if not sender.is_active:
            raise LedgerValidationError("Customer account is deactivated", address=sender.address)

        reference = uuid4().hex
        debit = await self._ledger.debit_transfer(
            sender,
            amount=amount,
            metadata=GiftMeta(counterparty_address=recipient.address, direction="out", message=message),
            reason=f"Token transfer to {recipient.address[:6]}...{recipient.address[-4:]}",
        )
        credit = await self._ledger.record_source(
            recipient,
            source_type=RcnSourceType.GIFT,
            amount=amount,
            transaction_id=f"gift_{reference}",
            metadata=GiftMeta(
                counterparty_address=sender.address,
                direction="in",
                message=message,
                is_new_recipient=recipient_created,
            ),
            reason=f"Token transfer from {sender.address[:6]}...{sender.address[-4:]}",
        )
        await self._ledger.refresh_projections(sender)
        logger.info(
            "Token transfer completed",
            from_address=sender.address,
            to_address=recipient.address,
            amount=str(amount),
            earned_share=str(debit.earned_amount),
        )
        return GiftTransfer(
            from_address=sender.address,
            to_address=recipient.address,
            amount=amount,
            debit=debit,
            credit=credit,
            recipient_created=recipient_created,
        )

    async def record_market_purchase(
        self,
        customer_address: str,
        amount: Decimal,
        *,
        reference: str | None = None,
    ) -> CreditResult:
        customer, _ = await self._directory.ensure_customer(customer_address)
        return await self._ledger.record_source(
            customer,
            source_type=RcnSourceType.MARKET_PURCHASE,
            amount=Decimal(amount),
            transaction_id=f"market_{reference or uuid4().hex}",
            metadata=MarketPurchaseMeta(reference=reference),
            reason="Market purchase",
        )


__all__ = ["EarningService", "GiftTransfer", "RepairReward"]
