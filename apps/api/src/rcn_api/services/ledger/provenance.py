"""Provenance ledger: every credited RCN tagged with where it came from.

Balances are always derived from ``customer_rcn_sources`` (credits) and
``transactions`` (debits). ``Customer.lifetime_earnings``, ``tier`` and
``home_shop_id`` are cached projections refreshed here after each write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, as_utc, utcnow
from rcn_api.domain.errors import ConflictError, LedgerValidationError, LimitExceededError, SettlementError
from rcn_api.domain.home_shop import MARKET_SHOP_ID
from rcn_api.domain.metadata import TransactionMeta
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.domain.tiers import CustomerTier, calculate_tier, tier_progress
from rcn_api.models.customer import Customer, Shop
from rcn_api.models.ledger import (
    LedgerTransaction,
    RcnSource,
    RcnSourceType,
    TransactionStatus,
    TransactionType,
)
from rcn_api.services.ledger.capacity_guard import EarningCapacityGuard
from rcn_api.services.ledger.home_shop import HomeShopResolver
from rcn_api.services.minter import TokenMinter

_ZERO = Decimal("0")
_CENT = Decimal("0.01")

_NON_REDEEMABLE_SOURCES = {RcnSourceType.MARKET_PURCHASE, RcnSourceType.GIFT}
_MINTABLE_SOURCES = {
    RcnSourceType.SHOP_REPAIR,
    RcnSourceType.REFERRAL_BONUS,
    RcnSourceType.TIER_BONUS,
    RcnSourceType.PROMOTION,
}
_DEBIT_TYPES = (TransactionType.REDEEM, TransactionType.TRANSFER_OUT)


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(_CENT)


@dataclass(frozen=True, slots=True)
class LedgerBalances:
    lifetime_earnings: Decimal
    total_balance: Decimal
    earned_balance: Decimal
    market_balance: Decimal
    redeemed_total: Decimal


@dataclass(frozen=True, slots=True)
class BalanceSnapshot:
    address: str
    balances: LedgerBalances
    tier: CustomerTier
    next_tier: CustomerTier | None
    amount_to_next_tier: Decimal
    daily_remaining: Decimal
    monthly_remaining: Decimal
    home_shop_id: str | None
    earnings_by_shop: dict[str, Decimal]
    is_active: bool


@dataclass(slots=True)
class ShopEarnings:
    shop_id: str
    shop_name: str | None
    total_earned: Decimal = _ZERO
    by_source: dict[str, Decimal] = field(default_factory=dict)
    last_earned_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class EarningSources:
    """Where a customer's redeemable RCN came from.

    ``unattributed`` holds credits without a source shop, such as referral
    bonuses, keyed by source type.
    """

    address: str
    shops: list[ShopEarnings]
    unattributed: dict[str, Decimal]
    primary_shop_id: str | None
    total_earned: Decimal


@dataclass(slots=True)
class CreditResult:
    entry: RcnSource
    transaction: LedgerTransaction | None
    created: bool
    old_tier: CustomerTier
    new_tier: CustomerTier


class ProvenanceLedger:
    """Guarded credit/debit paths and derived balance reads."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        policy: LedgerPolicy,
        capacity_guard: EarningCapacityGuard,
        home_shop_resolver: HomeShopResolver,
        minter: TokenMinter | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._policy = policy
        self._guard = capacity_guard
        self._home_shops = home_shop_resolver
        self._minter = minter
        self._clock = clock

    async def record_source(
        self,
        customer: Customer,
        *,
        source_type: RcnSourceType,
        amount: Decimal,
        transaction_id: str,
        shop_id: str | None = None,
        metadata: TransactionMeta | None = None,
        reason: str | None = None,
    ) -> CreditResult:
        """Credit ``customer`` once per ``transaction_id``.

        The customer row must already be locked by the caller. Capped source
        types pass through the capacity guard before anything is written.
        """

        amount = Decimal(amount)
        if amount <= _ZERO:
            raise LedgerValidationError("Credit amount must be positive", amount=str(amount))

        existing = await self._db.scalar(select(RcnSource).where(RcnSource.transaction_id == transaction_id))
        if existing is not None:
            if existing.customer_address != customer.address:
                raise ConflictError("Transaction id already used for another customer", transaction_id=transaction_id)
            logger.info("Skipped duplicate RCN source", transaction_id=transaction_id, address=customer.address)
            tier = CustomerTier(customer.tier)
            return CreditResult(entry=existing, transaction=None, created=False, old_tier=tier, new_tier=tier)

        if source_type.value in self._policy.capped_sources:
            self._guard.reserve(customer, amount)

        is_redeemable = source_type not in _NON_REDEEMABLE_SOURCES
        if source_type == RcnSourceType.MARKET_PURCHASE:
            shop_id = MARKET_SHOP_ID
        elif source_type == RcnSourceType.GIFT:
            shop_id = None

        transaction_hash = None
        if self._minter is not None and source_type in _MINTABLE_SOURCES:
            minted = await self._minter.mint(customer.address, amount, reason=reason or source_type.value)
            if not minted.success:
                raise SettlementError(
                    "Token minting failed",
                    address=customer.address,
                    amount=str(amount),
                    error=minted.error,
                )
            transaction_hash = minted.transaction_hash

        now = self._clock()
        payload = metadata.as_json() if metadata is not None else None
        entry = RcnSource(
            customer_address=customer.address,
            source_type=source_type,
            source_shop_id=shop_id,
            amount=amount,
            transaction_id=transaction_id,
            is_redeemable=is_redeemable,
            metadata_json=payload,
            earned_at=now,
        )
        transaction = LedgerTransaction(
            type=TransactionType.MINT,
            customer_address=customer.address,
            shop_id=shop_id,
            amount=amount,
            earned_amount=_ZERO,
            status=TransactionStatus.CONFIRMED,
            reason=reason,
            transaction_hash=transaction_hash,
            metadata_json=payload,
            occurred_at=now,
        )
        self._db.add_all([entry, transaction])
        await self._db.flush()

        old_tier, new_tier = await self.refresh_projections(customer)
        logger.info(
            "Recorded RCN source",
            address=customer.address,
            source_type=source_type.value,
            shop_id=shop_id,
            amount=str(amount),
            redeemable=is_redeemable,
            transaction_id=transaction_id,
        )
        if old_tier != new_tier:
            logger.info("Customer tier changed", address=customer.address, old_tier=old_tier.value, new_tier=new_tier.value)
        return CreditResult(entry=entry, transaction=transaction, created=True, old_tier=old_tier, new_tier=new_tier)

    async def debit_redemption(
        self,
        customer: Customer,
        *,
        shop_id: str,
        amount: Decimal,
        metadata: TransactionMeta | None = None,
    ) -> LedgerTransaction:
        """Record a redeem debit against the customer's earned balance."""

        amount = Decimal(amount)
        if amount <= _ZERO:
            raise LedgerValidationError("Redemption amount must be positive", amount=str(amount))

        earned = await self.earned_balance(customer.address)
        if amount > earned:
            raise LimitExceededError(
                "Redemption exceeds earned balance",
                requested=str(amount),
                earned_balance=str(earned),
            )

        transaction = LedgerTransaction(
            type=TransactionType.REDEEM,
            customer_address=customer.address,
            shop_id=shop_id,
            amount=amount,
            earned_amount=amount,
            status=TransactionStatus.CONFIRMED,
            reason=f"Redemption at {shop_id}",
            metadata_json=metadata.as_json() if metadata is not None else None,
            occurred_at=self._clock(),
        )
        self._db.add(transaction)
        await self._db.flush()
        await self.refresh_projections(customer)
        logger.info("Recorded redemption debit", address=customer.address, shop_id=shop_id, amount=str(amount))
        return transaction

    async def debit_transfer(
        self,
        customer: Customer,
        *,
        amount: Decimal,
        metadata: TransactionMeta | None = None,
        reason: str | None = None,
    ) -> LedgerTransaction:
        """Move RCN out of ``customer``'s wallet, spending non-earned tokens first."""

        amount = Decimal(amount)
        if amount <= _ZERO:
            raise LedgerValidationError("Transfer amount must be positive", amount=str(amount))

        balances = await self.balances(customer.address)
        if amount > balances.total_balance:
            raise LimitExceededError(
                "Insufficient balance for transfer",
                requested=str(amount),
                total_balance=str(balances.total_balance),
            )
        earned_share = max(amount - balances.market_balance, _ZERO)

        transaction = LedgerTransaction(
            type=TransactionType.TRANSFER_OUT,
            customer_address=customer.address,
            shop_id=None,
            amount=amount,
            earned_amount=earned_share,
            status=TransactionStatus.CONFIRMED,
            reason=reason,
            metadata_json=metadata.as_json() if metadata is not None else None,
            occurred_at=self._clock(),
        )
        self._db.add(transaction)
        await self._db.flush()
        logger.info(
            "Recorded transfer debit",
            address=customer.address,
            amount=str(amount),
            earned_share=str(earned_share),
        )
        return transaction

    async def refresh_projections(self, customer: Customer) -> tuple[CustomerTier, CustomerTier]:
        """Recompute cached lifetime earnings, tier and home shop from the ledger."""

        old_tier = CustomerTier(customer.tier) if customer.tier else CustomerTier.BRONZE
        lifetime = await self.lifetime_earnings(customer.address)
        new_tier = calculate_tier(lifetime)
        customer.lifetime_earnings = lifetime
        customer.tier = new_tier
        customer.home_shop_id = await self._home_shops.resolve(customer.address)
        await self._db.flush()
        return old_tier, new_tier

    async def lifetime_earnings(self, address: str) -> Decimal:
        """Sum of redeemable credits; never decreases."""

        stmt = select(func.coalesce(func.sum(RcnSource.amount), 0)).where(
            RcnSource.customer_address == address,
            RcnSource.is_redeemable.is_(True),
        )
        return _money(await self._db.scalar(stmt))

    async def _credits(self, address: str, *, earned_only: bool) -> Decimal:
        stmt = select(func.coalesce(func.sum(RcnSource.amount), 0)).where(RcnSource.customer_address == address)
        if earned_only:
            stmt = stmt.where(
                RcnSource.is_redeemable.is_(True),
                or_(RcnSource.source_shop_id.is_(None), RcnSource.source_shop_id != MARKET_SHOP_ID),
            )
        return _money(await self._db.scalar(stmt))

    async def _debits(self, address: str, *, column) -> Decimal:
        stmt = select(func.coalesce(func.sum(column), 0)).where(
            LedgerTransaction.customer_address == address,
            LedgerTransaction.type.in_(_DEBIT_TYPES),
            LedgerTransaction.status == TransactionStatus.CONFIRMED,
        )
        return _money(await self._db.scalar(stmt))

    async def earned_balance(self, address: str) -> Decimal:
        credits = await self._credits(address, earned_only=True)
        debits = await self._debits(address, column=LedgerTransaction.earned_amount)
        return credits - debits

    async def total_balance(self, address: str) -> Decimal:
        credits = await self._credits(address, earned_only=False)
        debits = await self._debits(address, column=LedgerTransaction.amount)
        return credits - debits

    async def balances(self, address: str) -> LedgerBalances:
        total = await self.total_balance(address)
        earned = await self.earned_balance(address)
        redeemed_stmt = select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
            LedgerTransaction.customer_address == address,
            LedgerTransaction.type == TransactionType.REDEEM,
            LedgerTransaction.status == TransactionStatus.CONFIRMED,
        )
        return LedgerBalances(
            lifetime_earnings=await self.lifetime_earnings(address),
            total_balance=total,
            earned_balance=earned,
            market_balance=total - earned,
            redeemed_total=_money(await self._db.scalar(redeemed_stmt)),
        )

    async def snapshot(self, customer: Customer) -> BalanceSnapshot:
        """Balances, tier progress and remaining earning capacity for display."""

        balances = await self.balances(customer.address)
        progress = tier_progress(balances.lifetime_earnings)
        capacity = self._guard.capacity(customer)
        return BalanceSnapshot(
            address=customer.address,
            balances=balances,
            tier=progress.tier,
            next_tier=progress.next_tier,
            amount_to_next_tier=progress.amount_to_next,
            daily_remaining=capacity.daily_remaining,
            monthly_remaining=capacity.monthly_remaining,
            home_shop_id=await self._home_shops.resolve(customer.address),
            earnings_by_shop=await self._home_shops.shop_breakdown(customer.address),
            is_active=bool(customer.is_active),
        )

    async def earning_sources(self, address: str) -> EarningSources:
        """Redeemable credits per shop and source type, largest earning shop first."""

        stmt = (
            select(
                RcnSource.source_shop_id,
                Shop.name,
                RcnSource.source_type,
                func.sum(RcnSource.amount),
                func.max(RcnSource.earned_at),
            )
            .outerjoin(Shop, Shop.shop_id == RcnSource.source_shop_id)
            .where(RcnSource.customer_address == address, RcnSource.is_redeemable.is_(True))
            .group_by(RcnSource.source_shop_id, Shop.name, RcnSource.source_type)
        )
        shops: dict[str, ShopEarnings] = {}
        unattributed: dict[str, Decimal] = {}
        for shop_id, shop_name, source_type, amount, last_earned_at in (await self._db.execute(stmt)).all():
            amount = _money(amount)
            source = RcnSourceType(source_type).value
            if shop_id is None:
                unattributed[source] = unattributed.get(source, _ZERO) + amount
                continue
            earnings = shops.setdefault(shop_id, ShopEarnings(shop_id=shop_id, shop_name=shop_name))
            earnings.total_earned += amount
            earnings.by_source[source] = earnings.by_source.get(source, _ZERO) + amount
            last_earned_at = as_utc(last_earned_at)
            if earnings.last_earned_at is None or last_earned_at > earnings.last_earned_at:
                earnings.last_earned_at = last_earned_at

        ordered = sorted(shops.values(), key=lambda item: (-item.total_earned, item.shop_id))
        return EarningSources(
            address=address,
            shops=ordered,
            unattributed=unattributed,
            primary_shop_id=await self._home_shops.resolve(address),
            total_earned=sum((item.total_earned for item in ordered), _ZERO) + sum(unattributed.values(), _ZERO),
        )


__all__ = [
    "BalanceSnapshot",
    "CreditResult",
    "EarningSources",
    "LedgerBalances",
    "ProvenanceLedger",
    "ShopEarnings",
]
