"""Promo code management, validation and usage accounting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, as_utc, utcnow
from rcn_api.domain.errors import ConflictError, LedgerValidationError, LimitExceededError, NotFoundError
from rcn_api.domain.metadata import PromoMeta
from rcn_api.domain.promo_rules import (
    PromoBonusType,
    PromoSnapshot,
    compute_bonus,
    normalize_code,
    validate_definition,
    validate_promo,
)
from rcn_api.domain.signatures import normalize_address
from rcn_api.models.customer import Customer
from rcn_api.models.ledger import RcnSourceType
from rcn_api.models.promo import PromoCode, PromoCodeUse
from rcn_api.services.directory import DirectoryService
from rcn_api.services.ledger.provenance import CreditResult, ProvenanceLedger

_ZERO = Decimal("0")


@dataclass(slots=True)
class PromoEvaluation:
    promo_code_id: int
    code: str
    bonus_type: PromoBonusType
    base_reward: Decimal
    bonus_amount: Decimal


@dataclass(slots=True)
class PromoApplication:
    evaluation: PromoEvaluation
    use: PromoCodeUse
    credit: CreditResult


class PromoService:
    """Shop promo codes backed by a transactional usage counter."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        directory: DirectoryService,
        ledger: ProvenanceLedger,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._directory = directory
        self._ledger = ledger
        self._clock = clock

    async def create_promo_code(
        self,
        shop_id: str,
        *,
        code: str,
        name: str,
        bonus_type: PromoBonusType,
        bonus_value: Decimal,
        start_date: datetime,
        end_date: datetime,
        max_bonus: Decimal | None = None,
        total_usage_limit: int | None = None,
        per_customer_limit: int = 1,
        description: str | None = None,
    ) -> PromoCode:
        await self._directory.require_active_shop(shop_id)
        normalized = normalize_code(code)
        if not normalized:
            raise LedgerValidationError("Promo code is required")
        validate_definition(
            bonus_type=bonus_type,
            bonus_value=Decimal(bonus_value),
            max_bonus=Decimal(max_bonus) if max_bonus is not None else None,
            start_date=as_utc(start_date),
            end_date=as_utc(end_date),
            total_usage_limit=total_usage_limit,
            per_customer_limit=per_customer_limit,
        )
        if await self._find(normalized, shop_id) is not None:
            raise ConflictError("Promo code already exists for this shop", code=normalized, shop_id=shop_id)

        promo = PromoCode(
            code=normalized,
            shop_id=shop_id,
            name=name,
            description=description,
            bonus_type=bonus_type,
            bonus_value=Decimal(bonus_value),
            max_bonus=max_bonus,
            start_date=as_utc(start_date),
            end_date=as_utc(end_date),
            is_active=True,
            total_usage_limit=total_usage_limit,
            per_customer_limit=per_customer_limit,
            times_used=0,
            total_bonus_issued=Decimal("0"),
        )
        self._db.add(promo)
        await self._db.flush()
        logger.info("Created promo code", code=normalized, shop_id=shop_id, bonus_type=bonus_type.value)
        return promo

    async def get_promo_code(self, promo_code_id: int, *, shop_id: str | None = None, lock: bool = False) -> PromoCode:
        stmt = select(PromoCode).where(PromoCode.id == promo_code_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        promo = await self._db.scalar(stmt)
        if promo is None or (shop_id is not None and promo.shop_id != shop_id):
            raise NotFoundError("Promo code not found", promo_code_id=promo_code_id)
        return promo

    async def deactivate_promo_code(self, shop_id: str, promo_code_id: int) -> PromoCode:
        promo = await self.get_promo_code(promo_code_id, shop_id=shop_id, lock=True)
        promo.is_active = False
        await self._db.flush()
        logger.info("Deactivated promo code", code=promo.code, shop_id=shop_id)
        return promo

    async def validate_promo_code(
        self,
        code: str,
        shop_id: str,
        customer_address: str,
        base_reward: Decimal,
    ) -> PromoEvaluation:
        """Check eligibility and preview the bonus without consuming the code."""

        if Decimal(base_reward) <= _ZERO:
            raise LedgerValidationError("Base reward must be positive", base_reward=str(base_reward))
        promo = await self._find(normalize_code(code), shop_id)
        if promo is None:
            raise LedgerValidationError("Invalid promo code", code=code, reason="unknown")
        snapshot = self._snapshot(promo)
        address = normalize_address(customer_address)
        validate_promo(snapshot, customer_uses=await self._customer_uses(promo.id, address), now=self._clock())
        return PromoEvaluation(
            promo_code_id=promo.id,
            code=promo.code,
            bonus_type=snapshot.bonus_type,
            base_reward=Decimal(base_reward),
            bonus_amount=compute_bonus(snapshot, Decimal(base_reward)),
        )

    async def record_use(
        self,
        promo_code_id: int,
        *,
        customer_address: str,
        shop_id: str,
        base_reward: Decimal,
        bonus_amount: Decimal,
        transaction_id: str | None = None,
    ) -> PromoCodeUse:
        """Insert a use row and bump the counters in the caller's transaction."""

        customer_address = normalize_address(customer_address)
        base_reward = Decimal(base_reward)
        bonus_amount = Decimal(bonus_amount)
        if base_reward <= _ZERO:
            raise LedgerValidationError("Base reward must be positive", base_reward=str(base_reward))
        promo = await self.get_promo_code(promo_code_id, lock=True)
        customer_uses = await self._customer_uses(promo.id, customer_address)
        if customer_uses >= promo.per_customer_limit:
            raise ConflictError(
                "Promo code already used by this customer",
                code=promo.code,
                limit=promo.per_customer_limit,
            )

        result = await self._db.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo.id,
                or_(PromoCode.total_usage_limit.is_(None), PromoCode.times_used < PromoCode.total_usage_limit),
            )
            .values(
                times_used=PromoCode.times_used + 1,
                total_bonus_issued=PromoCode.total_bonus_issued + bonus_amount,
            )
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise LimitExceededError("Promo code usage limit reached", code=promo.code, limit=promo.total_usage_limit)

        use = PromoCodeUse(
            promo_code_id=promo.id,
            customer_address=customer_address,
            shop_id=shop_id,
            base_reward=base_reward,
            bonus_amount=bonus_amount,
            total_reward=base_reward + bonus_amount,
            transaction_id=transaction_id,
            used_at=self._clock(),
        )
        self._db.add(use)
        await self._db.flush()
        await self._db.refresh(promo)
        logger.info(
            "Recorded promo code use",
            code=promo.code,
            address=customer_address,
            bonus=str(bonus_amount),
            times_used=promo.times_used,
        )
        return use

    async def apply_promo_code(
        self,
        code: str,
        shop_id: str,
        customer: Customer,
        base_reward: Decimal,
        *,
        transaction_id: str | None = None,
    ) -> PromoApplication:
        """Validate, consume and credit a promo bonus for a locked customer.

        A ``transaction_id`` that was already credited replays the earlier
        application instead of consuming the code again.
        """

        if transaction_id is not None:
            replayed = await self._replay(transaction_id, customer)
            if replayed is not None:
                return replayed

        evaluation = await self.validate_promo_code(code, shop_id, customer.address, base_reward)
        transaction_id = transaction_id or f"promo_{evaluation.promo_code_id}_{uuid4().hex}"
        use = await self.record_use(
            evaluation.promo_code_id,
            customer_address=customer.address,
            shop_id=shop_id,
            base_reward=evaluation.base_reward,
            bonus_amount=evaluation.bonus_amount,
            transaction_id=transaction_id,
        )
        credit = await self._ledger.record_source(
            customer,
            source_type=RcnSourceType.PROMOTION,
            amount=evaluation.bonus_amount,
            transaction_id=transaction_id,
            shop_id=shop_id,
            metadata=PromoMeta(
                promo_code=evaluation.code,
                promo_code_id=evaluation.promo_code_id,
                base_reward=evaluation.base_reward,
                bonus_amount=evaluation.bonus_amount,
            ),
            reason=f"Promo code {evaluation.code}",
        )
        return PromoApplication(evaluation=evaluation, use=use, credit=credit)

    async def promo_stats(self, shop_id: str, promo_code_id: int) -> dict[str, Any]:
        promo = await self.get_promo_code(promo_code_id, shop_id=shop_id)
        row = (
            await self._db.execute(
                select(
                    func.count(PromoCodeUse.id),
                    func.count(func.distinct(PromoCodeUse.customer_address)),
                    func.coalesce(func.sum(PromoCodeUse.bonus_amount), 0),
                ).where(PromoCodeUse.promo_code_id == promo.id)
            )
        ).one()
        return {
            "promo_code_id": promo.id,
            "code": promo.code,
            "times_used": promo.times_used,
            "total_bonus_issued": Decimal(str(promo.total_bonus_issued)),
            "recorded_uses": int(row[0]),
            "unique_customers": int(row[1]),
            "recorded_bonus": Decimal(str(row[2])),
            "is_active": promo.is_active,
        }

    async def _replay(self, transaction_id: str, customer: Customer) -> PromoApplication | None:
        use = await self._db.scalar(select(PromoCodeUse).where(PromoCodeUse.transaction_id == transaction_id))
        if use is None:
            return None
        promo = await self.get_promo_code(use.promo_code_id)
        evaluation = PromoEvaluation(
            promo_code_id=promo.id,
            code=promo.code,
            bonus_type=PromoBonusType(promo.bonus_type),
            base_reward=Decimal(str(use.base_reward)),
            bonus_amount=Decimal(str(use.bonus_amount)),
        )
        credit = await self._ledger.record_source(
            customer,
            source_type=RcnSourceType.PROMOTION,
            amount=evaluation.bonus_amount,
            transaction_id=transaction_id,
            shop_id=use.shop_id,
        )
        logger.info("Replayed promo code use", code=promo.code, transaction_id=transaction_id)
        return PromoApplication(evaluation=evaluation, use=use, credit=credit)

    async def _find(self, code: str, shop_id: str) -> PromoCode | None:
        return await self._db.scalar(select(PromoCode).where(PromoCode.code == code, PromoCode.shop_id == shop_id))

    async def _customer_uses(self, promo_code_id: int, customer_address: str) -> int:
        count = await self._db.scalar(
            select(func.count(PromoCodeUse.id)).where(
                PromoCodeUse.promo_code_id == promo_code_id,
                PromoCodeUse.customer_address == customer_address,
            )
        )
        return int(count or 0)

    @staticmethod
    def _snapshot(promo: PromoCode) -> PromoSnapshot:
        return PromoSnapshot(
            promo_code_id=promo.id,
            code=promo.code,
            shop_id=promo.shop_id,
            bonus_type=PromoBonusType(promo.bonus_type),
            bonus_value=Decimal(str(promo.bonus_value)),
            max_bonus=Decimal(str(promo.max_bonus)) if promo.max_bonus is not None else None,
            start_date=as_utc(promo.start_date),
            end_date=as_utc(promo.end_date),
            is_active=bool(promo.is_active),
            total_usage_limit=promo.total_usage_limit,
            per_customer_limit=int(promo.per_customer_limit or 1),
            times_used=int(promo.times_used or 0),
        )


__all__ = ["PromoApplication", "PromoEvaluation", "PromoService"]
