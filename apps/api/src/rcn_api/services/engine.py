"""Ledger engine boundary.

Every public coroutine runs one unit of work in a single database
transaction. Business failures (``LedgerError``) roll the transaction back
and come back as a failed ``OperationResult``; anything else rolls back and
propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, utcnow
from rcn_api.core.settings import Settings
from rcn_api.domain.errors import LedgerError
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.domain.promo_rules import PromoBonusType
from rcn_api.models.redemption import RedemptionSessionStatus
from rcn_api.observability.tracing import ledger_span
from rcn_api.services.directory import DirectoryService
from rcn_api.services.earning.earning_service import EarningService, RepairReward
from rcn_api.services.ledger.capacity_guard import EarningCapacityGuard
from rcn_api.services.ledger.home_shop import HomeShopResolver
from rcn_api.services.ledger.provenance import ProvenanceLedger
from rcn_api.services.minter import TokenMinter
from rcn_api.services.promotions.promo_service import PromoService
from rcn_api.services.redemption.sessions import RedemptionSessionService
from rcn_api.services.redemption.verifier import RedemptionRequest, RedemptionVerifier
from rcn_api.services.referrals.referral_service import ReferralCompletion, ReferralService


@dataclass(slots=True)
class OperationResult:
    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: LedgerError) -> "OperationResult":
        return cls(success=False, error=exc.code, message=exc.message, details=dict(exc.details))


@dataclass(slots=True)
class RepairOutcome:
    reward: RepairReward
    referral: ReferralCompletion | None = None
    referral_error: OperationResult | None = None


class LedgerEngine:
    """Wires the ledger components around one ``AsyncSession``."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        policy: LedgerPolicy,
        minter: TokenMinter | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self.policy = policy
        self.directory = DirectoryService(db_session)
        guard = EarningCapacityGuard(policy, clock=clock)
        self.home_shops = HomeShopResolver(db_session, policy)
        self.ledger = ProvenanceLedger(
            db_session,
            policy=policy,
            capacity_guard=guard,
            home_shop_resolver=self.home_shops,
            minter=minter,
            clock=clock,
        )
        self.verifier = RedemptionVerifier(
            directory=self.directory,
            ledger=self.ledger,
            home_shop_resolver=self.home_shops,
            policy=policy,
        )
        self.sessions = RedemptionSessionService(
            db_session,
            directory=self.directory,
            verifier=self.verifier,
            ledger=self.ledger,
            policy=policy,
            clock=clock,
        )
        self.promotions = PromoService(db_session, directory=self.directory, ledger=self.ledger, clock=clock)
        self.referrals = ReferralService(
            db_session,
            directory=self.directory,
            ledger=self.ledger,
            policy=policy,
            clock=clock,
        )
        self.earnings = EarningService(
            db_session,
            directory=self.directory,
            ledger=self.ledger,
            promotions=self.promotions,
            policy=policy,
        )

    @classmethod
    def from_settings(
        cls,
        db_session: AsyncSession,
        settings: Settings,
        *,
        minter: TokenMinter | None = None,
        clock: Clock = utcnow,
    ) -> "LedgerEngine":
        return cls(db_session, policy=LedgerPolicy.from_settings(settings), minter=minter, clock=clock)

    async def _run(self, operation: str, action: Callable[[], Awaitable[Any]], **context: Any) -> OperationResult:
        with ledger_span(operation, **context) as span:
            try:
                data = await action()
                await self._db.commit()
            except LedgerError as exc:
                await self._db.rollback()
                span.set_attribute("rcn.error_code", exc.code)
                logger.warning(
                    "Ledger operation rejected",
                    operation=operation,
                    error_code=exc.code,
                    reason=exc.message,
                    **context,
                )
                return OperationResult.fail(exc)
            except Exception:
                await self._db.rollback()
                logger.exception("Ledger operation failed", operation=operation, **context)
                raise
        return OperationResult.ok(data)

    # Directory

    async def register_shop(
        self,
        shop_id: str,
        *,
        name: str,
        wallet_address: str | None = None,
        verified: bool = False,
    ) -> OperationResult:
        return await self._run(
            "register_shop",
            lambda: self.directory.register_shop(shop_id, name=name, wallet_address=wallet_address, verified=verified),
            shop_id=shop_id,
        )

    async def register_customer(self, address: str, *, name: str | None = None, email: str | None = None) -> OperationResult:
        return await self._run(
            "register_customer",
            lambda: self.directory.register_customer(address, name=name, email=email),
            address=address,
        )

    async def deactivate_customer(self, address: str) -> OperationResult:
        return await self._run("deactivate_customer", lambda: self.directory.deactivate_customer(address), address=address)

    # Balances and verification

    async def verify_redemption(self, customer_address: str, shop_id: str, amount: Decimal) -> OperationResult:
        return await self._run(
            "verify_redemption",
            lambda: self.verifier.verify(customer_address, shop_id, amount),
            address=customer_address,
            shop_id=shop_id,
        )

    async def batch_verify_redemptions(self, requests: Sequence[RedemptionRequest]) -> OperationResult:
        return await self._run(
            "batch_verify_redemptions",
            lambda: self.verifier.verify_many(requests),
            batch_size=len(requests),
        )

    async def earning_sources(self, address: str) -> OperationResult:
        async def action():
            customer = await self.directory.require_customer(address)
            return await self.ledger.earning_sources(customer.address)

        return await self._run("earning_sources", action, address=address)

    async def earned_balance(self, address: str) -> OperationResult:
        async def action():
            customer = await self.directory.require_customer(address)
            balances = await self.ledger.balances(customer.address)
            return {
                "address": customer.address,
                "earned_balance": balances.earned_balance,
                "total_balance": balances.total_balance,
                "market_balance": balances.market_balance,
                "home_shop_id": await self.home_shops.resolve(customer.address),
            }

        return await self._run("earned_balance", action, address=address)

    async def balance_snapshot(self, address: str) -> OperationResult:
        async def action():
            customer = await self.directory.require_customer(address)
            return await self.ledger.snapshot(customer)

        return await self._run("balance_snapshot", action, address=address)

    # Redemption sessions

    async def create_redemption_session(self, customer_address: str, shop_id: str, amount: Decimal) -> OperationResult:
        return await self._run(
            "create_redemption_session",
            lambda: self.sessions.create_session(customer_address, shop_id, amount),
            address=customer_address,
            shop_id=shop_id,
        )

    async def approve_redemption_session(self, session_id: str, customer_address: str, signature: str) -> OperationResult:
        return await self._run(
            "approve_redemption_session",
            lambda: self.sessions.approve(session_id, customer_address, signature),
            session_id=session_id,
        )

    async def reject_redemption_session(self, session_id: str, customer_address: str) -> OperationResult:
        return await self._run(
            "reject_redemption_session",
            lambda: self.sessions.reject(session_id, customer_address),
            session_id=session_id,
        )

    async def cancel_redemption_session(self, session_id: str, shop_id: str) -> OperationResult:
        return await self._run(
            "cancel_redemption_session",
            lambda: self.sessions.cancel(session_id, shop_id),
            session_id=session_id,
        )

    async def use_redemption_session(self, session_id: str, shop_id: str, amount: Decimal | None = None) -> OperationResult:
        return await self._run(
            "use_redemption_session",
            lambda: self.sessions.consume(session_id, shop_id, amount),
            session_id=session_id,
            shop_id=shop_id,
        )

    async def get_redemption_session(self, session_id: str) -> OperationResult:
        return await self._run("get_redemption_session", lambda: self.sessions.get_session(session_id))

    async def redemption_session_from_qr(self, payload: str) -> OperationResult:
        return await self._run("redemption_session_from_qr", lambda: self.sessions.session_from_qr(payload))

    async def list_redemption_sessions(
        self,
        customer_address: str,
        *,
        status: RedemptionSessionStatus | None = None,
        limit: int = 50,
    ) -> OperationResult:
        return await self._run(
            "list_redemption_sessions",
            lambda: self.sessions.list_for_customer(customer_address, status=status, limit=limit),
            address=customer_address,
        )

    async def expire_redemption_sessions(self) -> OperationResult:
        return await self._run("expire_redemption_sessions", self.sessions.expire_old_sessions)

    # Earning

    async def issue_repair_reward(
        self,
        shop_id: str,
        customer_address: str,
        repair_amount: Decimal,
        *,
        promo_code: str | None = None,
        skip_tier_bonus: bool = False,
        reference: str | None = None,
    ) -> OperationResult:
        """Credit a repair and then settle any pending referral in its own transaction."""

        result = await self._run(
            "issue_repair_reward",
            lambda: self.earnings.issue_repair_reward(
                shop_id,
                customer_address,
                repair_amount,
                promo_code=promo_code,
                skip_tier_bonus=skip_tier_bonus,
                reference=reference,
            ),
            shop_id=shop_id,
            address=customer_address,
        )
        if not result.success:
            return result

        reward: RepairReward = result.data
        outcome = RepairOutcome(reward=reward)
        referral = await self._run(
            "complete_referral",
            lambda: self.referrals.complete_on_first_repair(reward.customer_address),
            address=reward.customer_address,
        )
        if referral.success:
            outcome.referral = referral.data
        else:
            outcome.referral_error = referral
        return OperationResult.ok(outcome)

    async def transfer_tokens(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        *,
        message: str | None = None,
    ) -> OperationResult:
        return await self._run(
            "transfer_tokens",
            lambda: self.earnings.transfer_tokens(from_address, to_address, amount, message=message),
            from_address=from_address,
            to_address=to_address,
        )

    async def record_market_purchase(self, address: str, amount: Decimal, *, reference: str | None = None) -> OperationResult:
        return await self._run(
            "record_market_purchase",
            lambda: self.earnings.record_market_purchase(address, amount, reference=reference),
            address=address,
        )

    # Promotions

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
    ) -> OperationResult:
        return await self._run(
            "create_promo_code",
            lambda: self.promotions.create_promo_code(
                shop_id,
                code=code,
                name=name,
                bonus_type=bonus_type,
                bonus_value=bonus_value,
                start_date=start_date,
                end_date=end_date,
                max_bonus=max_bonus,
                total_usage_limit=total_usage_limit,
                per_customer_limit=per_customer_limit,
                description=description,
            ),
            shop_id=shop_id,
            code=code,
        )

    async def deactivate_promo_code(self, shop_id: str, promo_code_id: int) -> OperationResult:
        return await self._run(
            "deactivate_promo_code",
            lambda: self.promotions.deactivate_promo_code(shop_id, promo_code_id),
            shop_id=shop_id,
        )

    async def validate_promo_code(
        self,
        code: str,
        shop_id: str,
        customer_address: str,
        base_reward: Decimal,
    ) -> OperationResult:
        return await self._run(
            "validate_promo_code",
            lambda: self.promotions.validate_promo_code(code, shop_id, customer_address, base_reward),
            shop_id=shop_id,
            code=code,
        )

    async def use_promo_code(
        self,
        code: str,
        shop_id: str,
        customer_address: str,
        base_reward: Decimal,
    ) -> OperationResult:
        async def action():
            await self.directory.require_active_shop(shop_id)
            customer, _ = await self.directory.ensure_customer(customer_address)
            return await self.promotions.apply_promo_code(code, shop_id, customer, Decimal(base_reward))

        return await self._run("use_promo_code", action, shop_id=shop_id, code=code)

    async def promo_stats(self, shop_id: str, promo_code_id: int) -> OperationResult:
        return await self._run("promo_stats", lambda: self.promotions.promo_stats(shop_id, promo_code_id))

    # Referrals

    async def create_referral(self, referrer_address: str) -> OperationResult:
        return await self._run(
            "create_referral",
            lambda: self.referrals.create_referral(referrer_address),
            address=referrer_address,
        )

    async def register_referee(self, code: str, referee_address: str) -> OperationResult:
        return await self._run(
            "register_referee",
            lambda: self.referrals.register_referee(code, referee_address),
            code=code,
        )

    async def get_referral(self, code: str) -> OperationResult:
        return await self._run("get_referral", lambda: self.referrals.get_referral(code), code=code)

    async def expire_stale_referrals(self) -> OperationResult:
        return await self._run("expire_stale_referrals", self.referrals.expire_stale)


__all__ = ["LedgerEngine", "OperationResult", "RepairOutcome"]
