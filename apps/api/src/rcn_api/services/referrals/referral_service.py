"""Referral codes and referral bonus settlement."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, as_utc, utcnow
from rcn_api.domain.errors import ConflictError, ExpiredStateError, LedgerValidationError, NotFoundError
from rcn_api.domain.metadata import ReferralMeta
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.domain.signatures import normalize_address
from rcn_api.models.customer import Customer
from rcn_api.models.ledger import RcnSourceType
from rcn_api.models.referral import Referral, ReferralStatus
from rcn_api.services.directory import DirectoryService
from rcn_api.services.ledger.provenance import ProvenanceLedger

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_LENGTH = 8


@dataclass(slots=True)
class ReferralCompletion:
    referral: Referral
    referrer_address: str
    referee_address: str
    referrer_reward: Decimal
    referee_reward: Decimal


class ReferralService:
    """Issues referral codes and pays both sides when the referee first repairs."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        directory: DirectoryService,
        ledger: ProvenanceLedger,
        policy: LedgerPolicy,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._directory = directory
        self._ledger = ledger
        self._policy = policy
        self._clock = clock

    async def create_referral(self, referrer_address: str) -> Referral:
        referrer = await self._directory.require_customer(referrer_address, lock=True)
        if not referrer.is_active:
            raise LedgerValidationError("Customer account is deactivated", address=referrer.address)

        code = await self._generate_unique_code()
        now = self._clock()
        referral = Referral(
            referral_code=code,
            referrer_address=referrer.address,
            status=ReferralStatus.PENDING,
            created_at=now,
            expires_at=now + self._policy.referral_expiry,
        )
        self._db.add(referral)
        if referrer.referral_code is None:
            referrer.referral_code = code
        await self._db.flush()
        logger.info("Issued referral code", code=code, referrer=referrer.address)
        return referral

    async def get_referral(self, code: str) -> Referral:
        referral = await self._db.scalar(
            select(Referral)
            .where(Referral.referral_code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        if referral is None:
            raise NotFoundError("Referral code not found", code=code)
        return referral

    async def validate_code(self, code: str) -> Referral:
        """Return an unclaimed, unexpired referral for ``code``."""

        referral = await self.get_referral(code)
        if referral.status == ReferralStatus.EXPIRED or as_utc(referral.expires_at) <= self._clock():
            raise ExpiredStateError("Referral code has expired", code=referral.referral_code)
        if referral.status == ReferralStatus.COMPLETED or referral.referee_address is not None:
            raise ConflictError("Referral code has already been used", code=referral.referral_code)
        return referral

    async def register_referee(self, code: str, referee_address: str) -> Referral:
        referee_key = normalize_address(referee_address)
        referral = await self.validate_code(code)
        if referral.referrer_address == referee_key:
            raise LedgerValidationError("Customers cannot refer themselves", code=referral.referral_code)

        referee, _ = await self._directory.ensure_customer(referee_key)
        if referee.referred_by is not None:
            raise ConflictError("Customer has already been referred", address=referee.address)
        claimed = await self._db.scalar(select(Referral.id).where(Referral.referee_address == referee.address))
        if claimed is not None:
            raise ConflictError("Customer has already been referred", address=referee.address)

        referral.referee_address = referee.address
        referee.referred_by = referral.referrer_address
        await self._db.flush()
        logger.info(
            "Registered referee",
            code=referral.referral_code,
            referrer=referral.referrer_address,
            referee=referee.address,
        )
        return referral

    async def complete_on_first_repair(self, referee_address: str) -> ReferralCompletion | None:
        """Credit referrer and referee for a pending referral, if one exists.

        Both credits and the status change happen in the caller's transaction;
        a cap or settlement failure on either side leaves the referral pending.
        """

        referee_key = normalize_address(referee_address)
        referral = await self._db.scalar(
            select(Referral)
            .where(Referral.referee_address == referee_key, Referral.status == ReferralStatus.PENDING)
            .with_for_update()
        )
        if referral is None:
            return None

        locked = await self._lock_pair(referral.referrer_address, referee_key)
        referrer, referee = locked[referral.referrer_address], locked[referee_key]

        referrer_reward = self._policy.referrer_reward
        referee_reward = self._policy.referee_reward
        for role, customer, amount in (
            ("referrer", referrer, referrer_reward),
            ("referee", referee, referee_reward),
        ):
            await self._ledger.record_source(
                customer,
                source_type=RcnSourceType.REFERRAL_BONUS,
                amount=amount,
                transaction_id=f"referral_{role}_{referral.id}",
                shop_id=None,
                metadata=ReferralMeta(
                    referral_code=referral.referral_code,
                    referrer_address=referrer.address,
                    referee_address=referee.address,
                    referrer_tokens=referrer_reward,
                    referee_tokens=referee_reward,
                    role=role,
                ),
                reason=f"Referral bonus ({role})",
            )

        referral.status = ReferralStatus.COMPLETED
        referral.completed_at = self._clock()
        referral.reward_transaction_id = f"referral_referrer_{referral.id}"
        referrer.referral_count = (referrer.referral_count or 0) + 1
        await self._db.flush()
        logger.info(
            "Referral completed",
            code=referral.referral_code,
            referrer=referrer.address,
            referee=referee.address,
            referrer_reward=str(referrer_reward),
            referee_reward=str(referee_reward),
        )
        return ReferralCompletion(
            referral=referral,
            referrer_address=referrer.address,
            referee_address=referee.address,
            referrer_reward=referrer_reward,
            referee_reward=referee_reward,
        )

    async def expire_stale(self) -> int:
        """Expire unclaimed referral codes past their validity window."""

        result = await self._db.execute(
            update(Referral)
            .where(
                Referral.status == ReferralStatus.PENDING,
                Referral.referee_address.is_(None),
                Referral.expires_at <= self._clock(),
            )
            .values(status=ReferralStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def _lock_pair(self, first: str, second: str) -> dict[str, Customer]:
        # Fixed lock order keeps concurrent completions from deadlocking.
        locked: dict[str, Customer] = {}
        for address in sorted({first, second}):
            locked[address] = await self._directory.require_customer(address, lock=True)
        return locked

    async def _generate_unique_code(self) -> str:
        while True:
            code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))
            exists = await self._db.scalar(select(Referral.id).where(Referral.referral_code == code))
            if exists is None:
                return code


__all__ = ["ReferralCompletion", "ReferralService"]
