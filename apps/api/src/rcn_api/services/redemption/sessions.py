"""Redemption session state machine.

``pending`` sessions become ``approved`` (customer signature), ``rejected``
(customer declines or shop cancels) or ``expired`` (sweep). Only ``approved``
sessions can be ``used``, which debits the ledger after re-verifying the
balance.
"""

from __future__ import annotations

import hashlib
from decimal import Decimal
from uuid import uuid4

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, as_utc, utcnow
from rcn_api.domain.errors import (
    ConflictError,
    ExpiredStateError,
    LedgerValidationError,
    LimitExceededError,
    NotFoundError,
    UnauthorizedError,
)
from rcn_api.domain.metadata import RedemptionMeta
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.domain.signatures import (
    approval_message,
    decode_qr_payload,
    encode_qr_payload,
    normalize_address,
    normalize_signature,
)
from rcn_api.models.ledger import LedgerTransaction
from rcn_api.models.redemption import RedemptionSession, RedemptionSessionStatus
from rcn_api.services.directory import DirectoryService
from rcn_api.services.ledger.provenance import ProvenanceLedger
from rcn_api.services.redemption.verifier import RedemptionDecision, RedemptionVerifier

_ZERO = Decimal("0")
_TERMINAL = {RedemptionSessionStatus.REJECTED, RedemptionSessionStatus.EXPIRED, RedemptionSessionStatus.USED}


class RedemptionSessionService:
    """Creates and advances redemption approval sessions."""

    _ALLOWED_TRANSITIONS: dict[RedemptionSessionStatus, set[RedemptionSessionStatus]] = {
        RedemptionSessionStatus.PENDING: {
            RedemptionSessionStatus.APPROVED,
            RedemptionSessionStatus.REJECTED,
            RedemptionSessionStatus.EXPIRED,
        },
        RedemptionSessionStatus.APPROVED: {RedemptionSessionStatus.USED},
        RedemptionSessionStatus.REJECTED: set(),
        RedemptionSessionStatus.EXPIRED: set(),
        RedemptionSessionStatus.USED: set(),
    }

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        directory: DirectoryService,
        verifier: RedemptionVerifier,
        ledger: ProvenanceLedger,
        policy: LedgerPolicy,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._directory = directory
        self._verifier = verifier
        self._ledger = ledger
        self._policy = policy
        self._clock = clock

    async def create_session(self, customer_address: str, shop_id: str, amount: Decimal) -> RedemptionSession:
        """Open a pending session for ``amount`` after a successful verification."""

        customer = await self._directory.require_customer(customer_address, lock=True)
        decision = await self._verifier.verify(customer.address, shop_id, amount)
        self._raise_if_denied(decision)

        now = self._clock()
        await self._expire_pair(customer.address, shop_id, now)
        existing = await self._db.scalar(
            select(RedemptionSession)
            .where(
                RedemptionSession.customer_address == customer.address,
                RedemptionSession.shop_id == shop_id,
                RedemptionSession.status == RedemptionSessionStatus.PENDING,
            )
            .with_for_update()
        )
        if existing is not None:
            raise ConflictError(
                "A pending redemption session already exists",
                session_id=existing.session_id,
                expires_at=as_utc(existing.expires_at).isoformat(),
            )

        session_id = str(uuid4())
        expires_at = now + self._policy.session_ttl
        session = RedemptionSession(
            session_id=session_id,
            customer_address=customer.address,
            shop_id=shop_id,
            max_amount=decision.requested_amount,
            status=RedemptionSessionStatus.PENDING,
            created_at=now,
            expires_at=expires_at,
            qr_code=encode_qr_payload(
                session_id=session_id,
                customer_address=customer.address,
                shop_id=shop_id,
                amount=decision.requested_amount,
                expires_at=expires_at,
            ),
            metadata_json={"is_home_shop": decision.is_home_shop},
        )
        self._db.add(session)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            raise ConflictError("A pending redemption session already exists", shop_id=shop_id) from exc

        logger.info(
            "Redemption session created",
            session_id=session_id,
            address=customer.address,
            shop_id=shop_id,
            amount=str(decision.requested_amount),
            expires_at=expires_at.isoformat(),
        )
        return session

    async def get_session(self, session_id: str, *, lock: bool = False) -> RedemptionSession:
        # Bulk sweeps bypass the identity map.
        stmt = (
            select(RedemptionSession)
            .where(RedemptionSession.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        session = await self._db.scalar(stmt)
        if session is None:
            raise NotFoundError("Redemption session not found", session_id=session_id)
        return session

    async def session_from_qr(self, payload: str) -> RedemptionSession:
        document = decode_qr_payload(payload)
        return await self.get_session(str(document["sessionId"]))

    async def list_for_customer(
        self,
        customer_address: str,
        *,
        status: RedemptionSessionStatus | None = None,
        limit: int = 50,
    ) -> list[RedemptionSession]:
        stmt = (
            select(RedemptionSession)
            .where(RedemptionSession.customer_address == normalize_address(customer_address))
            .order_by(RedemptionSession.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(RedemptionSession.status == status)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def approve(self, session_id: str, customer_address: str, signature: str) -> RedemptionSession:
        """Customer signs the session; fails once the session window has passed."""

        session = await self.get_session(session_id, lock=True)
        self._require_owner(session, customer_address)
        self._ensure_transition(session, RedemptionSessionStatus.APPROVED)
        now = self._clock()
        self._ensure_not_expired(session, now)

        normalized = normalize_signature(signature)
        decision = await self._verifier.verify(session.customer_address, session.shop_id, Decimal(session.max_amount))
        self._raise_if_denied(decision)

        message = approval_message(
            session_id=session.session_id,
            customer_address=session.customer_address,
            shop_id=session.shop_id,
            amount=Decimal(session.max_amount),
            expires_at=as_utc(session.expires_at),
        )
        session.status = RedemptionSessionStatus.APPROVED
        session.approved_at = now
        session.signature = normalized
        await self._db.flush()
        logger.info(
            "Redemption session approved",
            session_id=session.session_id,
            address=session.customer_address,
            message_hash=hashlib.sha256(message.encode("utf-8")).hexdigest()[:16],
            signature_prefix=normalized[:10],
        )
        return session

    async def reject(self, session_id: str, customer_address: str) -> RedemptionSession:
        session = await self.get_session(session_id, lock=True)
        self._require_owner(session, customer_address)
        self._ensure_transition(session, RedemptionSessionStatus.REJECTED)
        self._ensure_not_expired(session, self._clock())

        session.status = RedemptionSessionStatus.REJECTED
        await self._db.flush()
        logger.info("Redemption session rejected", session_id=session.session_id, address=session.customer_address)
        return session

    async def cancel(self, session_id: str, shop_id: str) -> RedemptionSession:
        """Shop withdraws a pending request before the customer answers."""

        session = await self.get_session(session_id, lock=True)
        if session.shop_id != shop_id:
            raise UnauthorizedError("Session is for a different shop", session_id=session_id)
        self._ensure_transition(session, RedemptionSessionStatus.REJECTED)

        session.status = RedemptionSessionStatus.REJECTED
        session.metadata_json = {**(session.metadata_json or {}), "cancelled_by": "shop"}
        await self._db.flush()
        logger.info("Redemption session cancelled by shop", session_id=session.session_id, shop_id=shop_id)
        return session

    async def consume(
        self,
        session_id: str,
        shop_id: str,
        amount: Decimal | None = None,
    ) -> tuple[RedemptionSession, LedgerTransaction]:
        """Shop redeems an approved session and the ledger is debited."""

        snapshot = await self.get_session(session_id)
        if snapshot.shop_id != shop_id:
            raise UnauthorizedError("Session is for a different shop", session_id=session_id)
        customer = await self._directory.require_customer(snapshot.customer_address, lock=True)
        session = await self.get_session(session_id, lock=True)

        self._ensure_transition(session, RedemptionSessionStatus.USED)
        now = self._clock()
        self._ensure_not_expired(session, now)

        requested = Decimal(amount) if amount is not None else Decimal(session.max_amount)
        if requested <= _ZERO:
            raise LedgerValidationError("Redemption amount must be positive", amount=str(requested))
        if requested > Decimal(session.max_amount):
            raise LimitExceededError(
                f"Requested amount {requested} exceeds session limit {session.max_amount}",
                requested=str(requested),
                max_amount=str(session.max_amount),
            )

        decision = await self._verifier.verify(customer.address, shop_id, requested)
        self._raise_if_denied(decision)

        transaction = await self._ledger.debit_redemption(
            customer,
            shop_id=shop_id,
            amount=requested,
            metadata=RedemptionMeta(
                session_id=session.session_id,
                is_home_shop=decision.is_home_shop,
                max_redeemable=decision.max_redeemable,
            ),
        )
        session.status = RedemptionSessionStatus.USED
        session.used_at = now
        session.redeemed_amount = requested
        session.redemption_transaction_id = transaction.id
        await self._db.flush()
        logger.info(
            "Redemption session used",
            session_id=session.session_id,
            shop_id=shop_id,
            amount=str(requested),
            transaction_id=transaction.id,
        )
        return session, transaction

    async def expire_old_sessions(self) -> int:
        """Mark every pending session past its expiry as expired; safe to repeat."""

        stmt = (
            update(RedemptionSession)
            .where(
                RedemptionSession.status == RedemptionSessionStatus.PENDING,
                RedemptionSession.expires_at <= self._clock(),
            )
            .values(status=RedemptionSessionStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        expired = result.rowcount or 0
        if expired:
            logger.info("Expired pending redemption sessions", count=expired)
        return expired

    async def _expire_pair(self, customer_address: str, shop_id: str, now) -> None:
        await self._db.execute(
            update(RedemptionSession)
            .where(
                RedemptionSession.customer_address == customer_address,
                RedemptionSession.shop_id == shop_id,
                RedemptionSession.status == RedemptionSessionStatus.PENDING,
                RedemptionSession.expires_at <= now,
            )
            .values(status=RedemptionSessionStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )

    def _ensure_transition(self, session: RedemptionSession, target: RedemptionSessionStatus) -> None:
        current = RedemptionSessionStatus(session.status)
        if target in self._ALLOWED_TRANSITIONS.get(current, set()):
            return
        if current in _TERMINAL:
            raise ExpiredStateError(
                f"Session is {current.value}",
                session_id=session.session_id,
                status=current.value,
            )
        raise LedgerValidationError(
            f"Session is {current.value}, cannot become {target.value}",
            session_id=session.session_id,
            status=current.value,
        )

    @staticmethod
    def _ensure_not_expired(session: RedemptionSession, now) -> None:
        if as_utc(session.expires_at) <= now:
            raise ExpiredStateError(
                "Session has expired",
                session_id=session.session_id,
                expires_at=as_utc(session.expires_at).isoformat(),
            )

    @staticmethod
    def _require_owner(session: RedemptionSession, customer_address: str) -> None:
        if session.customer_address != normalize_address(customer_address):
            raise UnauthorizedError("Session belongs to a different customer", session_id=session.session_id)

    @staticmethod
    def _raise_if_denied(decision: RedemptionDecision) -> None:
        if decision.can_redeem:
            return
        if decision.requested_amount <= _ZERO:
            raise LedgerValidationError(decision.message, requested=str(decision.requested_amount))
        raise LimitExceededError(
            decision.message,
            requested=str(decision.requested_amount),
            max_redeemable=str(decision.max_redeemable),
            earned_balance=str(decision.earned_balance),
            is_home_shop=decision.is_home_shop,
        )


__all__ = ["RedemptionSessionService"]
