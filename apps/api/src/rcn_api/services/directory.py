"""Customer and shop lookups shared by ledger components."""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.domain.errors import ConflictError, LedgerValidationError, NotFoundError
from rcn_api.domain.home_shop import MARKET_SHOP_ID
from rcn_api.domain.signatures import normalize_address
from rcn_api.domain.tiers import CustomerTier
from rcn_api.models.customer import Customer, Shop


class DirectoryService:
    """Entity lookup for customers and shops."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_customer(self, address: str, *, lock: bool = False) -> Customer | None:
        stmt = select(Customer).where(Customer.address == normalize_address(address))
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def require_customer(self, address: str, *, lock: bool = False) -> Customer:
        customer = await self.get_customer(address, lock=lock)
        if customer is None:
            raise NotFoundError("Customer not found", address=address)
        return customer

    async def ensure_customer(self, address: str) -> tuple[Customer, bool]:
        """Return the locked customer row, creating it on first credit.

        The boolean is ``True`` when the row was created by this call.
        """

        customer = await self.get_customer(address, lock=True)
        if customer is not None:
            if not customer.is_active:
                raise LedgerValidationError("Customer account is deactivated", address=customer.address)
            return customer, False

        customer = Customer(address=normalize_address(address), tier=CustomerTier.BRONZE)
        self._db.add(customer)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            logger.warning("Detected race when creating customer", address=customer.address)
            raise ConflictError("Customer was created concurrently, retry the operation", address=customer.address) from exc
        logger.info("Created customer record", address=customer.address)
        return customer, True

    async def register_customer(self, address: str, *, name: str | None = None, email: str | None = None) -> Customer:
        existing = await self.get_customer(address)
        if existing is not None:
            raise ConflictError("Customer already registered", address=existing.address)
        customer, _ = await self.ensure_customer(address)
        customer.name = name
        customer.email = email
        await self._db.flush()
        return customer

    async def deactivate_customer(self, address: str) -> Customer:
        customer = await self.require_customer(address, lock=True)
        customer.is_active = False
        await self._db.flush()
        logger.info("Deactivated customer", address=customer.address)
        return customer

    async def get_shop(self, shop_id: str) -> Shop | None:
        return await self._db.get(Shop, shop_id)

    async def require_active_shop(self, shop_id: str) -> Shop:
        shop = await self.get_shop(shop_id)
        if shop is None:
            raise NotFoundError("Shop not found", shop_id=shop_id)
        if not shop.active or not shop.verified:
            raise LedgerValidationError("Shop is not active or not verified", shop_id=shop_id)
        return shop

    async def register_shop(
        self,
        shop_id: str,
        *,
        name: str,
        wallet_address: str | None = None,
        verified: bool = False,
    ) -> Shop:
        if shop_id == MARKET_SHOP_ID:
            raise LedgerValidationError("Shop id is reserved", shop_id=shop_id)
        if await self.get_shop(shop_id) is not None:
            raise ConflictError("Shop already registered", shop_id=shop_id)
        shop = Shop(
            shop_id=shop_id,
            name=name,
            wallet_address=normalize_address(wallet_address) if wallet_address else None,
            active=True,
            verified=verified,
        )
        self._db.add(shop)
        await self._db.flush()
        logger.info("Registered shop", shop_id=shop_id, verified=verified)
        return shop


__all__ = ["DirectoryService"]
