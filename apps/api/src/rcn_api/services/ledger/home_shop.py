"""Home shop lookups backed by provenance rows."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import as_utc
from rcn_api.domain.home_shop import EarningEntry, resolve_home_shop, shop_totals
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.models.ledger import RcnSource


class HomeShopResolver:
    def __init__(self, db_session: AsyncSession, policy: LedgerPolicy) -> None:
        self._db = db_session
        self._policy = policy

    async def _entries(self, address: str) -> list[EarningEntry]:
        stmt = (
            select(RcnSource.id, RcnSource.source_shop_id, RcnSource.amount, RcnSource.is_redeemable, RcnSource.earned_at)
            .where(RcnSource.customer_address == address, RcnSource.is_redeemable.is_(True))
            .order_by(RcnSource.earned_at, RcnSource.id)
        )
        result = await self._db.execute(stmt)
        return [
            EarningEntry(
                entry_id=row.id,
                shop_id=row.source_shop_id,
                amount=Decimal(row.amount),
                is_redeemable=bool(row.is_redeemable),
                earned_at=as_utc(row.earned_at),
            )
            for row in result.all()
        ]

    async def resolve(self, address: str) -> str | None:
        """Shop where ``address`` earned the most redeemable RCN, if any."""

        return resolve_home_shop(await self._entries(address), tie_break=self._policy.home_shop_tie_break)

    async def shop_breakdown(self, address: str) -> dict[str, Decimal]:
        return shop_totals(await self._entries(address))


__all__ = ["HomeShopResolver"]
