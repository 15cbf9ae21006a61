"""Seed verified development shops into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rcn_api.core.settings import settings
from rcn_api.models.customer import Shop


class SeedShop(TypedDict):
    shop_id: str
    name: str
    wallet_address: str | None


DEV_SHOPS: list[SeedShop] = [
    {
        "shop_id": os.getenv("DEV_PRIMARY_SHOP_ID", "dev-shop-1"),
        "name": "Downtown Phone Repair",
        "wallet_address": os.getenv("DEV_PRIMARY_SHOP_WALLET"),
    },
    {
        "shop_id": os.getenv("DEV_SECONDARY_SHOP_ID", "dev-shop-2"),
        "name": "Uptown Laptop Clinic",
        "wallet_address": os.getenv("DEV_SECONDARY_SHOP_WALLET"),
    },
]


async def seed_shops(session: AsyncSession) -> None:
    for shop in DEV_SHOPS:
        record = await session.get(Shop, shop["shop_id"])
        if record:
            record.name = shop["name"]
            record.active = True
            record.verified = True
        else:
            session.add(
                Shop(
                    shop_id=shop["shop_id"],
                    name=shop["name"],
                    wallet_address=shop["wallet_address"],
                    active=True,
                    verified=True,
                )
            )
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_shops(session)
        print("Development shops ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
