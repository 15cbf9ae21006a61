import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rcn_api import models  # noqa: E402,F401
from rcn_api.app import create_app  # noqa: E402
from rcn_api.db.base import Base  # noqa: E402
from rcn_api.db.session import get_session  # noqa: E402
from rcn_api.domain.policy import LedgerPolicy  # noqa: E402
from rcn_api.models.ledger import RcnSourceType  # noqa: E402
from rcn_api.services.engine import LedgerEngine  # noqa: E402


class FakeClock:
    """Controllable UTC clock injected into ledger services."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def ledger_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_engine(ledger_session, clock):
    """Engine over a fresh database with two verified shops registered."""

    engine = LedgerEngine(ledger_session, policy=LedgerPolicy(), clock=clock)
    for shop_id in ("shop-a", "shop-b"):
        result = await engine.register_shop(shop_id, name=f"Repair {shop_id}", verified=True)
        assert result.success
    return engine


@pytest.fixture
def credit(ledger_session, ledger_engine):
    """Write a provenance entry directly, bypassing the repair reward rules."""

    counter = {"next": 0}

    async def _credit(
        address: str,
        amount: str,
        *,
        shop_id: str | None = "shop-a",
        source_type: RcnSourceType = RcnSourceType.PROMOTION,
    ):
        counter["next"] += 1
        customer, _ = await ledger_engine.directory.ensure_customer(address)
        result = await ledger_engine.ledger.record_source(
            customer,
            source_type=source_type,
            amount=Decimal(amount),
            transaction_id=f"seed_{counter['next']}",
            shop_id=shop_id,
        )
        await ledger_session.commit()
        return result

    return _credit


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
