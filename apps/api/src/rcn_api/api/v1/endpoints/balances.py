from __future__ import annotations

from fastapi import APIRouter, Depends

from rcn_api.api.dependencies.actors import get_ledger_engine, unwrap
from rcn_api.schemas.ledger import (
    BalanceSnapshotResponse,
    EarnedBalanceResponse,
    EarningSourcesResponse,
    ShopEarningsResponse,
)
from rcn_api.services.engine import LedgerEngine


router = APIRouter(prefix="/customers", tags=["balances"])


@router.get("/{address}/earned-balance", response_model=EarnedBalanceResponse)
async def get_earned_balance(
    address: str,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> EarnedBalanceResponse:
    return EarnedBalanceResponse.model_validate(unwrap(await engine.earned_balance(address)))


@router.get("/{address}/balance", response_model=BalanceSnapshotResponse)
async def get_balance_snapshot(
    address: str,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> BalanceSnapshotResponse:
    snapshot = unwrap(await engine.balance_snapshot(address))
    balances = snapshot.balances
    return BalanceSnapshotResponse(
        address=snapshot.address,
        lifetime_earnings=balances.lifetime_earnings,
        total_balance=balances.total_balance,
        earned_balance=balances.earned_balance,
        market_balance=balances.market_balance,
        redeemed_total=balances.redeemed_total,
        tier=snapshot.tier.value,
        next_tier=snapshot.next_tier.value if snapshot.next_tier else None,
        amount_to_next_tier=snapshot.amount_to_next_tier,
        daily_remaining=snapshot.daily_remaining,
        monthly_remaining=snapshot.monthly_remaining,
        home_shop_id=snapshot.home_shop_id,
        earnings_by_shop=snapshot.earnings_by_shop,
        is_active=snapshot.is_active,
    )


@router.get("/{address}/earning-sources", response_model=EarningSourcesResponse)
async def get_earning_sources(
    address: str,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> EarningSourcesResponse:
    sources = unwrap(await engine.earning_sources(address))
    return EarningSourcesResponse(
        address=sources.address,
        shops=[ShopEarningsResponse.model_validate(shop) for shop in sources.shops],
        unattributed=sources.unattributed,
        total_shops=len(sources.shops),
        primary_shop_id=sources.primary_shop_id,
        total_earned=sources.total_earned,
    )
