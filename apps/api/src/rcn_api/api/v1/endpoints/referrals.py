from __future__ import annotations

from fastapi import APIRouter, Depends, status

from rcn_api.api.dependencies.actors import get_ledger_engine, require_customer_address, unwrap
from rcn_api.schemas.ledger import ReferralRegisterRequest, ReferralResponse
from rcn_api.services.engine import LedgerEngine


router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.post("", response_model=ReferralResponse, status_code=status.HTTP_201_CREATED)
async def create_referral(
    customer_address: str = Depends(require_customer_address),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> ReferralResponse:
    return ReferralResponse.model_validate(unwrap(await engine.create_referral(customer_address)))


@router.post("/register", response_model=ReferralResponse)
async def register_referee(
    payload: ReferralRegisterRequest,
    customer_address: str = Depends(require_customer_address),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> ReferralResponse:
    return ReferralResponse.model_validate(unwrap(await engine.register_referee(payload.code, customer_address)))


@router.get("/{code}", response_model=ReferralResponse)
async def get_referral(
    code: str,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> ReferralResponse:
    return ReferralResponse.model_validate(unwrap(await engine.get_referral(code)))
