"""Shop repair rewards, wallet gifts and market purchases."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from rcn_api.api.dependencies.actors import get_ledger_engine, require_customer_address, require_shop_id, unwrap
from rcn_api.schemas.ledger import (
    CreditResponse,
    MarketPurchaseRequest,
    ReferralOutcome,
    RepairRewardRequest,
    RepairRewardResponse,
    TransferRequest,
    TransferResponse,
)
from rcn_api.services.engine import LedgerEngine, RepairOutcome


router = APIRouter(prefix="/earnings", tags=["earnings"])


def _referral_outcome(outcome: RepairOutcome) -> ReferralOutcome | None:
    if outcome.referral is not None:
        return ReferralOutcome(
            completed=True,
            referrer_address=outcome.referral.referrer_address,
            referrer_reward=outcome.referral.referrer_reward,
            referee_reward=outcome.referral.referee_reward,
        )
    if outcome.referral_error is not None:
        return ReferralOutcome(
            completed=False,
            error=outcome.referral_error.error,
            message=outcome.referral_error.message,
        )
    return None


@router.post("/repair", response_model=RepairRewardResponse, status_code=status.HTTP_201_CREATED)
async def issue_repair_reward(
    payload: RepairRewardRequest,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RepairRewardResponse:
    outcome: RepairOutcome = unwrap(
        await engine.issue_repair_reward(
            shop_id,
            payload.customer_address,
            payload.repair_amount,
            promo_code=payload.promo_code,
            skip_tier_bonus=payload.skip_tier_bonus,
            reference=payload.reference,
        )
    )
    reward = outcome.reward
    return RepairRewardResponse(
        customer_address=reward.customer_address,
        shop_id=reward.shop_id,
        base_reward=reward.base_reward,
        tier_bonus=reward.tier_bonus,
        promo_bonus=reward.promo_bonus,
        total_reward=reward.total_reward,
        old_tier=reward.old_tier.value,
        new_tier=reward.new_tier.value,
        customer_created=reward.customer_created,
        promo_code=reward.promo_code,
        transaction_ids=reward.transaction_ids,
        referral=_referral_outcome(outcome),
    )


@router.post("/transfer", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def transfer_tokens(
    payload: TransferRequest,
    customer_address: str = Depends(require_customer_address),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> TransferResponse:
    transfer = unwrap(
        await engine.transfer_tokens(customer_address, payload.to_address, payload.amount, message=payload.message)
    )
    return TransferResponse(
        from_address=transfer.from_address,
        to_address=transfer.to_address,
        amount=transfer.amount,
        earned_share=transfer.debit.earned_amount,
        recipient_created=transfer.recipient_created,
    )


@router.post("/market-purchase", response_model=CreditResponse, status_code=status.HTTP_201_CREATED)
async def record_market_purchase(
    payload: MarketPurchaseRequest,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> CreditResponse:
    credit = unwrap(
        await engine.record_market_purchase(payload.customer_address, payload.amount, reference=payload.reference)
    )
    entry = credit.entry
    return CreditResponse(
        transaction_id=entry.transaction_id,
        customer_address=entry.customer_address,
        amount=entry.amount,
        source_type=entry.source_type.value,
        is_redeemable=entry.is_redeemable,
        created=credit.created,
    )
