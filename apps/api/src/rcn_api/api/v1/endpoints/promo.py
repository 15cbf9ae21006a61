"""Shop promo codes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from rcn_api.api.dependencies.actors import get_ledger_engine, require_shop_id, unwrap
from rcn_api.schemas.ledger import (
    PromoCodeCreateRequest,
    PromoCodeResponse,
    PromoEvaluationResponse,
    PromoRedeemRequest,
    PromoStatsResponse,
    PromoUseResponse,
)
from rcn_api.services.engine import LedgerEngine


router = APIRouter(tags=["promotions"])


@router.post("/promo-codes", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_promo_code(
    payload: PromoCodeCreateRequest,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> PromoCodeResponse:
    promo = unwrap(
        await engine.create_promo_code(
            shop_id,
            code=payload.code,
            name=payload.name,
            description=payload.description,
            bonus_type=payload.bonus_type,
            bonus_value=payload.bonus_value,
            max_bonus=payload.max_bonus,
            start_date=payload.start_date,
            end_date=payload.end_date,
            total_usage_limit=payload.total_usage_limit,
            per_customer_limit=payload.per_customer_limit,
        )
    )
    return PromoCodeResponse.model_validate(promo)


@router.post("/promo-codes/{promo_code_id}/deactivate", response_model=PromoCodeResponse)
async def deactivate_promo_code(
    promo_code_id: int,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> PromoCodeResponse:
    return PromoCodeResponse.model_validate(unwrap(await engine.deactivate_promo_code(shop_id, promo_code_id)))


@router.get("/promo-codes/{promo_code_id}/stats", response_model=PromoStatsResponse)
async def promo_code_stats(
    promo_code_id: int,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> PromoStatsResponse:
    return PromoStatsResponse.model_validate(unwrap(await engine.promo_stats(shop_id, promo_code_id)))


@router.post("/promo/validate", response_model=PromoEvaluationResponse)
async def validate_promo_code(
    payload: PromoRedeemRequest,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> PromoEvaluationResponse:
    evaluation = unwrap(
        await engine.validate_promo_code(payload.code, shop_id, payload.customer_address, payload.base_reward)
    )
    return PromoEvaluationResponse.model_validate(evaluation)


@router.post("/promo/use", response_model=PromoUseResponse, status_code=status.HTTP_201_CREATED)
async def use_promo_code(
    payload: PromoRedeemRequest,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> PromoUseResponse:
    application = unwrap(
        await engine.use_promo_code(payload.code, shop_id, payload.customer_address, payload.base_reward)
    )
    return PromoUseResponse(
        evaluation=PromoEvaluationResponse.model_validate(application.evaluation),
        use_id=application.use.id,
        transaction_id=application.use.transaction_id,
        total_reward=application.use.total_reward,
    )
