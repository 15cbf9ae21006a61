"""Redemption verification and two-party redemption sessions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from rcn_api.api.dependencies.actors import get_ledger_engine, require_customer_address, require_shop_id, unwrap
from rcn_api.models.redemption import RedemptionSessionStatus
from rcn_api.schemas.ledger import (
    RedemptionBatchItemResponse,
    RedemptionBatchVerifyRequest,
    RedemptionDecisionResponse,
    RedemptionSessionApproveRequest,
    RedemptionSessionCreateRequest,
    RedemptionSessionQrRequest,
    RedemptionSessionResponse,
    RedemptionSessionUseRequest,
    RedemptionUseResponse,
    RedemptionVerifyRequest,
)
from rcn_api.services.engine import LedgerEngine
from rcn_api.services.redemption.verifier import RedemptionRequest


router = APIRouter(tags=["redemption"])


@router.post("/redemption/verify", response_model=RedemptionDecisionResponse)
async def verify_redemption(
    payload: RedemptionVerifyRequest,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionDecisionResponse:
    decision = unwrap(await engine.verify_redemption(payload.customer_address, payload.shop_id, payload.amount))
    return RedemptionDecisionResponse.model_validate(decision)


@router.post("/redemption/verify-batch", response_model=list[RedemptionBatchItemResponse])
async def verify_redemption_batch(
    payload: RedemptionBatchVerifyRequest,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> list[RedemptionBatchItemResponse]:
    requests = [
        RedemptionRequest(customer_address=item.customer_address, shop_id=item.shop_id, amount=item.amount)
        for item in payload.requests
    ]
    results = unwrap(await engine.batch_verify_redemptions(requests))
    return [
        RedemptionBatchItemResponse(
            index=result.index,
            customer_address=result.request.customer_address,
            shop_id=result.request.shop_id,
            can_redeem=result.can_redeem,
            decision=RedemptionDecisionResponse.model_validate(result.decision) if result.decision else None,
            error=result.error,
            message=result.message,
        )
        for result in results
    ]


@router.post(
    "/redemption-sessions",
    response_model=RedemptionSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_redemption_session(
    payload: RedemptionSessionCreateRequest,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionSessionResponse:
    session = unwrap(await engine.create_redemption_session(payload.customer_address, shop_id, payload.amount))
    return RedemptionSessionResponse.model_validate(session)


@router.post("/redemption-sessions/qr", response_model=RedemptionSessionResponse)
async def redemption_session_from_qr(
    payload: RedemptionSessionQrRequest,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionSessionResponse:
    session = unwrap(await engine.redemption_session_from_qr(payload.qr_code))
    if session.shop_id != shop_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Session is for a different shop")
    return RedemptionSessionResponse.model_validate(session)


@router.get("/redemption-sessions/{session_id}", response_model=RedemptionSessionResponse)
async def get_redemption_session(
    session_id: str,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionSessionResponse:
    return RedemptionSessionResponse.model_validate(unwrap(await engine.get_redemption_session(session_id)))


@router.post("/redemption-sessions/{session_id}/approve", response_model=RedemptionSessionResponse)
async def approve_redemption_session(
    session_id: str,
    payload: RedemptionSessionApproveRequest,
    customer_address: str = Depends(require_customer_address),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionSessionResponse:
    session = unwrap(await engine.approve_redemption_session(session_id, customer_address, payload.signature))
    return RedemptionSessionResponse.model_validate(session)


@router.post("/redemption-sessions/{session_id}/reject", response_model=RedemptionSessionResponse)
async def reject_redemption_session(
    session_id: str,
    customer_address: str = Depends(require_customer_address),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionSessionResponse:
    session = unwrap(await engine.reject_redemption_session(session_id, customer_address))
    return RedemptionSessionResponse.model_validate(session)


@router.post("/redemption-sessions/{session_id}/cancel", response_model=RedemptionSessionResponse)
async def cancel_redemption_session(
    session_id: str,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionSessionResponse:
    session = unwrap(await engine.cancel_redemption_session(session_id, shop_id))
    return RedemptionSessionResponse.model_validate(session)


@router.post("/redemption-sessions/{session_id}/use", response_model=RedemptionUseResponse)
async def use_redemption_session(
    session_id: str,
    payload: RedemptionSessionUseRequest | None = None,
    shop_id: str = Depends(require_shop_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> RedemptionUseResponse:
    amount = payload.amount if payload is not None else None
    session, transaction = unwrap(await engine.use_redemption_session(session_id, shop_id, amount))
    return RedemptionUseResponse(
        session=RedemptionSessionResponse.model_validate(session),
        transaction_id=transaction.id,
        amount=transaction.amount,
    )


@router.get("/customers/{address}/redemption-sessions", response_model=list[RedemptionSessionResponse])
async def list_redemption_sessions(
    address: str,
    status_filter: RedemptionSessionStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> list[RedemptionSessionResponse]:
    sessions = unwrap(await engine.list_redemption_sessions(address, status=status_filter, limit=limit))
    return [RedemptionSessionResponse.model_validate(session) for session in sessions]
