"""Acting customer and shop resolved from forwarded headers."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.settings import settings
from rcn_api.db.session import get_session
from rcn_api.domain.errors import LedgerValidationError
from rcn_api.domain.signatures import normalize_address
from rcn_api.services.engine import LedgerEngine, OperationResult
from rcn_api.services.minter import build_token_minter

_ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "limit_exceeded": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "conflict": status.HTTP_409_CONFLICT,
    "expired_state": status.HTTP_410_GONE,
    "unauthorized": status.HTTP_403_FORBIDDEN,
    "settlement_failed": status.HTTP_502_BAD_GATEWAY,
}


async def get_ledger_engine(session: AsyncSession = Depends(get_session)) -> LedgerEngine:
    return LedgerEngine.from_settings(session, settings, minter=build_token_minter(settings))


async def require_customer_address(
    customer_address: str | None = Header(None, alias="X-Customer-Address"),
) -> str:
    if not customer_address:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing customer context",
        )
    try:
        return normalize_address(customer_address)
    except LedgerValidationError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid customer address",
        ) from error


async def require_shop_id(shop_id: str | None = Header(None, alias="X-Shop-Id")) -> str:
    if not shop_id or not shop_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing shop context",
        )
    return shop_id.strip()


def unwrap(result: OperationResult):
    """Return ``result.data`` or raise the HTTP error matching its code."""

    if result.success:
        return result.data
    raise HTTPException(
        status_code=_ERROR_STATUS.get(result.error or "", status.HTTP_400_BAD_REQUEST),
        detail={"error": result.error, "message": result.message, "details": result.details},
    )
