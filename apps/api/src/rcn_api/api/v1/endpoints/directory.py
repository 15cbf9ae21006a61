"""Shop and customer registration used by operators."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from rcn_api.api.dependencies.actors import get_ledger_engine, unwrap
from rcn_api.services.engine import LedgerEngine


router = APIRouter(tags=["directory"])


class ShopRegistration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shop_id: str = Field(..., alias="shopId", min_length=1, max_length=64)
    name: str
    wallet_address: str | None = Field(None, alias="walletAddress")
    verified: bool = False


class ShopResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    shop_id: str = Field(..., alias="shopId")
    name: str
    wallet_address: str | None = Field(None, alias="walletAddress")
    active: bool
    verified: bool


class CustomerRegistration(BaseModel):
    address: str
    name: str | None = None
    email: str | None = None


class CustomerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    address: str
    name: str | None = None
    tier: str
    is_active: bool = Field(..., alias="isActive")


@router.post("/shops", response_model=ShopResponse, status_code=status.HTTP_201_CREATED)
async def register_shop(payload: ShopRegistration, engine: LedgerEngine = Depends(get_ledger_engine)) -> ShopResponse:
    shop = unwrap(
        await engine.register_shop(
            payload.shop_id,
            name=payload.name,
            wallet_address=payload.wallet_address,
            verified=payload.verified,
        )
    )
    return ShopResponse.model_validate(shop)


def _customer_response(customer) -> CustomerResponse:
    return CustomerResponse(
        address=customer.address,
        name=customer.name,
        tier=customer.tier.value,
        is_active=customer.is_active,
    )


@router.post("/customers", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def register_customer(
    payload: CustomerRegistration,
    engine: LedgerEngine = Depends(get_ledger_engine),
) -> CustomerResponse:
    customer = unwrap(await engine.register_customer(payload.address, name=payload.name, email=payload.email))
    return _customer_response(customer)


@router.post("/customers/{address}/deactivate", response_model=CustomerResponse)
async def deactivate_customer(address: str, engine: LedgerEngine = Depends(get_ledger_engine)) -> CustomerResponse:
    return _customer_response(unwrap(await engine.deactivate_customer(address)))
