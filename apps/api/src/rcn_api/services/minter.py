"""Token settlement gateway clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol
from uuid import uuid4

import httpx
from loguru import logger

from rcn_api.core.settings import Settings
from rcn_api.domain.errors import SettlementError


@dataclass(slots=True)
class MintResult:
    success: bool
    transaction_hash: str | None = None
    error: str | None = None


class TokenMinter(Protocol):
    """On-chain settlement capability consumed by the ledger."""

    async def mint(self, address: str, amount: Decimal, *, reason: str) -> MintResult: ...

    async def get_balance(self, address: str) -> Decimal: ...


@dataclass
class InMemoryTokenMinter:
    """Deterministic minter for local runs and tests."""

    fail_with: str | None = None
    balances: dict[str, Decimal] = field(default_factory=dict)
    minted: list[tuple[str, Decimal, str]] = field(default_factory=list)

    async def mint(self, address: str, amount: Decimal, *, reason: str) -> MintResult:
        if self.fail_with:
            return MintResult(success=False, error=self.fail_with)
        self.balances[address] = self.balances.get(address, Decimal("0")) + amount
        self.minted.append((address, amount, reason))
        return MintResult(success=True, transaction_hash=f"0x{uuid4().hex}{uuid4().hex}")

    async def get_balance(self, address: str) -> Decimal:
        return self.balances.get(address, Decimal("0"))


class HttpTokenMinter:
    """Calls the settlement gateway's REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpTokenMinter":
        if not settings.minter_gateway_url:
            raise ValueError("minter_gateway_url must be configured when blockchain minting is enabled")
        return cls(
            settings.minter_gateway_url,
            api_key=settings.minter_api_key,
            timeout_seconds=settings.minter_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_client = True
        try:
            return await client.request(method, f"{self._base_url}{path}", headers=self._headers(), **kwargs)
        finally:
            if close_client:
                await client.aclose()

    async def mint(self, address: str, amount: Decimal, *, reason: str) -> MintResult:
        try:
            response = await self._request(
                "POST",
                "/mint",
                json={"address": address, "amount": str(amount), "reason": reason},
            )
        except httpx.HTTPError as exc:
            logger.warning("Token mint request failed", address=address, amount=str(amount), error=str(exc))
            return MintResult(success=False, error=str(exc))

        if response.status_code >= 400:
            logger.warning(
                "Token mint rejected",
                address=address,
                amount=str(amount),
                status_code=response.status_code,
            )
            return MintResult(success=False, error=f"gateway returned {response.status_code}")

        body = response.json()
        tx_hash = body.get("transactionHash")
        if not body.get("success", True) or not tx_hash:
            return MintResult(success=False, error=str(body.get("error") or "mint not confirmed"))
        return MintResult(success=True, transaction_hash=str(tx_hash))

    async def get_balance(self, address: str) -> Decimal:
        try:
            response = await self._request("GET", f"/balances/{address}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SettlementError("Unable to read on-chain balance", address=address, error=str(exc)) from exc
        return Decimal(str(response.json().get("balance", "0")))


def build_token_minter(settings: Settings) -> TokenMinter | None:
    """Return the configured minter, or ``None`` when settlement is off."""

    if not settings.blockchain_minting_enabled:
        return None
    return HttpTokenMinter.from_settings(settings)


__all__ = ["HttpTokenMinter", "InMemoryTokenMinter", "MintResult", "TokenMinter", "build_token_minter"]
