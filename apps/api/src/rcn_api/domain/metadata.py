"""Typed transaction metadata variants.

Each ledger transaction stores one of these records in its ``metadata``
column. The ``kind`` tag written by ``as_json`` selects the variant when the
row is read back through ``parse_metadata``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from decimal import Decimal
from typing import Any, ClassVar, Union


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


@dataclass(frozen=True, slots=True)
class _Meta:
    kind: ClassVar[str] = ""
    _decimal_fields: ClassVar[tuple[str, ...]] = ()

    def as_json(self) -> dict[str, Any]:
        payload = {key: _encode(value) for key, value in asdict(self).items()}
        payload["kind"] = self.kind
        return payload

    @classmethod
    def from_json(cls, payload: dict[str, Any]):
        names = {item.name for item in fields(cls)}
        values = {}
        for key, value in payload.items():
            if key not in names:
                continue
            if key in cls._decimal_fields and value is not None:
                value = Decimal(str(value))
            values[key] = value
        return cls(**values)


@dataclass(frozen=True, slots=True)
class RepairMeta(_Meta):
    kind: ClassVar[str] = "repair"
    _decimal_fields: ClassVar[tuple[str, ...]] = ("repair_amount", "base_reward", "tier_bonus")

    repair_amount: Decimal
    base_reward: Decimal
    tier_bonus: Decimal
    old_tier: str
    new_tier: str


@dataclass(frozen=True, slots=True)
class ReferralMeta(_Meta):
    kind: ClassVar[str] = "referral"
    _decimal_fields: ClassVar[tuple[str, ...]] = ("referrer_tokens", "referee_tokens")

    referral_code: str
    referrer_address: str
    referee_address: str
    referrer_tokens: Decimal
    referee_tokens: Decimal
    role: str


@dataclass(frozen=True, slots=True)
class PromoMeta(_Meta):
    kind: ClassVar[str] = "promotion"
    _decimal_fields: ClassVar[tuple[str, ...]] = ("base_reward", "bonus_amount")

    promo_code: str
    promo_code_id: int
    base_reward: Decimal
    bonus_amount: Decimal


@dataclass(frozen=True, slots=True)
class GiftMeta(_Meta):
    kind: ClassVar[str] = "gift"

    counterparty_address: str
    direction: str
    message: str | None = None
    is_new_recipient: bool = False


@dataclass(frozen=True, slots=True)
class MarketPurchaseMeta(_Meta):
    kind: ClassVar[str] = "market_purchase"

    reference: str | None = None


@dataclass(frozen=True, slots=True)
class RedemptionMeta(_Meta):
    kind: ClassVar[str] = "redemption"
    _decimal_fields: ClassVar[tuple[str, ...]] = ("max_redeemable",)

    session_id: str | None
    is_home_shop: bool
    max_redeemable: Decimal


TransactionMeta = Union[RepairMeta, ReferralMeta, PromoMeta, GiftMeta, MarketPurchaseMeta, RedemptionMeta]

_REGISTRY: dict[str, type[_Meta]] = {
    variant.kind: variant
    for variant in (RepairMeta, ReferralMeta, PromoMeta, GiftMeta, MarketPurchaseMeta, RedemptionMeta)
}


def parse_metadata(payload: dict[str, Any] | None) -> TransactionMeta | None:
    """Rebuild a metadata variant from its stored JSON; unknown tags yield ``None``."""

    if not payload:
        return None
    variant = _REGISTRY.get(str(payload.get("kind")))
    if variant is None:
        return None
    return variant.from_json(payload)  # type: ignore[return-value]


__all__ = [
    "GiftMeta",
    "MarketPurchaseMeta",
    "PromoMeta",
    "RedemptionMeta",
    "ReferralMeta",
    "RepairMeta",
    "TransactionMeta",
    "parse_metadata",
]
