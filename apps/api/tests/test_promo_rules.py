from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rcn_api.domain.errors import LedgerValidationError
from rcn_api.domain.metadata import GiftMeta, PromoMeta, RepairMeta, parse_metadata
from rcn_api.domain.promo_rules import (
    PromoBonusType,
    PromoSnapshot,
    compute_bonus,
    normalize_code,
    validate_definition,
    validate_promo,
)
from rcn_api.domain.signatures import (
    approval_message,
    decode_qr_payload,
    encode_qr_payload,
    normalize_address,
    normalize_signature,
)

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _snapshot(**overrides) -> PromoSnapshot:
    values = dict(
        promo_code_id=1,
        code="FALL25",
        shop_id="shop-a",
        bonus_type=PromoBonusType.PERCENTAGE,
        bonus_value=Decimal("50"),
        max_bonus=Decimal("8"),
        start_date=_NOW - timedelta(days=1),
        end_date=_NOW + timedelta(days=1),
        is_active=True,
        total_usage_limit=10,
        per_customer_limit=1,
        times_used=0,
    )
    values.update(overrides)
    return PromoSnapshot(**values)


def test_normalize_code_upper_cases_and_strips() -> None:
    assert normalize_code("  fall25 ") == "FALL25"


def test_percentage_bonus_respects_max_bonus() -> None:
    assert compute_bonus(_snapshot(), Decimal("10")) == Decimal("5.00")
    assert compute_bonus(_snapshot(), Decimal("25")) == Decimal("8")
    assert compute_bonus(_snapshot(max_bonus=None), Decimal("25")) == Decimal("12.50")


def test_fixed_bonus_ignores_base_reward() -> None:
    snapshot = _snapshot(bonus_type=PromoBonusType.FIXED, bonus_value=Decimal("5"), max_bonus=None)
    assert compute_bonus(snapshot, Decimal("25")) == Decimal("5")


@pytest.mark.parametrize(
    ("overrides", "customer_uses", "reason"),
    [
        ({"is_active": False}, 0, "inactive"),
        ({"start_date": _NOW + timedelta(hours=1)}, 0, "not_started"),
        ({"end_date": _NOW - timedelta(seconds=1)}, 0, "ended"),
        ({"times_used": 10}, 0, "total_limit"),
        ({}, 1, "customer_limit"),
    ],
)
def test_validate_promo_rejections(overrides, customer_uses, reason) -> None:
    with pytest.raises(LedgerValidationError) as excinfo:
        validate_promo(_snapshot(**overrides), customer_uses=customer_uses, now=_NOW)
    assert excinfo.value.details["reason"] == reason


def test_validate_definition_rejects_bad_windows_and_values() -> None:
    common = dict(
        max_bonus=None,
        total_usage_limit=None,
        per_customer_limit=1,
    )
    with pytest.raises(LedgerValidationError):
        validate_definition(
            bonus_type=PromoBonusType.FIXED,
            bonus_value=Decimal("5"),
            start_date=_NOW,
            end_date=_NOW,
            **common,
        )
    with pytest.raises(LedgerValidationError):
        validate_definition(
            bonus_type=PromoBonusType.PERCENTAGE,
            bonus_value=Decimal("150"),
            start_date=_NOW,
            end_date=_NOW + timedelta(days=1),
            **common,
        )
    validate_definition(
        bonus_type=PromoBonusType.PERCENTAGE,
        bonus_value=Decimal("100"),
        start_date=_NOW,
        end_date=_NOW + timedelta(days=1),
        **common,
    )


def test_metadata_variants_are_tagged_and_restored() -> None:
    repair = RepairMeta(
        repair_amount=Decimal("120"),
        base_reward=Decimal("25"),
        tier_bonus=Decimal("10"),
        old_tier="BRONZE",
        new_tier="BRONZE",
    )
    payload = repair.as_json()
    assert payload["kind"] == "repair"
    assert payload["base_reward"] == "25"
    assert parse_metadata(payload) == repair

    promo = parse_metadata(
        PromoMeta(promo_code="FALL25", promo_code_id=3, base_reward=Decimal("25"), bonus_amount=Decimal("8")).as_json()
    )
    assert isinstance(promo, PromoMeta)
    assert promo.bonus_amount == Decimal("8")

    gift = parse_metadata({"kind": "gift", "counterparty_address": "0xabc", "direction": "in", "extra": 1})
    assert gift == GiftMeta(counterparty_address="0xabc", direction="in")

    assert parse_metadata({"kind": "unknown"}) is None
    assert parse_metadata(None) is None


def test_address_and_signature_normalization() -> None:
    assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20
    with pytest.raises(LedgerValidationError):
        normalize_address("0x1234")

    assert normalize_signature("AB" * 65) == "0x" + "ab" * 65
    with pytest.raises(LedgerValidationError) as excinfo:
        normalize_signature("0x" + "ab" * 10)
    assert excinfo.value.details["received_length"] == 20


def test_qr_payload_round_trip_and_rejection() -> None:
    expires_at = _NOW + timedelta(minutes=5)
    payload = encode_qr_payload(
        session_id="session-1",
        customer_address="0x" + "a" * 40,
        shop_id="shop-a",
        amount=Decimal("20"),
        expires_at=expires_at,
    )
    document = decode_qr_payload(payload)
    assert document["sessionId"] == "session-1"
    assert document["amount"] == "20"

    with pytest.raises(LedgerValidationError):
        decode_qr_payload("rcn:redeem:not-base64!!")
    with pytest.raises(LedgerValidationError):
        decode_qr_payload("something-else")


def test_approval_message_mentions_session_and_amount() -> None:
    message = approval_message(
        session_id="session-1",
        customer_address="0x" + "a" * 40,
        shop_id="shop-a",
        amount=Decimal("20"),
        expires_at=_NOW,
    )
    assert "Session ID: session-1" in message
    assert "Amount: 20 RCN" in message
    assert "Expires: 2026-10-19T12:00:00Z" in message
