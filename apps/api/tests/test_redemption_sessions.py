from datetime import timedelta
from decimal import Decimal

import pytest

from rcn_api.domain.signatures import QR_PREFIX
from rcn_api.models import RedemptionSessionStatus

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
SIGNATURE = "0x" + "ab" * 65


@pytest.mark.asyncio
async def test_session_lifecycle_debits_ledger(ledger_engine, credit, clock) -> None:
    await credit(ALICE, "100", shop_id="shop-a")

    created = await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("40"))
    assert created.success
    session = created.data
    session_id = session.session_id
    assert session.status == RedemptionSessionStatus.PENDING
    assert session.qr_code.startswith(QR_PREFIX)
    assert session.expires_at == clock() + timedelta(minutes=5)

    approved = await ledger_engine.approve_redemption_session(session_id, ALICE, SIGNATURE)
    assert approved.success
    assert approved.data.status == RedemptionSessionStatus.APPROVED
    assert approved.data.signature == SIGNATURE

    used = await ledger_engine.use_redemption_session(session_id, "shop-a", Decimal("15"))
    assert used.success
    used_session, transaction = used.data
    assert used_session.status == RedemptionSessionStatus.USED
    assert Decimal(used_session.redeemed_amount) == Decimal("15")
    assert used_session.redemption_transaction_id == transaction.id
    assert transaction.metadata_json["session_id"] == session_id

    balance = await ledger_engine.earned_balance(ALICE)
    assert balance.data["earned_balance"] == Decimal("85")

    replay = await ledger_engine.use_redemption_session(session_id, "shop-a")
    assert replay.error == "expired_state"


@pytest.mark.asyncio
async def test_duplicate_pending_session_conflicts(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")

    first = await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))
    assert first.success
    first_id = first.data.session_id

    second = await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))
    assert second.error == "conflict"
    assert second.details["session_id"] == first_id

    other_shop = await ledger_engine.create_redemption_session(ALICE, "shop-b", Decimal("10"))
    assert other_shop.success


@pytest.mark.asyncio
async def test_session_creation_requires_verified_amount(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")

    denied = await ledger_engine.create_redemption_session(ALICE, "shop-b", Decimal("25"))
    assert denied.error == "limit_exceeded"
    assert denied.details["max_redeemable"] == "20"

    invalid = await ledger_engine.create_redemption_session(ALICE, "shop-b", Decimal("0"))
    assert invalid.error == "validation_error"


@pytest.mark.asyncio
async def test_expired_session_cannot_be_approved(ledger_engine, credit, clock) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    session_id = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data.session_id

    clock.advance(minutes=5, seconds=1)
    result = await ledger_engine.approve_redemption_session(session_id, ALICE, SIGNATURE)

    assert result.error == "expired_state"


@pytest.mark.asyncio
async def test_stale_pending_session_is_replaced(ledger_engine, credit, clock) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    stale = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data

    clock.advance(minutes=6)
    fresh = await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))
    assert fresh.success

    reloaded = await ledger_engine.get_redemption_session(stale.session_id)
    assert reloaded.data.status == RedemptionSessionStatus.EXPIRED


@pytest.mark.asyncio
async def test_approval_checks_owner_and_signature(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    session_id = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data.session_id

    wrong_owner = await ledger_engine.approve_redemption_session(session_id, BOB, SIGNATURE)
    assert wrong_owner.error == "unauthorized"

    bad_signature = await ledger_engine.approve_redemption_session(session_id, ALICE, "0xdeadbeef")
    assert bad_signature.error == "validation_error"

    missing = await ledger_engine.approve_redemption_session("missing", ALICE, SIGNATURE)
    assert missing.error == "not_found"


@pytest.mark.asyncio
async def test_use_reverifies_balance(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    session_id = (await ledger_engine.create_redemption_session(ALICE, "shop-b", Decimal("20"))).data.session_id
    assert (await ledger_engine.approve_redemption_session(session_id, ALICE, SIGNATURE)).success

    assert (await ledger_engine.transfer_tokens(ALICE, BOB, Decimal("50"))).success

    result = await ledger_engine.use_redemption_session(session_id, "shop-b")
    assert result.error == "limit_exceeded"
    assert result.details["max_redeemable"] == "10"

    still_approved = await ledger_engine.get_redemption_session(session_id)
    assert still_approved.data.status == RedemptionSessionStatus.APPROVED


@pytest.mark.asyncio
async def test_use_enforces_shop_and_session_amount(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    session_id = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("30"))).data.session_id

    pending = await ledger_engine.use_redemption_session(session_id, "shop-a")
    assert pending.error == "validation_error"

    assert (await ledger_engine.approve_redemption_session(session_id, ALICE, SIGNATURE)).success

    other_shop = await ledger_engine.use_redemption_session(session_id, "shop-b")
    assert other_shop.error == "unauthorized"

    too_much = await ledger_engine.use_redemption_session(session_id, "shop-a", Decimal("31"))
    assert too_much.error == "limit_exceeded"

    full = await ledger_engine.use_redemption_session(session_id, "shop-a")
    assert full.success
    assert Decimal(full.data[0].redeemed_amount) == Decimal("30")


@pytest.mark.asyncio
async def test_reject_and_cancel_are_terminal(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    rejected_id = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data.session_id
    assert (await ledger_engine.reject_redemption_session(rejected_id, ALICE)).success

    approve_after_reject = await ledger_engine.approve_redemption_session(rejected_id, ALICE, SIGNATURE)
    assert approve_after_reject.error == "expired_state"

    cancelled_id = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data.session_id
    wrong_shop = await ledger_engine.cancel_redemption_session(cancelled_id, "shop-b")
    assert wrong_shop.error == "unauthorized"

    result = await ledger_engine.cancel_redemption_session(cancelled_id, "shop-a")
    assert result.data.status == RedemptionSessionStatus.REJECTED
    assert result.data.metadata_json["cancelled_by"] == "shop"


@pytest.mark.asyncio
async def test_expiry_sweep_is_idempotent(ledger_engine, credit, clock) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    first = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data
    second = (await ledger_engine.create_redemption_session(ALICE, "shop-b", Decimal("10"))).data
    assert (await ledger_engine.approve_redemption_session(second.session_id, ALICE, SIGNATURE)).success

    clock.advance(minutes=10)
    sweep = await ledger_engine.expire_redemption_sessions()
    assert sweep.data == 1
    repeat = await ledger_engine.expire_redemption_sessions()
    assert repeat.data == 0

    expired = await ledger_engine.get_redemption_session(first.session_id)
    assert expired.data.status == RedemptionSessionStatus.EXPIRED
    approved = await ledger_engine.get_redemption_session(second.session_id)
    assert approved.data.status == RedemptionSessionStatus.APPROVED


@pytest.mark.asyncio
async def test_lookup_by_qr_and_listing(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    created = (await ledger_engine.create_redemption_session(ALICE, "shop-a", Decimal("10"))).data
    session_id, qr_code = created.session_id, created.qr_code
    assert (await ledger_engine.create_redemption_session(ALICE, "shop-b", Decimal("5"))).success
    assert (await ledger_engine.reject_redemption_session(session_id, ALICE)).success

    from_qr = await ledger_engine.redemption_session_from_qr(qr_code)
    assert from_qr.data.session_id == session_id

    bad_qr = await ledger_engine.redemption_session_from_qr("garbage")
    assert bad_qr.error == "validation_error"

    everything = await ledger_engine.list_redemption_sessions(ALICE)
    assert len(everything.data) == 2
    pending = await ledger_engine.list_redemption_sessions(ALICE, status=RedemptionSessionStatus.PENDING)
    assert [item.shop_id for item in pending.data] == ["shop-b"]
