from decimal import Decimal

import pytest

from rcn_api.models import Customer, ReferralStatus

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


async def _issue_code(engine, referrer: str = ALICE) -> str:
    assert (await engine.register_customer(referrer, name="Alice")).success
    result = await engine.create_referral(referrer)
    assert result.success
    return result.data.referral_code


@pytest.mark.asyncio
async def test_first_repair_completes_referral(ledger_engine, ledger_session, clock) -> None:
    code = await _issue_code(ledger_engine)
    assert len(code) == 8

    registered = await ledger_engine.register_referee(code.lower(), BOB)
    assert registered.success
    assert registered.data.referee_address == BOB

    repair = await ledger_engine.issue_repair_reward("shop-a", BOB, Decimal("120"), reference="bob-1")
    assert repair.success
    completion = repair.data.referral
    assert completion is not None
    assert completion.referrer_reward == Decimal("25")
    assert completion.referee_reward == Decimal("10")
    assert repair.data.referral_error is None

    referral = await ledger_engine.get_referral(code)
    assert referral.data.status == ReferralStatus.COMPLETED
    assert referral.data.reward_transaction_id == f"referral_referrer_{referral.data.id}"

    alice = await ledger_engine.earned_balance(ALICE)
    assert alice.data["earned_balance"] == Decimal("25")
    assert alice.data["home_shop_id"] is None
    bob = await ledger_engine.earned_balance(BOB)
    assert bob.data["earned_balance"] == Decimal("45")

    referrer = await ledger_session.get(Customer, ALICE)
    assert referrer.referral_count == 1
    assert referrer.referral_code == code

    clock.advance(days=1)
    second = await ledger_engine.issue_repair_reward("shop-a", BOB, Decimal("120"), reference="bob-2")
    assert second.data.referral is None


@pytest.mark.asyncio
async def test_referee_rules(ledger_engine) -> None:
    code = await _issue_code(ledger_engine)

    self_referral = await ledger_engine.register_referee(code, ALICE)
    assert self_referral.error == "validation_error"

    assert (await ledger_engine.register_referee(code, BOB)).success

    reused = await ledger_engine.register_referee(code, CAROL)
    assert reused.error == "conflict"

    unknown = await ledger_engine.register_referee("NOPE1234", CAROL)
    assert unknown.error == "not_found"

    second_code = (await ledger_engine.create_referral(ALICE)).data.referral_code
    already_referred = await ledger_engine.register_referee(second_code, BOB)
    assert already_referred.error == "conflict"


@pytest.mark.asyncio
async def test_unclaimed_codes_expire(ledger_engine, clock) -> None:
    code = await _issue_code(ledger_engine)

    clock.advance(days=31)
    late = await ledger_engine.register_referee(code, BOB)
    assert late.error == "expired_state"

    swept = await ledger_engine.expire_stale_referrals()
    assert swept.data == 1
    assert (await ledger_engine.expire_stale_referrals()).data == 0

    referral = await ledger_engine.get_referral(code)
    assert referral.data.status == ReferralStatus.EXPIRED


@pytest.mark.asyncio
async def test_capped_referrer_leaves_referral_pending(ledger_engine, clock) -> None:
    code = await _issue_code(ledger_engine)
    for reference in ("a-1", "a-2"):
        assert (await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("100"), reference=reference)).success
    assert (await ledger_engine.register_referee(code, BOB)).success

    repair = await ledger_engine.issue_repair_reward("shop-b", BOB, Decimal("100"), reference="bob-1")
    assert repair.success
    assert repair.data.referral is None
    assert repair.data.referral_error.error == "limit_exceeded"

    bob = await ledger_engine.earned_balance(BOB)
    assert bob.data["earned_balance"] == Decimal("35")
    pending = await ledger_engine.get_referral(code)
    assert pending.data.status == ReferralStatus.PENDING

    clock.advance(days=1)
    retry = await ledger_engine.issue_repair_reward("shop-b", BOB, Decimal("100"), reference="bob-2")
    assert retry.data.referral is not None
    completed = await ledger_engine.get_referral(code)
    assert completed.data.status == ReferralStatus.COMPLETED


@pytest.mark.asyncio
async def test_referrer_must_exist(ledger_engine) -> None:
    result = await ledger_engine.create_referral(CAROL)
    assert result.error == "not_found"
