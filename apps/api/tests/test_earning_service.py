from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from rcn_api.domain.errors import LimitExceededError
from rcn_api.domain.promo_rules import PromoBonusType
from rcn_api.domain.tiers import CustomerTier
from rcn_api.models import Customer, LedgerTransaction, PromoCode, PromoCodeUse, RcnSource, RcnSourceType, TransactionType

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


@pytest.mark.asyncio
async def test_repair_reward_credits_base_and_tier_bonus(ledger_engine, ledger_session) -> None:
    result = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("120"), reference="inv-1")

    assert result.success
    reward = result.data.reward
    assert reward.base_reward == Decimal("25")
    assert reward.tier_bonus == Decimal("10")
    assert reward.total_reward == Decimal("35")
    assert reward.customer_created is True
    assert reward.transaction_ids == ["repair_shop-a_inv-1", "tier_bonus_shop-a_inv-1"]
    assert result.data.referral is None

    customer = await ledger_session.get(Customer, ALICE)
    assert Decimal(customer.lifetime_earnings) == Decimal("35")
    assert customer.home_shop_id == "shop-a"
    # Only the base reward counts toward the daily cap.
    assert Decimal(customer.daily_earnings) == Decimal("25")

    entries = (await ledger_session.execute(select(RcnSource).order_by(RcnSource.id))).scalars().all()
    assert [entry.source_type for entry in entries] == [RcnSourceType.SHOP_REPAIR, RcnSourceType.TIER_BONUS]
    assert entries[0].metadata_json["kind"] == "repair"
    assert entries[0].metadata_json["repair_amount"] == "120"

    mints = (
        await ledger_session.execute(select(LedgerTransaction).where(LedgerTransaction.type == TransactionType.MINT))
    ).scalars().all()
    assert len(mints) == 2


@pytest.mark.asyncio
async def test_small_repairs_earn_small_reward_and_tiny_repairs_fail(ledger_engine) -> None:
    small = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("75"), skip_tier_bonus=True)
    assert small.success
    assert small.data.reward.total_reward == Decimal("10")

    tiny = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("49.99"))
    assert not tiny.success
    assert tiny.error == "validation_error"


@pytest.mark.asyncio
async def test_repeated_reference_does_not_double_credit(ledger_engine) -> None:
    first = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("150"), reference="inv-9")
    second = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("150"), reference="inv-9")

    assert first.success and second.success
    balance = await ledger_engine.earned_balance(ALICE)
    assert balance.data["earned_balance"] == Decimal("35")


@pytest.mark.asyncio
async def test_repeated_reference_applies_promo_code_once(ledger_engine, ledger_session, clock) -> None:
    created = await ledger_engine.create_promo_code(
        "shop-a",
        code="REP",
        name="Repeat customers",
        bonus_type=PromoBonusType.FIXED,
        bonus_value=Decimal("5"),
        start_date=clock() - timedelta(days=1),
        end_date=clock() + timedelta(days=7),
        per_customer_limit=5,
    )
    promo_id = created.data.id

    first, second = [
        await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("120"), reference="inv-1", promo_code="REP")
        for _ in range(2)
    ]

    assert first.success and second.success
    assert second.data.reward.promo_bonus == Decimal("5")
    assert second.data.reward.transaction_ids == first.data.reward.transaction_ids
    assert "promo_shop-a_inv-1" in first.data.reward.transaction_ids

    balance = await ledger_engine.earned_balance(ALICE)
    assert balance.data["earned_balance"] == Decimal("40")
    times_used = await ledger_session.scalar(select(PromoCode.times_used).where(PromoCode.id == promo_id))
    use_rows = await ledger_session.scalar(select(func.count(PromoCodeUse.id)).where(PromoCodeUse.promo_code_id == promo_id))
    assert times_used == use_rows == 1


@pytest.mark.asyncio
async def test_daily_cap_accepts_exactly_the_cap_and_rejects_one_more(ledger_session, credit) -> None:
    await credit(ALICE, "49", source_type=RcnSourceType.SHOP_REPAIR)
    await credit(ALICE, "1", source_type=RcnSourceType.SHOP_REPAIR)

    customer = await ledger_session.get(Customer, ALICE)
    assert Decimal(customer.daily_earnings) == Decimal("50")

    with pytest.raises(LimitExceededError) as excinfo:
        await credit(ALICE, "1", source_type=RcnSourceType.SHOP_REPAIR)
    await ledger_session.rollback()
    assert excinfo.value.details["limit"] == "daily"


@pytest.mark.asyncio
async def test_daily_cap_rejects_whole_reward(ledger_engine, ledger_session) -> None:
    for reference in ("r1", "r2"):
        assert (await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("100"), reference=reference)).success

    blocked = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("100"), reference="r3")
    assert not blocked.success
    assert blocked.error == "limit_exceeded"
    assert blocked.details["limit"] == "daily"

    balance = await ledger_engine.earned_balance(ALICE)
    assert balance.data["earned_balance"] == Decimal("70")
    bonus_rows = await ledger_session.scalar(
        select(RcnSource.id).where(RcnSource.transaction_id == "tier_bonus_shop-a_r3")
    )
    assert bonus_rows is None


@pytest.mark.asyncio
async def test_daily_cap_resets_next_day_and_tier_upgrades(ledger_engine, clock) -> None:
    for day in range(3):
        for slot in range(2):
            result = await ledger_engine.issue_repair_reward(
                "shop-a",
                ALICE,
                Decimal("100"),
                reference=f"d{day}-{slot}",
            )
            assert result.success
        clock.advance(days=1)

    snapshot = await ledger_engine.balance_snapshot(ALICE)
    assert snapshot.data.balances.lifetime_earnings == Decimal("210")
    assert snapshot.data.tier == CustomerTier.SILVER

    upgraded = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("100"), reference="silver-1")
    assert upgraded.data.reward.old_tier == CustomerTier.SILVER
    assert upgraded.data.reward.tier_bonus == Decimal("20")


@pytest.mark.asyncio
async def test_repair_reward_requires_verified_shop(ledger_engine) -> None:
    assert (await ledger_engine.register_shop("shop-c", name="Pending Shop")).success

    unverified = await ledger_engine.issue_repair_reward("shop-c", ALICE, Decimal("120"))
    assert unverified.error == "validation_error"

    missing = await ledger_engine.issue_repair_reward("nowhere", ALICE, Decimal("120"))
    assert missing.error == "not_found"


@pytest.mark.asyncio
async def test_transfer_spends_market_tokens_before_earned(ledger_engine) -> None:
    assert (await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("100"), reference="r1")).success
    assert (await ledger_engine.record_market_purchase(ALICE, Decimal("20"), reference="order-1")).success

    result = await ledger_engine.transfer_tokens(ALICE, BOB, Decimal("30"), message="thanks")

    assert result.success
    transfer = result.data
    assert transfer.recipient_created is True
    assert Decimal(transfer.debit.earned_amount) == Decimal("10")

    sender = await ledger_engine.earned_balance(ALICE)
    assert sender.data["earned_balance"] == Decimal("25")
    assert sender.data["total_balance"] == Decimal("25")
    assert sender.data["market_balance"] == Decimal("0")

    recipient = await ledger_engine.earned_balance(BOB)
    assert recipient.data["earned_balance"] == Decimal("0")
    assert recipient.data["total_balance"] == Decimal("30")
    assert recipient.data["home_shop_id"] is None

    gift_check = await ledger_engine.verify_redemption(BOB, "shop-a", Decimal("1"))
    assert gift_check.success
    assert gift_check.data.can_redeem is False


@pytest.mark.asyncio
async def test_transfer_rejections(ledger_engine) -> None:
    assert (await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("100"), reference="r1")).success

    too_much = await ledger_engine.transfer_tokens(ALICE, BOB, Decimal("36"))
    assert too_much.error == "limit_exceeded"

    to_self = await ledger_engine.transfer_tokens(ALICE, ALICE.upper().replace("0X", "0x"), Decimal("1"))
    assert to_self.error == "validation_error"

    unknown_sender = await ledger_engine.transfer_tokens(BOB, ALICE, Decimal("1"))
    assert unknown_sender.error == "not_found"

    bad_address = await ledger_engine.transfer_tokens(ALICE, "0x1234", Decimal("1"))
    assert bad_address.error == "validation_error"


@pytest.mark.asyncio
async def test_market_purchase_is_not_earned(ledger_engine) -> None:
    result = await ledger_engine.record_market_purchase(ALICE, Decimal("40"), reference="order-7")

    assert result.success
    assert result.data.entry.source_shop_id == "market"
    assert result.data.entry.is_redeemable is False

    balance = await ledger_engine.earned_balance(ALICE)
    assert balance.data["earned_balance"] == Decimal("0")
    assert balance.data["market_balance"] == Decimal("40")

    snapshot = await ledger_engine.balance_snapshot(ALICE)
    assert snapshot.data.balances.lifetime_earnings == Decimal("0")
    assert snapshot.data.home_shop_id is None
