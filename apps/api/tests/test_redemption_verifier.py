from decimal import Decimal

import pytest

from rcn_api.models import RcnSourceType
from rcn_api.services.redemption.verifier import RedemptionRequest

ALICE = "0x" + "a1" * 20
CAROL = "0x" + "c3" * 20
DAVE = "0x" + "d4" * 20


@pytest.mark.asyncio
async def test_home_shop_can_redeem_full_earned_balance(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")

    full = await ledger_engine.verify_redemption(ALICE, "shop-a", Decimal("100"))
    assert full.success
    assert full.data.can_redeem is True
    assert full.data.is_home_shop is True
    assert full.data.max_redeemable == Decimal("100")

    over = await ledger_engine.verify_redemption(ALICE, "shop-a", Decimal("101"))
    assert over.data.can_redeem is False
    assert "Insufficient earned balance" in over.data.message


@pytest.mark.asyncio
async def test_cross_shop_limit_is_twenty_percent_of_earned(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")

    at_limit = await ledger_engine.verify_redemption(ALICE, "shop-b", Decimal("20"))
    assert at_limit.data.can_redeem is True
    assert at_limit.data.is_home_shop is False
    assert at_limit.data.cross_shop_limit == Decimal("20")

    over_limit = await ledger_engine.verify_redemption(ALICE, "shop-b", Decimal("21"))
    assert over_limit.data.can_redeem is False
    assert over_limit.data.max_redeemable == Decimal("20")
    assert "20% of 100" in over_limit.data.message


@pytest.mark.asyncio
@pytest.mark.parametrize(("earned", "limit"), [("55", Decimal("11")), ("4", Decimal("0"))])
async def test_cross_shop_limit_rounds_down(ledger_engine, credit, earned, limit) -> None:
    await credit(ALICE, earned, shop_id="shop-a")

    decision = await ledger_engine.verify_redemption(ALICE, "shop-b", Decimal("1"))
    assert decision.data.max_redeemable == limit
    assert decision.data.can_redeem is (limit >= 1)


@pytest.mark.asyncio
async def test_gifted_tokens_do_not_raise_limits(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")
    await credit(ALICE, "50", shop_id=None, source_type=RcnSourceType.GIFT)

    balance = await ledger_engine.earned_balance(ALICE)
    assert balance.data["earned_balance"] == Decimal("100")
    assert balance.data["total_balance"] == Decimal("150")

    cross = await ledger_engine.verify_redemption(ALICE, "shop-b", Decimal("21"))
    assert cross.data.can_redeem is False
    home = await ledger_engine.verify_redemption(ALICE, "shop-a", Decimal("101"))
    assert home.data.can_redeem is False
    assert home.data.earned_balance == Decimal("100")


@pytest.mark.asyncio
async def test_customer_without_home_shop_is_cross_shop_everywhere(ledger_engine, credit) -> None:
    await credit(CAROL, "10", shop_id=None, source_type=RcnSourceType.REFERRAL_BONUS)

    for shop_id in ("shop-a", "shop-b"):
        decision = await ledger_engine.verify_redemption(CAROL, shop_id, Decimal("2"))
        assert decision.data.home_shop_id is None
        assert decision.data.is_home_shop is False
        assert decision.data.max_redeemable == Decimal("2")
        assert decision.data.can_redeem is True


@pytest.mark.asyncio
async def test_home_shop_follows_largest_earnings(ledger_engine, credit, clock) -> None:
    await credit(ALICE, "30", shop_id="shop-a")
    clock.advance(minutes=1)
    await credit(ALICE, "30", shop_id="shop-b")

    tied = await ledger_engine.earned_balance(ALICE)
    assert tied.data["home_shop_id"] == "shop-a"

    clock.advance(minutes=1)
    await credit(ALICE, "1", shop_id="shop-b")
    moved = await ledger_engine.verify_redemption(ALICE, "shop-b", Decimal("61"))
    assert moved.data.is_home_shop is True
    assert moved.data.can_redeem is True


@pytest.mark.asyncio
async def test_verification_errors(ledger_engine, credit) -> None:
    unknown = await ledger_engine.verify_redemption(ALICE, "shop-a", Decimal("1"))
    assert unknown.error == "not_found"

    await credit(ALICE, "100", shop_id="shop-a")
    assert (await ledger_engine.register_shop("shop-c", name="Unverified")).success
    unverified = await ledger_engine.verify_redemption(ALICE, "shop-c", Decimal("1"))
    assert unverified.error == "validation_error"

    zero = await ledger_engine.verify_redemption(ALICE, "shop-a", Decimal("0"))
    assert zero.data.can_redeem is False
    assert zero.data.message == "Invalid redemption amount"

    assert (await ledger_engine.deactivate_customer(ALICE)).success
    inactive = await ledger_engine.verify_redemption(ALICE, "shop-a", Decimal("1"))
    assert inactive.error == "validation_error"


@pytest.mark.asyncio
async def test_batch_verification_keeps_order_and_reports_failures(ledger_engine, credit) -> None:
    await credit(ALICE, "100", shop_id="shop-a")

    result = await ledger_engine.batch_verify_redemptions(
        [
            RedemptionRequest(ALICE, "shop-a", Decimal("100")),
            RedemptionRequest(DAVE, "shop-a", Decimal("5")),
            RedemptionRequest(ALICE, "shop-b", Decimal("21")),
            RedemptionRequest(ALICE, "shop-z", Decimal("1")),
        ]
    )

    assert result.success
    assert [item.index for item in result.data] == [0, 1, 2, 3]
    home, unknown_customer, cross, unknown_shop = result.data

    assert home.can_redeem is True
    assert home.decision.is_home_shop is True
    assert home.error is None

    assert unknown_customer.can_redeem is False
    assert unknown_customer.decision is None
    assert unknown_customer.error == "not_found"
    assert unknown_customer.message == "Customer not found"

    assert cross.can_redeem is False
    assert cross.decision.max_redeemable == Decimal("20")

    assert unknown_shop.error == "not_found"
    assert unknown_shop.request.shop_id == "shop-z"


@pytest.mark.asyncio
async def test_earning_sources_groups_redeemable_credits_by_shop(ledger_engine, credit) -> None:
    await credit(ALICE, "30", shop_id="shop-a", source_type=RcnSourceType.SHOP_REPAIR)
    await credit(ALICE, "10", shop_id="shop-a", source_type=RcnSourceType.TIER_BONUS)
    await credit(ALICE, "45", shop_id="shop-b", source_type=RcnSourceType.PROMOTION)
    await credit(ALICE, "15", shop_id=None, source_type=RcnSourceType.REFERRAL_BONUS)
    await credit(ALICE, "500", shop_id=None, source_type=RcnSourceType.GIFT)

    result = await ledger_engine.earning_sources(ALICE)
    assert result.success
    sources = result.data

    assert [shop.shop_id for shop in sources.shops] == ["shop-b", "shop-a"]
    shop_b, shop_a = sources.shops
    assert shop_b.shop_name == "Repair shop-b"
    assert shop_b.total_earned == Decimal("45")
    assert shop_a.total_earned == Decimal("40")
    assert shop_a.by_source == {"shop_repair": Decimal("30"), "tier_bonus": Decimal("10")}
    assert shop_a.last_earned_at is not None
    assert sources.unattributed == {"referral_bonus": Decimal("15")}
    assert sources.primary_shop_id == "shop-b"
    assert sources.total_earned == Decimal("100")


@pytest.mark.asyncio
async def test_earning_sources_for_unknown_customer(ledger_engine) -> None:
    result = await ledger_engine.earning_sources(DAVE)
    assert result.error == "not_found"
