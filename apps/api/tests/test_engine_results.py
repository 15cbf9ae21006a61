from decimal import Decimal

import pytest
from sqlalchemy import select

from rcn_api.domain.errors import ConflictError
from rcn_api.domain.policy import LedgerPolicy
from rcn_api.models import LedgerTransaction, Shop
from rcn_api.services.engine import LedgerEngine, OperationResult
from rcn_api.services.minter import InMemoryTokenMinter

ALICE = "0x" + "a1" * 20


def test_operation_result_from_ledger_error() -> None:
    result = OperationResult.fail(ConflictError("Already there", shop_id="shop-a", ignored=None))

    assert result.success is False
    assert result.error == "conflict"
    assert result.message == "Already there"
    assert result.details == {"shop_id": "shop-a"}
    assert OperationResult.ok(3).data == 3


@pytest.mark.asyncio
async def test_directory_conflicts_and_reserved_ids(ledger_engine) -> None:
    duplicate_shop = await ledger_engine.register_shop("shop-a", name="Again")
    assert duplicate_shop.error == "conflict"

    reserved = await ledger_engine.register_shop("market", name="Market")
    assert reserved.error == "validation_error"

    assert (await ledger_engine.register_customer(ALICE)).success
    duplicate_customer = await ledger_engine.register_customer(ALICE.upper().replace("0X", "0x"))
    assert duplicate_customer.error == "conflict"

    assert (await ledger_engine.deactivate_customer(ALICE)).success
    blocked = await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("120"))
    assert blocked.error == "validation_error"


@pytest.mark.asyncio
async def test_unexpected_errors_roll_back_and_propagate(ledger_engine, ledger_session, monkeypatch) -> None:
    async def exploding_register(shop_id, **kwargs):
        ledger_session.add(Shop(shop_id=shop_id, name="Half written", active=True, verified=True))
        await ledger_session.flush()
        raise RuntimeError("database went away")

    monkeypatch.setattr(ledger_engine.directory, "register_shop", exploding_register)

    with pytest.raises(RuntimeError):
        await ledger_engine.register_shop("shop-z", name="Broken")

    assert await ledger_session.get(Shop, "shop-z") is None


@pytest.mark.asyncio
async def test_settlement_failure_rolls_back_credit(ledger_session, clock) -> None:
    minter = InMemoryTokenMinter(fail_with="gateway down")
    engine = LedgerEngine(ledger_session, policy=LedgerPolicy(), minter=minter, clock=clock)
    assert (await engine.register_shop("shop-a", name="Shop A", verified=True)).success

    failed = await engine.issue_repair_reward("shop-a", ALICE, Decimal("120"))
    assert failed.error == "settlement_failed"
    assert failed.details["error"] == "gateway down"
    assert (await engine.earned_balance(ALICE)).error == "not_found"

    minter.fail_with = None
    minted = await engine.issue_repair_reward("shop-a", ALICE, Decimal("120"))
    assert minted.success
    assert [amount for _, amount, _ in minter.minted] == [Decimal("25"), Decimal("10")]

    hashes = (await ledger_session.execute(select(LedgerTransaction.transaction_hash))).scalars().all()
    assert len(hashes) == 2
    assert all(value and value.startswith("0x") for value in hashes)


@pytest.mark.asyncio
async def test_gifts_and_market_purchases_are_not_minted(ledger_session, clock) -> None:
    minter = InMemoryTokenMinter()
    engine = LedgerEngine(ledger_session, policy=LedgerPolicy(), minter=minter, clock=clock)

    assert (await engine.record_market_purchase(ALICE, Decimal("40"))).success
    assert minter.minted == []
