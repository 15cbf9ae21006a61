from datetime import timedelta
from decimal import Decimal

import pytest

from rcn_api.domain.promo_rules import PromoBonusType
from rcn_api.jobs.integrity import check_ledger_integrity
from rcn_api.models import Customer, LedgerTransaction, PromoCode, TransactionStatus, TransactionType
from rcn_api.observability.alerts import LedgerIntegrityMonitor, TtlDedupStore

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


def _monitor(engine, session, clock, store: TtlDedupStore) -> LedgerIntegrityMonitor:
    return LedgerIntegrityMonitor(
        session,
        ledger=engine.ledger,
        home_shop_resolver=engine.home_shops,
        dedup_store=store,
        clock=clock,
    )


def test_dedup_store_suppresses_within_ttl(clock) -> None:
    store = TtlDedupStore(timedelta(minutes=30))

    assert store.should_emit("drift:0xabc", clock()) is True
    assert store.should_emit("drift:0xabc", clock() + timedelta(minutes=10)) is False
    assert store.should_emit("drift:0xabc", clock() + timedelta(minutes=31)) is True
    assert store.prune(clock() + timedelta(hours=2)) == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_consistent_ledger_raises_no_alerts(ledger_engine, ledger_session, clock) -> None:
    assert (await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("120"))).success
    assert (await ledger_engine.transfer_tokens(ALICE, BOB, Decimal("5"))).success

    report = await _monitor(ledger_engine, ledger_session, clock, TtlDedupStore(timedelta(hours=1))).run()

    assert report.customers_checked == 2
    assert report.alerts == []


@pytest.mark.asyncio
async def test_drift_and_negative_balance_alerts_are_rate_limited(ledger_engine, ledger_session, clock) -> None:
    assert (await ledger_engine.issue_repair_reward("shop-a", ALICE, Decimal("120"))).success
    promo = await ledger_engine.create_promo_code(
        "shop-a",
        code="SPRING",
        name="Spring",
        bonus_type=PromoBonusType.FIXED,
        bonus_value=Decimal("5"),
        start_date=clock(),
        end_date=clock() + timedelta(days=1),
    )
    assert promo.success
    promo_id = promo.data.id

    alice = await ledger_session.get(Customer, ALICE)
    alice.lifetime_earnings = Decimal("999")
    alice.home_shop_id = "shop-b"
    bob = Customer(address=BOB)
    ledger_session.add(bob)
    await ledger_session.flush()
    ledger_session.add(
        LedgerTransaction(
            type=TransactionType.REDEEM,
            customer_address=BOB,
            shop_id="shop-a",
            amount=Decimal("5"),
            earned_amount=Decimal("5"),
            status=TransactionStatus.CONFIRMED,
            occurred_at=clock(),
        )
    )
    (await ledger_session.get(PromoCode, promo_id)).times_used = 3
    await ledger_session.commit()

    store = TtlDedupStore(timedelta(hours=1))
    report = await _monitor(ledger_engine, ledger_session, clock, store).run()

    kinds = sorted(alert.kind for alert in report.alerts)
    assert kinds == ["negative_earned_balance", "projection_drift", "promo_usage_mismatch"]
    drift = next(alert for alert in report.alerts if alert.kind == "projection_drift")
    assert drift.subject == ALICE
    assert set(drift.details) == {"lifetime_earnings", "home_shop_id"}
    assert report.emitted == 3

    repeat = await _monitor(ledger_engine, ledger_session, clock, store).run()
    assert len(repeat.alerts) == 3
    assert repeat.emitted == 0

    clock.advance(hours=2)
    later = await _monitor(ledger_engine, ledger_session, clock, store).run()
    assert later.emitted == 3
    assert later.summary() == {
        "customers_checked": 2,
        "promo_codes_checked": 1,
        "alerts": 3,
        "alerts_emitted": 3,
    }


@pytest.mark.asyncio
async def test_integrity_job_returns_summary(session_factory) -> None:
    async with session_factory() as session:
        session.add(Customer(address=ALICE))
        await session.commit()

    summary = await check_ledger_integrity(
        session_factory=session_factory,
        dedup_store=TtlDedupStore(timedelta(hours=1)),
    )

    assert summary == {
        "customers_checked": 1,
        "promo_codes_checked": 0,
        "alerts": 0,
        "alerts_emitted": 0,
    }
