"""Ledger integrity checks with rate-limited alert logging."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rcn_api.core.clock import Clock, utcnow
from rcn_api.domain.tiers import CustomerTier, calculate_tier
from rcn_api.models.customer import Customer
from rcn_api.models.promo import PromoCode, PromoCodeUse
from rcn_api.services.ledger.home_shop import HomeShopResolver
from rcn_api.services.ledger.provenance import ProvenanceLedger


class TtlDedupStore:
    """Remembers alert keys for ``ttl`` so each key is reported once per window."""

    def __init__(self, ttl: timedelta) -> None:
        self._ttl = ttl
        self._lock = Lock()
        self._seen: Dict[str, datetime] = {}

    def should_emit(self, key: str, now: datetime) -> bool:
        with self._lock:
            last = self._seen.get(key)
            if last is not None and now - last < self._ttl:
                return False
            self._seen[key] = now
            return True

    def prune(self, now: datetime) -> int:
        with self._lock:
            stale = [key for key, seen_at in self._seen.items() if now - seen_at >= self._ttl]
            for key in stale:
                del self._seen[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


@dataclass(slots=True)
class LedgerAlert:
    kind: str
    subject: str
    severity: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.subject}"


@dataclass(slots=True)
class IntegrityReport:
    customers_checked: int = 0
    promo_codes_checked: int = 0
    alerts: List[LedgerAlert] = field(default_factory=list)
    emitted: int = 0

    def summary(self) -> Dict[str, Any]:
        return {
            "customers_checked": self.customers_checked,
            "promo_codes_checked": self.promo_codes_checked,
            "alerts": len(self.alerts),
            "alerts_emitted": self.emitted,
        }


class LedgerIntegrityMonitor:
    """Recomputes balances from the ledger and flags drift in cached projections."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: ProvenanceLedger,
        home_shop_resolver: HomeShopResolver,
        dedup_store: TtlDedupStore,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._ledger = ledger
        self._home_shops = home_shop_resolver
        self._dedup = dedup_store
        self._clock = clock

    async def run(self, *, limit: int = 500) -> IntegrityReport:
        report = IntegrityReport()
        customers = (
            await self._db.execute(select(Customer).order_by(Customer.updated_at.desc()).limit(limit))
        ).scalars().all()
        for customer in customers:
            report.customers_checked += 1
            report.alerts.extend(await self._check_customer(customer))

        rows = (
            await self._db.execute(
                select(PromoCode.id, PromoCode.code, PromoCode.times_used, func.count(PromoCodeUse.id))
                .outerjoin(PromoCodeUse, PromoCodeUse.promo_code_id == PromoCode.id)
                .group_by(PromoCode.id, PromoCode.code, PromoCode.times_used)
            )
        ).all()
        for promo_id, code, times_used, use_rows in rows:
            report.promo_codes_checked += 1
            if int(times_used or 0) != int(use_rows):
                report.alerts.append(
                    LedgerAlert(
                        kind="promo_usage_mismatch",
                        subject=str(promo_id),
                        severity="high",
                        message=f"Promo code {code} counter disagrees with recorded uses",
                        details={"times_used": int(times_used or 0), "use_rows": int(use_rows)},
                    )
                )

        now = self._clock()
        self._dedup.prune(now)
        for alert in report.alerts:
            if self._dedup.should_emit(alert.key, now):
                report.emitted += 1
                logger.bind(alert=alert.details).warning(
                    "Ledger integrity alert",
                    kind=alert.kind,
                    subject=alert.subject,
                    severity=alert.severity,
                    message=alert.message,
                )
        return report

    async def _check_customer(self, customer: Customer) -> List[LedgerAlert]:
        alerts: List[LedgerAlert] = []
        balances = await self._ledger.balances(customer.address)
        if balances.earned_balance < 0:
            alerts.append(
                LedgerAlert(
                    kind="negative_earned_balance",
                    subject=customer.address,
                    severity="critical",
                    message="Earned balance is negative",
                    details={"earned_balance": str(balances.earned_balance)},
                )
            )

        expected_tier = calculate_tier(balances.lifetime_earnings)
        cached_lifetime = Decimal(str(customer.lifetime_earnings or 0)).quantize(Decimal("0.01"))
        expected_home = await self._home_shops.resolve(customer.address)
        drift: Dict[str, Any] = {}
        if cached_lifetime != balances.lifetime_earnings:
            drift["lifetime_earnings"] = {"cached": str(cached_lifetime), "ledger": str(balances.lifetime_earnings)}
        if CustomerTier(customer.tier) != expected_tier:
            drift["tier"] = {"cached": CustomerTier(customer.tier).value, "ledger": expected_tier.value}
        if customer.home_shop_id != expected_home:
            drift["home_shop_id"] = {"cached": customer.home_shop_id, "ledger": expected_home}
        if drift:
            alerts.append(
                LedgerAlert(
                    kind="projection_drift",
                    subject=customer.address,
                    severity="medium",
                    message="Cached customer projections differ from the ledger",
                    details=drift,
                )
            )
        return alerts


__all__ = ["IntegrityReport", "LedgerAlert", "LedgerIntegrityMonitor", "TtlDedupStore"]
