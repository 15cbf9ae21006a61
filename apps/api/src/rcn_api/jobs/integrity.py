"""Periodic ledger integrity check."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from loguru import logger

from rcn_api.core.settings import get_settings
from rcn_api.jobs import SessionFactory, open_session
from rcn_api.observability.alerts import LedgerIntegrityMonitor, TtlDedupStore
from rcn_api.services.engine import LedgerEngine

_dedup_store: TtlDedupStore | None = None


def _default_dedup_store() -> TtlDedupStore:
    global _dedup_store
    if _dedup_store is None:
        _dedup_store = TtlDedupStore(timedelta(seconds=get_settings().integrity_alert_ttl_seconds))
    return _dedup_store


async def check_ledger_integrity(
    *,
    session_factory: SessionFactory,
    limit: int = 500,
    dedup_store: TtlDedupStore | None = None,
) -> Dict[str, Any]:
    """Recompute customer balances and promo counters; log drift once per alert window."""

    session = await open_session(session_factory)
    async with session as managed_session:
        engine = LedgerEngine.from_settings(managed_session, get_settings())
        monitor = LedgerIntegrityMonitor(
            managed_session,
            ledger=engine.ledger,
            home_shop_resolver=engine.home_shops,
            dedup_store=dedup_store or _default_dedup_store(),
        )
        report = await monitor.run(limit=limit)
        await managed_session.rollback()

    summary = report.summary()
    logger.bind(summary=summary).info("Ledger integrity check completed")
    return summary


__all__ = ["check_ledger_integrity"]
