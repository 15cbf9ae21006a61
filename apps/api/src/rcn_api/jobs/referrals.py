"""Unclaimed referral code expiry."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from rcn_api.core.settings import get_settings
from rcn_api.jobs import SessionFactory, open_session
from rcn_api.services.engine import LedgerEngine


async def expire_stale_referrals(*, session_factory: SessionFactory) -> Dict[str, Any]:
    session = await open_session(session_factory)
    async with session as managed_session:
        engine = LedgerEngine.from_settings(managed_session, get_settings())
        result = await engine.expire_stale_referrals()

    summary = {"expired": int(result.data or 0)}
    logger.bind(summary=summary).info("Referral expiry sweep completed")
    return summary


__all__ = ["expire_stale_referrals"]
