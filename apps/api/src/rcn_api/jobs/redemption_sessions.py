"""Pending redemption session expiry sweep."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from rcn_api.core.settings import get_settings
from rcn_api.jobs import SessionFactory, open_session
from rcn_api.services.engine import LedgerEngine


async def expire_redemption_sessions(*, session_factory: SessionFactory) -> Dict[str, Any]:
    """Move pending sessions past ``expires_at`` to ``expired``.

    The UPDATE only touches rows still pending, so concurrent runs from
    several instances are harmless.
    """

    session = await open_session(session_factory)
    async with session as managed_session:
        engine = LedgerEngine.from_settings(managed_session, get_settings())
        result = await engine.expire_redemption_sessions()

    summary = {"expired": int(result.data or 0)}
    logger.bind(summary=summary).info("Redemption session sweep completed")
    return summary


__all__ = ["expire_redemption_sessions"]
