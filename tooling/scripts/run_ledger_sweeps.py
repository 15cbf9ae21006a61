"""Run the ledger expiry sweeps once.

Intended usage: manual invocation or an external cron when the in-process
ledger scheduler is disabled.

Example:
    python tooling/scripts/run_ledger_sweeps.py --only sessions
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire stale redemption sessions and referral codes")
    parser.add_argument(
        "--only",
        choices=("sessions", "referrals"),
        default=None,
        help="Restrict the run to a single sweep.",
    )
    return parser.parse_args()


async def _run(only: str | None) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from rcn_api.db.session import async_session  # type: ignore import-position
    from rcn_api.jobs.redemption_sessions import expire_redemption_sessions  # type: ignore import-position
    from rcn_api.jobs.referrals import expire_stale_referrals  # type: ignore import-position

    summary: dict[str, int] = {}
    if only in (None, "sessions"):
        result = await expire_redemption_sessions(session_factory=async_session)
        summary["sessions_expired"] = result["expired"]
    if only in (None, "referrals"):
        result = await expire_stale_referrals(session_factory=async_session)
        summary["referrals_expired"] = result["expired"]
    return summary


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.only))
    logger.success(
        "Ledger sweeps completed",
        sessions_expired=summary.get("sessions_expired", 0),
        referrals_expired=summary.get("referrals_expired", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
