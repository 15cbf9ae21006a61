"""Recompute balances from the provenance ledger and report projection drift.

Exits non-zero when any alert is raised so the script can gate deploys.

Example:
    python tooling/scripts/check_ledger_integrity.py --limit 2000
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit cached customer projections against the ledger")
    parser.add_argument(
        "--limit",
        type=int,
        default=500,
        help="Maximum number of customers checked, most recently updated first.",
    )
    return parser.parse_args()


async def _run(limit: int) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from rcn_api.db.session import async_session  # type: ignore import-position
    from rcn_api.jobs.integrity import check_ledger_integrity  # type: ignore import-position
    from rcn_api.observability.alerts import TtlDedupStore  # type: ignore import-position

    # Fresh store so every alert found by this run is logged.
    return await check_ledger_integrity(
        session_factory=async_session,
        limit=limit,
        dedup_store=TtlDedupStore(timedelta(seconds=1)),
    )


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.limit))
    if summary.get("alerts", 0):
        logger.error("Ledger integrity check found problems", **summary)
        return 1
    logger.success(
        "Ledger integrity check passed",
        customers_checked=summary.get("customers_checked", 0),
        promo_codes_checked=summary.get("promo_codes_checked", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
