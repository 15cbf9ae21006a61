"""Home shop resolution over redeemable provenance entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from rcn_api.domain.policy import TieBreak

MARKET_SHOP_ID = "market"


@dataclass(frozen=True, slots=True)
class EarningEntry:
    """Minimal view of a provenance entry used for home shop resolution."""

    entry_id: int
    shop_id: str | None
    amount: Decimal
    is_redeemable: bool
    earned_at: datetime


def shop_totals(entries: Iterable[EarningEntry]) -> dict[str, Decimal]:
    """Sum redeemable, shop-attributed amounts per shop."""

    totals: dict[str, Decimal] = {}
    for entry in entries:
        if not _counts_toward_home(entry):
            continue
        totals[entry.shop_id] = totals.get(entry.shop_id, Decimal("0")) + entry.amount  # type: ignore[index]
    return totals


def resolve_home_shop(entries: Iterable[EarningEntry], *, tie_break: TieBreak = "earliest_to_max") -> str | None:
    """Return the shop with the largest redeemable earnings, or ``None``.

    Ties on the final total are broken either by the shop that reached the
    maximum first (``earliest_to_max``) or by the shop with the latest
    contributing entry (``most_recent``).
    """

    ordered = sorted(
        (entry for entry in entries if _counts_toward_home(entry)),
        key=lambda entry: (entry.earned_at, entry.entry_id),
    )
    if not ordered:
        return None

    totals = shop_totals(ordered)
    best = max(totals.values())
    tied = {shop for shop, total in totals.items() if total == best}
    if len(tied) == 1:
        return next(iter(tied))

    if tie_break == "most_recent":
        for entry in reversed(ordered):
            if entry.shop_id in tied:
                return entry.shop_id
        return None

    running: dict[str, Decimal] = {}
    for entry in ordered:
        shop = entry.shop_id
        running[shop] = running.get(shop, Decimal("0")) + entry.amount  # type: ignore[index]
        if shop in tied and running[shop] >= best:
            return shop
    return None


def _counts_toward_home(entry: EarningEntry) -> bool:
    return (
        entry.is_redeemable
        and entry.amount > 0
        and entry.shop_id is not None
        and entry.shop_id != MARKET_SHOP_ID
    )


__all__ = ["EarningEntry", "MARKET_SHOP_ID", "resolve_home_shop", "shop_totals"]
