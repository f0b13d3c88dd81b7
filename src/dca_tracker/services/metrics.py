"""Ledger valuation metrics (pure functions).

Every function takes a sequence of entries (usually Ledger.snapshot()) and
optionally a live price. A live price of None means no successful fetch yet;
value and P/L are then None rather than 0.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence

from dca_tracker.config.constants import DEFAULT_BUCKET_SIZE_USD, DEFAULT_GOAL_SATS, SATS_PER_BTC
from dca_tracker.errors import InvalidInputError
from dca_tracker.models.core import AllocationBucket, DcaSummary, Entry, PriceChange


def total_btc(entries: Sequence[Entry]) -> float:
    return sum(e.amount_btc for e in entries)


def total_cost_usd(entries: Sequence[Entry]) -> float:
    return sum(e.cost_usd for e in entries)


def average_cost_usd(entries: Sequence[Entry]) -> float:
    """Average price paid per BTC; 0.0 for an empty (or zero-amount) ledger."""
    btc = total_btc(entries)
    if btc <= 0:
        return 0.0
    return total_cost_usd(entries) / btc


def current_value_usd(entries: Sequence[Entry], live_price: Optional[float]) -> Optional[float]:
    if live_price is None:
        return None
    return live_price * total_btc(entries)


def pnl_usd(entries: Sequence[Entry], live_price: Optional[float]) -> Optional[float]:
    value = current_value_usd(entries, live_price)
    if value is None:
        return None
    return value - total_cost_usd(entries)


def pnl_pct(entries: Sequence[Entry], live_price: Optional[float]) -> Optional[float]:
    """Unrealized P/L as a percentage of cost basis; None without price or cost basis."""
    pnl = pnl_usd(entries, live_price)
    cost = total_cost_usd(entries)
    if pnl is None or cost <= 0:
        return None
    return (pnl / cost) * 100.0


def btc_to_sats(btc: float) -> int:
    """
    Convert BTC to satoshis.

    Rounds half away from zero (0.000000005 BTC -> 1 sat), so tiny amounts
    never display as 0 sats because of banker's rounding. The product is
    rounded as its exact binary value, so 0.49999999999999994 sats stays 0.
    """
    scaled = btc * SATS_PER_BTC
    return int(Decimal(scaled).to_integral_value(rounding=ROUND_HALF_UP))


def sats_to_btc(sats: int) -> float:
    return sats / SATS_PER_BTC


def allocation_buckets(
    entries: Sequence[Entry], bucket_size_usd: float = DEFAULT_BUCKET_SIZE_USD
) -> List[AllocationBucket]:
    """
    Group buys by price range.

    Bucket index is floor(price / bucket_size); only indices that occur are
    returned, ascending. A price exactly on a boundary belongs to the higher
    bucket (10000.0 -> [10000, 20000)).
    """
    if bucket_size_usd <= 0:
        raise InvalidInputError("Bucket size must be positive", details={"bucket_size_usd": bucket_size_usd})

    grouped: Dict[int, List[Entry]] = {}
    for e in entries:
        grouped.setdefault(math.floor(e.price_usd / bucket_size_usd), []).append(e)

    buckets: List[AllocationBucket] = []
    for index in sorted(grouped):
        members = grouped[index]
        lower = index * bucket_size_usd
        buckets.append(AllocationBucket(
            lower=lower,
            upper=lower + bucket_size_usd,
            total_btc=total_btc(members),
            buy_count=len(members),
        ))
    return buckets


def stacking_progress(entries: Sequence[Entry], goal_sats: int) -> float:
    """Fraction of the sats goal reached, capped at 1.0."""
    sats = btc_to_sats(total_btc(entries))
    return min(sats / max(goal_sats, 1), 1.0)


def price_change(history: Sequence[float]) -> Optional[PriceChange]:
    """Low/high and first-to-last change of a price series; None with fewer than 2 points."""
    if len(history) < 2:
        return None
    start, end = history[0], history[-1]
    diff = end - start
    pct = (diff / start) * 100.0 if start != 0 else 0.0
    return PriceChange(low=min(history), high=max(history), change=diff, change_pct=pct)


def compute_dca_summary(
    entries: Sequence[Entry],
    live_price: Optional[float],
    goal_sats: int = DEFAULT_GOAL_SATS,
    bucket_size_usd: float = DEFAULT_BUCKET_SIZE_USD,
) -> DcaSummary:
    """
    Compute all ledger metrics in one pass for display.

    Single source of truth for totals, average cost, value, P/L, stacking
    progress and allocation. live_price may be None (price not fetched yet).
    """
    btc = total_btc(entries)
    return {
        "entry_count": len(entries),
        "total_btc": btc,
        "total_sats": btc_to_sats(btc),
        "total_cost_usd": total_cost_usd(entries),
        "average_cost_usd": average_cost_usd(entries),
        "live_price": live_price,
        "current_value_usd": current_value_usd(entries, live_price),
        "pnl_usd": pnl_usd(entries, live_price),
        "pnl_pct": pnl_pct(entries, live_price),
        "goal_sats": goal_sats,
        "stacking_progress": stacking_progress(entries, goal_sats),
        "allocation": allocation_buckets(entries, bucket_size_usd),
    }
