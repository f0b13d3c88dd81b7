"""Typed structures for DCA entries and derived metrics."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NamedTuple, Optional, TypedDict


def new_entry_id() -> str:
    """Return a fresh opaque entry identifier (string form of a UUID4)."""
    return str(uuid.uuid4())


def is_valid_timestamp(value: float) -> bool:
    """True if value is finite epoch seconds that datetime can represent."""
    if not math.isfinite(value):
        return False
    try:
        datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return False
    return True


@dataclass(frozen=True)
class Entry:
    """
    One DCA purchase.

    Construction does not validate: ingest paths (Ledger.add/edit, CSV import)
    reject non-positive amounts and prices before building an Entry.

    Attributes:
        amount_btc: Quantity of bitcoin acquired
        price_usd: Price paid per whole bitcoin
        timestamp: Unix epoch seconds of the purchase
        id: Stable identifier, generated when not given
    """

    amount_btc: float
    price_usd: float
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=new_entry_id)

    @property
    def cost_usd(self) -> float:
        return self.amount_btc * self.price_usd

    @property
    def date(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class AllocationBucket(NamedTuple):
    """Entries whose price falls in [lower, upper)."""

    lower: float
    upper: float
    total_btc: float
    buy_count: int


class PriceChange(NamedTuple):
    """Range and change over a price history window."""

    low: float
    high: float
    change: float
    change_pct: float


class Comparisons(NamedTuple):
    """Spot prices used for the pro-mode comparison panel."""

    btc: float
    eth: float
    paxg: float


class PriceSnapshot(NamedTuple):
    """Read-only view of the price tracker slot."""

    currency: str
    spot: Optional[float]
    history: tuple[float, ...]
    change: Optional[PriceChange]
    comparisons: Optional[Comparisons]
    fetched_at: Optional[float]
    error: Optional[str]


class DcaSummary(TypedDict, total=False):
    """Aggregate ledger metrics as returned by compute_dca_summary."""

    entry_count: int
    total_btc: float
    total_sats: int
    total_cost_usd: float
    average_cost_usd: float
    live_price: Optional[float]
    current_value_usd: Optional[float]
    pnl_usd: Optional[float]
    pnl_pct: Optional[float]
    goal_sats: int
    stacking_progress: float
    allocation: list[AllocationBucket]
