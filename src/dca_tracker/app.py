"""Application bootstrap and core API entrypoints for DCA Tracker.

AppContext wires the ledger, preferences and price trackers together and is
passed explicitly to whatever front end drives it (the CLI below, scripts,
or tests). Nothing here is a module-level singleton.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

import structlog

from dca_tracker.config.constants import (
    DEFAULT_CURRENCY,
    EXPORT_FORMATS,
    PRICE_REFRESH_SECONDS,
)
from dca_tracker.errors import DcaTrackerError, InvalidInputError
from dca_tracker.models.core import DcaSummary
from dca_tracker.services import codec, metrics
from dca_tracker.services.ledger import Ledger
from dca_tracker.services.preferences import Preferences
from dca_tracker.services.pricing import CoinGeckoClient, PriceTracker
from dca_tracker.services.storage import (
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    default_ledger_store,
    default_preferences_store,
)
from dca_tracker.ui import utils as fmt

logger = structlog.get_logger(__name__)


@dataclass
class AppContext:
    """
    Everything a front end needs, constructed once and passed down.

    valuation_tracker always quotes USD (ledger prices are USD);
    market_tracker follows the display currency preference.
    """

    ledger: Ledger
    preferences: Preferences
    client: CoinGeckoClient
    valuation_tracker: PriceTracker = field(init=False)
    market_tracker: PriceTracker = field(init=False)

    def __post_init__(self) -> None:
        self.valuation_tracker = PriceTracker(self.client, currency=DEFAULT_CURRENCY)
        self.market_tracker = PriceTracker(self.client, currency=self.preferences.currency)

    @classmethod
    def create(
        cls,
        ledger_store: Optional[KeyValueStore] = None,
        preferences_store: Optional[KeyValueStore] = None,
        client: Optional[CoinGeckoClient] = None,
    ) -> "AppContext":
        return cls(
            ledger=Ledger(ledger_store if ledger_store is not None else default_ledger_store()),
            preferences=Preferences(preferences_store if preferences_store is not None else default_preferences_store()),
            client=client or CoinGeckoClient(),
        )

    @classmethod
    def in_memory(cls, client: Optional[CoinGeckoClient] = None) -> "AppContext":
        """Context with nothing persisted (tests, dry runs)."""
        return cls.create(MemoryStore(), MemoryStore(), client)

    def summary(self) -> DcaSummary:
        """Ledger metrics against the last known USD price (None if never fetched)."""
        return metrics.compute_dca_summary(
            self.ledger.snapshot(),
            self.valuation_tracker.spot,
            self.preferences.goal_sats,
        )

    def close(self) -> None:
        self.valuation_tracker.stop()
        self.market_tracker.stop()


# --- file import / export ---

def export_entries(ledger: Ledger, path: str, fmt_name: Optional[str] = None) -> int:
    """
    Write the ledger to path as JSON or CSV.

    The format defaults to the file extension. Returns the number of entries written.
    """
    if fmt_name is None:
        fmt_name = os.path.splitext(path)[1].lstrip(".").lower() or "json"
    entries = ledger.snapshot()
    text = codec.encode(entries, fmt_name)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    logger.info("export_completed", path=path, format=fmt_name, entries=len(entries))
    return len(entries)


def import_file(ledger: Ledger, path: str, merge: bool = False) -> int:
    """
    Import a JSON or CSV file into the ledger.

    By default the ledger is REPLACED by the file contents (destructive);
    merge=True appends only entries whose ids are new. On
    UnrecognizedFormatError the ledger is left untouched.

    Returns:
        Number of entries adopted (replace) or appended (merge).
    """
    with open(path, "rb") as f:
        data = f.read()
    entries, fmt_name = codec.decode_any(data)
    count = ledger.merge(entries) if merge else ledger.replace_all(entries)
    logger.info("import_completed", path=path, format=fmt_name, decoded=len(entries), adopted=count, merge=merge)
    return count


# --- CLI ---

def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


def _parse_timestamp(value: str) -> float:
    """Accept epoch seconds or an ISO date/datetime."""
    try:
        return float(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid timestamp: {value!r}") from e


def _on_off(value: str) -> bool:
    v = value.lower()
    if v in ("on", "true", "1", "yes"):
        return True
    if v in ("off", "false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dca-tracker", description="Bitcoin DCA ledger and valuation")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging to stderr")
    parser.add_argument("--data-dir", help="directory for ledger.json / preferences.json")
    parser.add_argument("--offline", action="store_true", help="do not fetch prices")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("summary", help="totals, average cost, P/L, goal progress, allocation")
    sub.add_parser("list", help="entries, newest first")

    p = sub.add_parser("add", help="record a buy")
    p.add_argument("amount_btc", type=float)
    p.add_argument("price_usd", type=float)
    p.add_argument("--timestamp", type=_parse_timestamp, help="epoch seconds or ISO date (default: now)")

    p = sub.add_parser("edit", help="replace an entry's fields")
    p.add_argument("id")
    p.add_argument("amount_btc", type=float)
    p.add_argument("price_usd", type=float)
    p.add_argument("--timestamp", type=_parse_timestamp, help="default: keep the current timestamp")

    p = sub.add_parser("delete", help="remove entries by id")
    p.add_argument("ids", nargs="+")

    p = sub.add_parser("import", help="import JSON or CSV (replaces the ledger unless --merge)")
    p.add_argument("path")
    p.add_argument("--merge", action="store_true", help="append new ids instead of replacing")

    p = sub.add_parser("export", help="write the ledger as JSON or CSV")
    p.add_argument("path")
    p.add_argument("--format", choices=EXPORT_FORMATS, help="default: from the file extension")

    p = sub.add_parser("price", help="spot price and 24h range in the display currency")
    p.add_argument("--chart", help="write a 24h chart image to this path")

    p = sub.add_parser("watch", help="refresh the price periodically and print the summary")
    p.add_argument("--interval", type=float, default=PRICE_REFRESH_SECONDS)
    p.add_argument("--count", type=int, default=0, help="stop after N updates (0: until Ctrl-C)")

    p = sub.add_parser("goal", help="show or adjust the stacking goal")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--up", action="store_true")
    group.add_argument("--down", action="store_true")
    group.add_argument("--reset", action="store_true")
    group.add_argument("--set", type=int, metavar="SATS")

    p = sub.add_parser("settings", help="show or change preferences")
    p.add_argument("--currency")
    p.add_argument("--toggle-currency", action="store_true")
    p.add_argument("--sats-mode", type=_on_off, metavar="on|off")
    p.add_argument("--pro-mode", type=_on_off, metavar="on|off")
    return parser


def _print_summary(ctx: AppContext, out) -> None:
    s = ctx.summary()
    prefs = ctx.preferences
    if prefs.sats_mode:
        print(f"Total: {fmt.format_sats(s['total_sats'])} sats", file=out)
    else:
        print(f"Total BTC: {fmt.format_btc(s['total_btc'])}", file=out)
    print(f"Total Cost: {fmt.format_money(s['total_cost_usd'])}", file=out)
    print(f"Average Cost: {fmt.format_money(s['average_cost_usd'])}", file=out)
    print(f"Current Value: {fmt.format_money(s['current_value_usd'])}", file=out)
    print(fmt.format_pnl(s["pnl_usd"], s["pnl_pct"]), file=out)
    print(
        f"Goal: {fmt.format_goal(s['goal_sats'], prefs.sats_mode)}  "
        f"{s['stacking_progress'] * 100:.1f}%",
        file=out,
    )
    if not s["allocation"]:
        print("No allocation data yet.", file=out)
    for b in s["allocation"]:
        print(
            f"  {fmt.format_money(b.lower)}-{fmt.format_money(b.upper)}  "
            f"{fmt.format_btc(b.total_btc)} BTC ({b.buy_count})",
            file=out,
        )


def _print_entries(ctx: AppContext, out) -> None:
    sats_mode = ctx.preferences.sats_mode
    for e in ctx.ledger.sorted_by_time():
        amount = (
            f"{fmt.format_sats(metrics.btc_to_sats(e.amount_btc))} sats"
            if sats_mode else f"{fmt.format_btc(e.amount_btc)} BTC"
        )
        print(
            f"{e.id}  {amount} @ {fmt.format_money(e.price_usd)}  "
            f"Cost: {fmt.format_money(e.cost_usd)}  {e.date:%Y-%m-%d %H:%M}",
            file=out,
        )


def run(argv: Optional[Sequence[str]] = None, ctx: Optional[AppContext] = None, out=None) -> int:
    """Run one CLI command. Returns the process exit code."""
    out = out or sys.stdout
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if ctx is None:
        if args.data_dir:
            ctx = AppContext.create(
                JsonFileStore(os.path.join(args.data_dir, "ledger.json")),
                JsonFileStore(os.path.join(args.data_dir, "preferences.json")),
            )
        else:
            ctx = AppContext.create()

    try:
        return _dispatch(ctx, args, out)
    except (DcaTrackerError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        ctx.close()


def _dispatch(ctx: AppContext, args: argparse.Namespace, out) -> int:
    prefs = ctx.preferences
    cmd = args.command

    if cmd in ("summary", "list"):
        if not args.offline:
            ctx.valuation_tracker.refresh()
        if cmd == "summary":
            _print_summary(ctx, out)
        else:
            _print_entries(ctx, out)
        if ctx.valuation_tracker.last_error:
            print(f"Price unavailable: {ctx.valuation_tracker.last_error}", file=sys.stderr)

    elif cmd == "add":
        entry = ctx.ledger.add(args.amount_btc, args.price_usd, args.timestamp)
        print(f"Added {entry.id}", file=out)

    elif cmd == "edit":
        current = ctx.ledger.get(args.id)
        ts = args.timestamp if args.timestamp is not None else current.timestamp
        ctx.ledger.edit(args.id, args.amount_btc, args.price_usd, ts)
        print(f"Updated {args.id}", file=out)

    elif cmd == "delete":
        removed = ctx.ledger.delete_many(args.ids)
        print(f"Deleted {removed} entr{'y' if removed == 1 else 'ies'}", file=out)

    elif cmd == "import":
        if not args.merge and len(ctx.ledger):
            print(f"Warning: replacing {len(ctx.ledger)} existing entries (use --merge to append)", file=sys.stderr)
        count = import_file(ctx.ledger, args.path, merge=args.merge)
        print(f"Imported {count} entries", file=out)

    elif cmd == "export":
        count = export_entries(ctx.ledger, args.path, args.format)
        print(f"Exported {count} entries to {args.path}", file=out)

    elif cmd == "price":
        if args.offline:
            raise InvalidInputError("The price command needs network access")
        snap = ctx.market_tracker.refresh_market(include_comparisons=prefs.pro_mode, force=True)
        if snap.spot is None:
            print(f"Price data not available. {snap.error or ''}".strip(), file=out)
            return 1
        print(f"Current price ({snap.currency}): {fmt.format_money(snap.spot, snap.currency)}", file=out)
        if snap.change is not None:
            print(
                f"24h range: Low {fmt.format_money(snap.change.low, snap.currency)}  "
                f"High {fmt.format_money(snap.change.high, snap.currency)}",
                file=out,
            )
            print(
                f"24h change: {fmt.format_signed(snap.change.change, ' ' + snap.currency)} "
                f"({fmt.format_signed(snap.change.change_pct, '%')})",
                file=out,
            )
        if snap.comparisons is not None:
            print(f"ETH price: {fmt.format_money(snap.comparisons.eth, snap.currency)}", file=out)
            print(f"Gold (PAXG) price: {fmt.format_money(snap.comparisons.paxg, snap.currency)}", file=out)
        if args.chart:
            from dca_tracker.ui import save_price_chart  # Deferred so matplotlib is only loaded when charting

            save_price_chart(snap.history, args.chart, snap.currency)
            print(f"Chart written to {args.chart}", file=out)

    elif cmd == "watch":
        _watch(ctx, args, out)

    elif cmd == "goal":
        if args.up:
            prefs.increase_goal()
        elif args.down:
            prefs.decrease_goal()
        elif args.reset:
            prefs.reset_goal()
        elif args.set is not None:
            prefs.set_goal(args.set)
        progress = metrics.stacking_progress(ctx.ledger.snapshot(), prefs.goal_sats)
        print(f"Stacking goal: {fmt.format_goal(prefs.goal_sats, prefs.sats_mode)}  {progress * 100:.1f}%", file=out)

    elif cmd == "settings":
        if args.currency:
            prefs.set_currency(args.currency)
        if args.toggle_currency:
            prefs.toggle_currency()
        if args.sats_mode is not None:
            prefs.set_sats_mode(args.sats_mode)
        if args.pro_mode is not None:
            prefs.set_pro_mode(args.pro_mode)
        ctx.market_tracker.set_currency(prefs.currency)
        print(f"Display currency: {prefs.currency}", file=out)
        print(f"Sats mode: {'on' if prefs.sats_mode else 'off'}", file=out)
        print(f"Pro mode: {'on' if prefs.pro_mode else 'off'}", file=out)
        print(f"Stacking goal: {fmt.format_sats(prefs.goal_sats)} sats", file=out)
    return 0


def _watch(ctx: AppContext, args: argparse.Namespace, out) -> None:
    tracker = ctx.valuation_tracker
    tracker.start(interval=args.interval)
    printed: List[Optional[float]] = []
    try:
        while args.count <= 0 or len(printed) < args.count:
            fetched_at = tracker.fetched_at
            if fetched_at is not None and (not printed or printed[-1] != fetched_at):
                printed.append(fetched_at)
                print(f"--- {datetime.fromtimestamp(fetched_at):%H:%M:%S}", file=out)
                _print_summary(ctx, out)
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        tracker.stop()


def main() -> None:
    """Console entry point."""
    sys.exit(run())
