"""The DCA ledger: ordered purchase entries with explicit, persisted mutations."""

from __future__ import annotations

import math
import threading
import time
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import structlog

from dca_tracker.config.constants import LEDGER_KEY
from dca_tracker.errors import EntryNotFoundError, InvalidInputError, StorageError, UnrecognizedFormatError
from dca_tracker.models.core import Entry, is_valid_timestamp, new_entry_id
from dca_tracker.services import codec
from dca_tracker.services.storage import KeyValueStore

logger = structlog.get_logger(__name__)


def validate_purchase(amount_btc: float, price_usd: float) -> None:
    """Raise InvalidInputError unless both amount and price are positive finite numbers."""
    for name, value in (("amount_btc", amount_btc), ("price_usd", price_usd)):
        try:
            v = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidInputError("Invalid input", details={name: value}, cause=e) from e
        if not math.isfinite(v) or v <= 0:
            raise InvalidInputError("Invalid input", details={name: value})


def validate_timestamp(timestamp: float) -> float:
    """Return timestamp as a float, or raise InvalidInputError if datetime cannot represent it."""
    try:
        ts = float(timestamp)
    except (TypeError, ValueError) as e:
        raise InvalidInputError("Invalid timestamp", details={"timestamp": timestamp}, cause=e) from e
    if not is_valid_timestamp(ts):
        raise InvalidInputError("Invalid timestamp", details={"timestamp": timestamp})
    return ts


def _unique_by_id(entries: Iterable[Entry]) -> List[Entry]:
    seen = set()
    out: List[Entry] = []
    for e in entries:
        if e.id in seen:
            continue
        seen.add(e.id)
        out.append(e)
    return out


class Ledger:
    """
    Ordered collection of Entry, unique by id.

    The ledger owns its entries and is the unit of persistence: every
    successful mutation rewrites the full JSON document under LEDGER_KEY.
    Mutations are serialized by a lock; a mutation that fails (validation or
    store write) leaves the in-memory entries unchanged.

    Example:
        >>> ledger = Ledger(MemoryStore())
        >>> entry = ledger.add(0.01, 65000.0)
        >>> ledger.snapshot()[0].cost_usd
        650.0
    """

    def __init__(self, store: KeyValueStore, key: str = LEDGER_KEY):
        self._store = store
        self._key = key
        self._lock = threading.RLock()
        self._entries: Tuple[Entry, ...] = tuple(self._load())

    def _load(self) -> List[Entry]:
        raw = self._store.get(self._key)
        if not raw:
            return []
        try:
            entries = codec.decode_json(raw)
        except UnrecognizedFormatError as e:
            logger.warning("ledger_document_unreadable", key=self._key, error=str(e))
            return []
        logger.info("ledger_loaded", entries=len(entries))
        return _unique_by_id(entries)

    def _commit(self, entries: Sequence[Entry]) -> None:
        """Persist then adopt; the caller holds the lock."""
        new_entries = tuple(entries)
        try:
            self._store.set(self._key, codec.encode_json(new_entries))
        except StorageError:
            logger.error("ledger_persist_failed", key=self._key, entries=len(new_entries))
            raise
        self._entries = new_entries

    def _index_of(self, entry_id: str) -> int:
        for i, e in enumerate(self._entries):
            if e.id == entry_id:
                return i
        raise EntryNotFoundError(entry_id)

    # --- reads ---

    def snapshot(self) -> Tuple[Entry, ...]:
        """Immutable copy of the current entries in insertion order."""
        return self._entries

    def get(self, entry_id: str) -> Entry:
        entries = self._entries
        for e in entries:
            if e.id == entry_id:
                return e
        raise EntryNotFoundError(entry_id)

    def sorted_by_time(self, newest_first: bool = True) -> List[Entry]:
        return sorted(self._entries, key=lambda e: e.timestamp, reverse=newest_first)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    # --- mutations ---

    def add(self, amount_btc: float, price_usd: float, timestamp: Optional[float] = None) -> Entry:
        """Append a validated purchase with a fresh id."""
        validate_purchase(amount_btc, price_usd)
        entry = Entry(
            id=new_entry_id(),
            amount_btc=float(amount_btc),
            price_usd=float(price_usd),
            timestamp=validate_timestamp(timestamp) if timestamp is not None else time.time(),
        )
        with self._lock:
            self._commit(self._entries + (entry,))
        logger.info("ledger_entry_added", id=entry.id, amount_btc=entry.amount_btc, price_usd=entry.price_usd)
        return entry

    def edit(self, entry_id: str, amount_btc: float, price_usd: float, timestamp: float) -> Entry:
        """Replace all fields of an existing entry, keeping its id and position."""
        with self._lock:
            index = self._index_of(entry_id)
            validate_purchase(amount_btc, price_usd)
            updated = Entry(
                id=entry_id,
                amount_btc=float(amount_btc),
                price_usd=float(price_usd),
                timestamp=validate_timestamp(timestamp),
            )
            entries = list(self._entries)
            entries[index] = updated
            self._commit(entries)
        logger.info("ledger_entry_edited", id=entry_id)
        return updated

    def delete(self, entry_id: str) -> None:
        """Remove the entry if present; absent ids are ignored."""
        self.delete_many({entry_id})

    def delete_many(self, ids: Iterable[str]) -> int:
        """Remove every entry whose id is in ids in one write. Returns the count removed."""
        targets = set(ids)
        with self._lock:
            kept = [e for e in self._entries if e.id not in targets]
            removed = len(self._entries) - len(kept)
            if removed:
                self._commit(kept)
        if removed:
            logger.info("ledger_entries_deleted", count=removed)
        return removed

    def replace_all(self, entries: Iterable[Entry]) -> int:
        """
        Discard the current ledger and adopt entries verbatim (import/restore).

        No positivity check is made here; the codec validates upstream. Repeated
        ids keep their first occurrence.
        """
        adopted = _unique_by_id(entries)
        with self._lock:
            previous = len(self._entries)
            self._commit(adopted)
        logger.info("ledger_replaced", previous=previous, adopted=len(adopted))
        return len(adopted)

    def merge(self, entries: Iterable[Entry]) -> int:
        """Append entries whose ids are not yet in the ledger. Returns the count appended."""
        with self._lock:
            existing = {e.id for e in self._entries}
            added = [e for e in _unique_by_id(entries) if e.id not in existing]
            self._commit(self._entries + tuple(added))
        logger.info("ledger_merged", added=len(added))
        return len(added)
