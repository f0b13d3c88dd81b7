"""Tests for Ledger mutations, persistence and snapshots."""

import json
import time

import pytest

from dca_tracker.config.constants import LEDGER_KEY
from dca_tracker.errors import EntryNotFoundError, InvalidInputError, StorageError
from dca_tracker.models.core import Entry
from dca_tracker.services.ledger import Ledger
from dca_tracker.services.storage import MemoryStore


def _persisted(store: MemoryStore) -> list:
    return json.loads(store.get(LEDGER_KEY))


def test_add_appends_and_persists(ledger: Ledger, store: MemoryStore) -> None:
    """add returns the new entry and rewrites the stored document."""
    entry = ledger.add(0.01, 65000.0, timestamp=1700000000)
    assert ledger.snapshot() == (entry,)
    doc = _persisted(store)
    assert doc == [{"id": entry.id, "amountBtc": 0.01, "priceUsd": 65000.0, "timestamp": 1700000000.0}]


def test_add_defaults_timestamp_to_now(ledger: Ledger) -> None:
    before = time.time()
    entry = ledger.add(0.01, 65000.0)
    assert before <= entry.timestamp <= time.time()


@pytest.mark.parametrize("amount,price", [(0, 100.0), (-1, 100.0), (0.1, 0), (0.1, -5), (float("nan"), 1.0)])
def test_add_rejects_non_positive(ledger: Ledger, store: MemoryStore, amount: float, price: float) -> None:
    """Non-positive amount or price raises and leaves the ledger untouched."""
    with pytest.raises(InvalidInputError):
        ledger.add(amount, price)
    assert len(ledger) == 0
    assert store.writes == 0


def test_edit_replaces_fields_keeps_id_and_position(ledger: Ledger) -> None:
    first = ledger.add(0.1, 30000.0, timestamp=1)
    second = ledger.add(0.2, 40000.0, timestamp=2)
    updated = ledger.edit(first.id, 0.3, 35000.0, 5)
    assert updated.id == first.id
    assert ledger.snapshot() == (Entry(0.3, 35000.0, 5.0, first.id), second)


def test_edit_missing_id_raises_not_found(ledger: Ledger) -> None:
    ledger.add(0.1, 30000.0)
    with pytest.raises(EntryNotFoundError):
        ledger.edit("no-such-id", 0.1, 1.0, 0)


def test_edit_invalid_input_leaves_entry(ledger: Ledger) -> None:
    entry = ledger.add(0.1, 30000.0)
    with pytest.raises(InvalidInputError):
        ledger.edit(entry.id, 0.1, 0, 0)
    assert ledger.get(entry.id) == entry


def test_delete_present_and_absent(ledger: Ledger) -> None:
    """delete removes by id; unknown ids are a no-op, not an error."""
    a = ledger.add(0.1, 30000.0)
    b = ledger.add(0.2, 30000.0)
    ledger.delete(a.id)
    assert ledger.snapshot() == (b,)
    ledger.delete("missing")
    assert ledger.snapshot() == (b,)


def test_delete_many_single_write(ledger: Ledger, store: MemoryStore) -> None:
    """delete_many removes all matches with one persistence write."""
    ids = [ledger.add(0.1 * (i + 1), 30000.0).id for i in range(4)]
    writes_before = store.writes
    removed = ledger.delete_many({ids[0], ids[2], "missing"})
    assert removed == 2
    assert [e.id for e in ledger] == [ids[1], ids[3]]
    assert store.writes == writes_before + 1


def test_replace_all_adopts_verbatim_without_validation(ledger: Ledger) -> None:
    """replace_all takes entries as given, including zero-amount ones."""
    ledger.add(1.0, 1.0)
    new = [Entry(0.0, 0.0, 10.0), Entry(0.5, 100.0, 20.0)]
    assert ledger.replace_all(new) == 2
    assert ledger.snapshot() == tuple(new)


def test_replace_all_collapses_duplicate_ids(ledger: Ledger) -> None:
    """Ids stay unique: a repeated id keeps its first occurrence."""
    a = Entry(0.1, 1.0, 1.0, "same")
    b = Entry(0.2, 2.0, 2.0, "same")
    assert ledger.replace_all([a, b]) == 1
    assert ledger.snapshot() == (a,)


def test_merge_appends_only_new_ids(ledger: Ledger) -> None:
    existing = ledger.add(0.1, 30000.0)
    incoming = [Entry(9.0, 9.0, 9.0, existing.id), Entry(0.2, 40000.0, 2.0)]
    assert ledger.merge(incoming) == 1
    assert ledger.snapshot() == (existing, incoming[1])


def test_snapshot_is_stable_against_later_mutation(ledger: Ledger) -> None:
    """A snapshot taken earlier does not change when the ledger does."""
    ledger.add(0.1, 30000.0)
    snap = ledger.snapshot()
    ledger.add(0.2, 30000.0)
    assert len(snap) == 1
    assert isinstance(snap, tuple)


def test_sorted_by_time(ledger: Ledger) -> None:
    old = ledger.add(0.1, 1.0, timestamp=100)
    new = ledger.add(0.1, 1.0, timestamp=200)
    assert ledger.sorted_by_time() == [new, old]
    assert ledger.sorted_by_time(newest_first=False) == [old, new]


def test_ledger_reloads_from_store(store: MemoryStore) -> None:
    """A new Ledger on the same store sees the persisted entries."""
    first = Ledger(store)
    entry = first.add(0.25, 60000.0, timestamp=1700000000)
    second = Ledger(store)
    assert second.snapshot() == (entry,)


def test_ledger_loads_legacy_document_without_timestamp() -> None:
    """Older documents without timestamp load with a defaulted time."""
    doc = json.dumps([{"id": "6F9619FF-8B86-D011-B42D-00C04FC964FF", "amountBtc": 0.1, "priceUsd": 20000}])
    ledger = Ledger(MemoryStore({LEDGER_KEY: doc}))
    (entry,) = ledger.snapshot()
    assert entry.id == "6f9619ff-8b86-d011-b42d-00c04fc964ff"
    assert entry.timestamp > 0


def test_ledger_unreadable_document_starts_empty() -> None:
    ledger = Ledger(MemoryStore({LEDGER_KEY: "{not json"}))
    assert len(ledger) == 0


class _FailingStore(MemoryStore):
    def set(self, key, value):
        raise StorageError("disk full")


def test_failed_persist_leaves_ledger_unchanged() -> None:
    """If the store write fails the mutation is not applied in memory."""
    ledger = Ledger(_FailingStore())
    with pytest.raises(StorageError):
        ledger.add(0.1, 30000.0)
    assert len(ledger) == 0


def test_get_missing_raises(ledger: Ledger) -> None:
    with pytest.raises(EntryNotFoundError) as exc:
        ledger.get("nope")
    assert exc.value.entry_id == "nope"


def test_delete_many_without_match_does_not_write(ledger: Ledger, store: MemoryStore) -> None:
    entry = ledger.add(0.1, 30000.0)
    writes_before = store.writes
    assert ledger.delete_many({"missing"}) == 0
    ledger.delete("also-missing")
    assert store.writes == writes_before
    assert ledger.snapshot() == (entry,)


@pytest.mark.parametrize("timestamp", [float("nan"), float("inf"), 1e20])
def test_add_and_edit_reject_unrepresentable_timestamp(ledger: Ledger, timestamp: float) -> None:
    entry = ledger.add(0.1, 30000.0, timestamp=1)
    with pytest.raises(InvalidInputError):
        ledger.add(0.1, 30000.0, timestamp=timestamp)
    with pytest.raises(InvalidInputError):
        ledger.edit(entry.id, 0.2, 30000.0, timestamp)
    assert ledger.snapshot() == (entry,)
