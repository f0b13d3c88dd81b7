"""Pytest configuration: ensure src is on path when running tests from repo root, plus shared fixtures."""

import sys
from pathlib import Path

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.is_dir() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from dca_tracker.services.ledger import Ledger  # noqa: E402
from dca_tracker.services.storage import MemoryStore  # noqa: E402


class FakeClock:
    """Manually advanced clock for throttle tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ledger(store: MemoryStore) -> Ledger:
    return Ledger(store)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
