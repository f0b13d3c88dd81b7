"""Scalar user preferences: display currency, sats/pro mode flags and the stacking goal."""

from __future__ import annotations

from typing import Any

import structlog

from dca_tracker.config.constants import (
    DEFAULT_CURRENCY,
    DEFAULT_GOAL_SATS,
    GOAL_STEP_SATS,
    MAX_GOAL_SATS,
    MIN_GOAL_SATS,
    PREF_CURRENCY,
    PREF_PRO_MODE,
    PREF_SATS_GOAL,
    PREF_SATS_MODE,
    SUPPORTED_CURRENCIES,
)
from dca_tracker.errors import InvalidInputError
from dca_tracker.services.storage import KeyValueStore

logger = structlog.get_logger(__name__)


def clamp_goal(sats: int) -> int:
    """Clamp a goal to [MIN_GOAL_SATS, MAX_GOAL_SATS]."""
    return max(MIN_GOAL_SATS, min(MAX_GOAL_SATS, int(sats)))


def _as_bool(value: Any) -> bool:
    return value if isinstance(value, bool) else False


class Preferences:
    """
    Preferences read once from the store and written on every setter call.

    Values are exposed as read-only properties; change them through the
    explicit setters so each write is visible at the call site.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store
        currency = store.get(PREF_CURRENCY, DEFAULT_CURRENCY)
        self._currency = currency if currency in SUPPORTED_CURRENCIES else DEFAULT_CURRENCY
        self._sats_mode = _as_bool(store.get(PREF_SATS_MODE, False))
        self._pro_mode = _as_bool(store.get(PREF_PRO_MODE, False))
        goal = store.get(PREF_SATS_GOAL)
        # Stored goals are taken as-is; only the adjustment operations clamp
        if isinstance(goal, int) and not isinstance(goal, bool) and goal > 0:
            self._goal_sats = goal
        else:
            self._goal_sats = DEFAULT_GOAL_SATS

    @property
    def currency(self) -> str:
        return self._currency

    @property
    def sats_mode(self) -> bool:
        return self._sats_mode

    @property
    def pro_mode(self) -> bool:
        return self._pro_mode

    @property
    def goal_sats(self) -> int:
        return self._goal_sats

    def _write(self, key: str, value: Any) -> None:
        self._store.set(key, value)
        logger.debug("preference_saved", key=key, value=value)

    def set_currency(self, code: str) -> str:
        code = (code or "").upper()
        if code not in SUPPORTED_CURRENCIES:
            raise InvalidInputError("Unsupported currency", details={"currency": code, "supported": SUPPORTED_CURRENCIES})
        self._write(PREF_CURRENCY, code)
        self._currency = code
        return code

    def toggle_currency(self) -> str:
        """Cycle USD <-> EUR."""
        index = SUPPORTED_CURRENCIES.index(self._currency)
        return self.set_currency(SUPPORTED_CURRENCIES[(index + 1) % len(SUPPORTED_CURRENCIES)])

    def set_sats_mode(self, enabled: bool) -> None:
        self._write(PREF_SATS_MODE, bool(enabled))
        self._sats_mode = bool(enabled)

    def set_pro_mode(self, enabled: bool) -> None:
        self._write(PREF_PRO_MODE, bool(enabled))
        self._pro_mode = bool(enabled)

    def set_goal(self, sats: int) -> int:
        goal = clamp_goal(sats)
        self._write(PREF_SATS_GOAL, goal)
        self._goal_sats = goal
        return goal

    def increase_goal(self, step: int = GOAL_STEP_SATS) -> int:
        return self.set_goal(self._goal_sats + step)

    def decrease_goal(self, step: int = GOAL_STEP_SATS) -> int:
        return self.set_goal(self._goal_sats - step)

    def reset_goal(self) -> int:
        return self.set_goal(DEFAULT_GOAL_SATS)
