"""
Exception hierarchy for DCA Tracker.

Exception Hierarchy:
    DcaTrackerError (base)
    ├── InvalidInputError
    ├── EntryNotFoundError
    ├── UnrecognizedFormatError
    ├── StorageError
    └── PriceSourceError
        ├── HttpError
        ├── MalformedResponseError
        └── PriceTimeoutError

Ledger errors are raised before any mutation happens. Price source errors
are caught by the price tracker and never reach the ledger.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DcaTrackerError(Exception):
    """
    Base exception for all DCA Tracker errors.

    Attributes:
        message: Human-readable error description
        details: Additional context (entry id, status code, etc.)
        cause: Original exception if this wraps another error
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.details = details or {}
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the exception message with details."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} [{detail_str}]"
        if self.cause:
            msg = f"{msg} (caused by: {type(self.cause).__name__}: {self.cause})"
        return msg


# =============================================================================
# Ledger / codec
# =============================================================================


class InvalidInputError(DcaTrackerError):
    """Non-positive amount or price, or an otherwise unusable value."""


class EntryNotFoundError(DcaTrackerError):
    """No ledger entry carries the requested id."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__("Entry not found", details={"id": entry_id})


class UnrecognizedFormatError(DcaTrackerError):
    """Imported data decoded to nothing as JSON and as CSV."""


class StorageError(DcaTrackerError):
    """The device-local store could not be read or written."""


# =============================================================================
# Price source
# =============================================================================


class PriceSourceError(DcaTrackerError):
    """Base for market-data failures (transport, status, body)."""


class HttpError(PriceSourceError):
    """Non-2xx response from the market-data provider."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        msg = f"HTTP error {status_code}"
        if body:
            msg = f"{msg}: {body}"
        super().__init__(msg)


class MalformedResponseError(PriceSourceError):
    """Response body does not have the expected shape."""


class PriceTimeoutError(PriceSourceError):
    """Price request exceeded its deadline."""
