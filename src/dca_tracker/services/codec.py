"""Ledger interchange formats: JSON and CSV encode/decode plus import dispatch.

JSON decoding is lenient by default so exports from older versions (which
had no ``timestamp`` field) still load; strict parsing is available for
callers that want to reject incomplete records. CSV decoding skips bad rows
and reports only what it could parse.
"""

from __future__ import annotations

import csv
import json
import math
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from dca_tracker.config.constants import CSV_HEADER, EXPORT_FORMATS
from dca_tracker.errors import InvalidInputError, UnrecognizedFormatError
from dca_tracker.models.core import Entry, is_valid_timestamp, new_entry_id

logger = structlog.get_logger(__name__)

IMPORT_HELP = (
    "Could not import file. Use a JSON export from this app or a CSV with "
    f"columns: {CSV_HEADER}"
)


# --- field helpers ---

def _is_number(value: Any) -> bool:
    """Finite int or float; json.loads also yields NaN and Infinity, which do not count."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def _is_timestamp(value: Any) -> bool:
    return _is_number(value) and is_valid_timestamp(float(value))


def _parse_uuid(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        return None


def _parse_float(value: str) -> Optional[float]:
    try:
        f = float(value.strip())
    except ValueError:
        return None
    return f if math.isfinite(f) else None


# --- JSON ---

def entry_to_dict(entry: Entry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amountBtc": entry.amount_btc,
        "priceUsd": entry.price_usd,
        "timestamp": entry.timestamp,
    }


def encode_json(entries: Iterable[Entry], indent: Optional[int] = None) -> str:
    """Serialize entries as a JSON array; every object carries all four fields."""
    return json.dumps([entry_to_dict(e) for e in entries], indent=indent)


def parse_entry_strict(obj: Any) -> Entry:
    """
    Build an Entry from a decoded JSON object, rejecting anything incomplete.

    Raises:
        InvalidInputError: obj is not an object, id is not a UUID, a numeric
            field is missing or not a finite number, or the timestamp is out
            of range.
    """
    if not isinstance(obj, dict):
        raise InvalidInputError("Entry must be a JSON object", details={"type": type(obj).__name__})
    entry_id = _parse_uuid(obj.get("id"))
    if entry_id is None:
        raise InvalidInputError("Entry id must be a UUID string", details={"id": obj.get("id")})
    for key in ("amountBtc", "priceUsd"):
        if not _is_number(obj.get(key)):
            raise InvalidInputError("Entry field must be a finite number", details={"field": key, "id": entry_id})
    if not _is_timestamp(obj.get("timestamp")):
        raise InvalidInputError("Entry timestamp must be representable epoch seconds", details={"field": "timestamp", "id": entry_id})
    return Entry(
        id=entry_id,
        amount_btc=float(obj["amountBtc"]),
        price_usd=float(obj["priceUsd"]),
        timestamp=float(obj["timestamp"]),
    )


def parse_entry_lenient(obj: Dict[str, Any], now: Optional[float] = None) -> Entry:
    """
    Build an Entry from a decoded JSON object, defaulting what is missing.

    id -> fresh UUID, amountBtc/priceUsd -> 0, timestamp -> now. NaN, Infinity
    and timestamps datetime cannot represent count as mistyped. Values are
    taken as-is otherwise, so a defaulted entry can have a zero amount or price.
    """
    if now is None:
        now = time.time()
    amount = obj.get("amountBtc")
    price = obj.get("priceUsd")
    ts = obj.get("timestamp")
    return Entry(
        id=_parse_uuid(obj.get("id")) or new_entry_id(),
        amount_btc=float(amount) if _is_number(amount) else 0.0,
        price_usd=float(price) if _is_number(price) else 0.0,
        timestamp=float(ts) if _is_timestamp(ts) else now,
    )


def decode_json(data: str | bytes, strict: bool = False, now: Optional[float] = None) -> List[Entry]:
    """
    Decode a JSON array of entry objects.

    Raises:
        UnrecognizedFormatError: not JSON, not an array, or an element is not
            an object.
        InvalidInputError: strict=True and an element is incomplete.
    """
    try:
        doc = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise UnrecognizedFormatError("Not valid JSON", cause=e) from e
    if not isinstance(doc, list):
        raise UnrecognizedFormatError("JSON document is not an array", details={"type": type(doc).__name__})
    if any(not isinstance(item, dict) for item in doc):
        raise UnrecognizedFormatError("JSON array contains non-object elements")
    if strict:
        return [parse_entry_strict(item) for item in doc]
    if now is None:
        now = time.time()
    return [parse_entry_lenient(item, now) for item in doc]


# --- CSV ---

def encode_csv(entries: Iterable[Entry]) -> str:
    """Header plus one row per entry; period decimals with 8/2/0 fractional digits."""
    lines = [CSV_HEADER]
    for e in entries:
        lines.append(f"{e.id},{e.amount_btc:.8f},{e.price_usd:.2f},{e.timestamp:.0f}")
    return "\n".join(lines)


def decode_csv(text: str, now: Optional[float] = None) -> List[Entry]:
    """
    Parse CSV rows into entries, skipping what cannot be used.

    Blank lines are ignored. The first row is a header if it contains
    ``amount_btc``. Rows with fewer than 4 fields, or without a positive
    amount and price, are dropped; a bad id or timestamp (unparseable or
    out of range) is replaced (fresh UUID / now).
    """
    if now is None:
        now = time.time()
    rows = [line.strip() for line in text.splitlines()]
    rows = [r for r in rows if r]
    if not rows:
        return []

    start = 1 if "amount_btc" in rows[0].lower() else 0
    out: List[Entry] = []
    skipped = 0
    for parts in csv.reader(rows[start:]):
        if len(parts) < 4:
            skipped += 1
            continue
        amount = _parse_float(parts[1])
        price = _parse_float(parts[2])
        if amount is None or price is None or amount <= 0 or price <= 0:
            skipped += 1
            continue
        ts = _parse_float(parts[3])
        out.append(Entry(
            id=_parse_uuid(parts[0]) or new_entry_id(),
            amount_btc=amount,
            price_usd=price,
            timestamp=ts if ts is not None and is_valid_timestamp(ts) else now,
        ))
    if skipped:
        logger.debug("csv_rows_skipped", skipped=skipped, parsed=len(out))
    return out


# --- dispatch ---

def encode(entries: Sequence[Entry], fmt: str) -> str:
    """Encode entries in an export format ("json" or "csv")."""
    fmt = (fmt or "").lower()
    if fmt == "json":
        return encode_json(entries)
    if fmt == "csv":
        return encode_csv(entries)
    raise InvalidInputError("Unsupported export format", details={"format": fmt, "supported": EXPORT_FORMATS})


def decode_any(data: bytes, now: Optional[float] = None) -> Tuple[List[Entry], str]:
    """
    Decode bytes of unknown format: JSON first, then UTF-8 CSV.

    Returns:
        (entries, format_name). entries is never empty.

    Raises:
        UnrecognizedFormatError: neither format yields any entry.
    """
    try:
        entries = decode_json(data, now=now)
    except UnrecognizedFormatError:
        entries = []
    if entries:
        return entries, "json"

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = ""
    entries = decode_csv(text, now=now) if text else []
    if entries:
        return entries, "csv"

    raise UnrecognizedFormatError(IMPORT_HELP, details={"bytes": len(data)})

