"""Tests for JSON/CSV encode/decode and import dispatch."""

import json

import pytest

from dca_tracker.errors import InvalidInputError, UnrecognizedFormatError
from dca_tracker.models.core import Entry
from dca_tracker.services.codec import (
    decode_any,
    decode_csv,
    decode_json,
    encode,
    encode_csv,
    encode_json,
    parse_entry_lenient,
    parse_entry_strict,
)

ID_A = "0b5c8a1e-4a57-4d3b-9a63-0c1d2e3f4a5b"
ID_B = "9f0e1d2c-3b4a-4958-8776-655443322110"
NOW = 1_750_000_000.0


def _entries() -> list:
    return [
        Entry(amount_btc=0.123, price_usd=45000, timestamp=1700000000, id=ID_A),
        Entry(amount_btc=0.456, price_usd=55000, timestamp=1700100000, id=ID_B),
    ]


def test_json_round_trip() -> None:
    """Encode then decode preserves order, count, ids and values."""
    original = _entries()
    decoded = decode_json(encode_json(original))
    assert decoded == original


def test_json_encode_emits_all_fields() -> None:
    doc = json.loads(encode_json([Entry(0.1, 2.0, 3.0, ID_A)]))
    assert doc == [{"id": ID_A, "amountBtc": 0.1, "priceUsd": 2.0, "timestamp": 3.0}]


def test_lenient_defaults_missing_and_mistyped_fields() -> None:
    """Missing/mistyped fields default: fresh id, 0 amounts, now for timestamp."""
    entry = parse_entry_lenient({"id": 42, "amountBtc": "0.1", "priceUsd": True}, now=NOW)
    assert entry.id != "42"
    assert entry.amount_btc == 0.0
    assert entry.price_usd == 0.0
    assert entry.timestamp == NOW


def test_lenient_reads_legacy_record_without_timestamp() -> None:
    (entry,) = decode_json(json.dumps([{"id": ID_A, "amountBtc": 0.5, "priceUsd": 30000}]), now=NOW)
    assert entry == Entry(0.5, 30000.0, NOW, ID_A)


def test_strict_rejects_what_lenient_accepts() -> None:
    """Strict parsing refuses incomplete records that lenient parsing defaults."""
    record = {"id": ID_A, "amountBtc": 0.5, "priceUsd": 30000}
    with pytest.raises(InvalidInputError):
        parse_entry_strict(record)
    with pytest.raises(InvalidInputError):
        decode_json(json.dumps([record]), strict=True)
    with pytest.raises(InvalidInputError):
        parse_entry_strict({"id": "not-a-uuid", "amountBtc": 1, "priceUsd": 1, "timestamp": 1})
    assert parse_entry_strict({**record, "timestamp": 5}) == Entry(0.5, 30000.0, 5.0, ID_A)


@pytest.mark.parametrize("payload", ["{not json", '{"a": 1}', "[1, 2]", "42"])
def test_decode_json_unrecognized(payload: str) -> None:
    with pytest.raises(UnrecognizedFormatError):
        decode_json(payload)


def test_decode_json_empty_array() -> None:
    assert decode_json("[]") == []


def test_csv_encode_format() -> None:
    """Header then fixed-precision rows with period decimals."""
    text = encode_csv([Entry(0.1, 65000.5, 1700000000.4, ID_A)])
    assert text.split("\n") == [
        "id,amount_btc,price_usd,timestamp",
        f"{ID_A},0.10000000,65000.50,1700000000",
    ]


def test_csv_round_trip() -> None:
    """Amounts/prices survive within 8/2 decimal precision; row count preserved."""
    original = [Entry(0.123456789, 45000.456, 1700000000, ID_A), Entry(0.5, 55000, 1700100000, ID_B)]
    decoded = decode_csv(encode_csv(original))
    assert len(decoded) == len(original)
    for before, after in zip(original, decoded):
        assert after.id == before.id
        assert after.amount_btc == pytest.approx(before.amount_btc, abs=5e-9)
        assert after.price_usd == pytest.approx(before.price_usd, abs=5e-3)
        assert after.timestamp == pytest.approx(before.timestamp, abs=0.5)


def test_csv_header_optional() -> None:
    """Without a header the first row is data."""
    entries = decode_csv(f"{ID_A},0.1,30000,1700000000\n{ID_B},0.2,40000,1700000001")
    assert [e.id for e in entries] == [ID_A, ID_B]


def test_csv_malformed_rows_skipped() -> None:
    """Bad rows are dropped, good rows kept; the result counts only kept rows."""
    text = "\n".join([
        "ID,Amount_BTC,Price_USD,Timestamp",
        f"{ID_A},0.1,30000,1700000000",
        "short,row",
        f"{ID_B},abc,30000,1700000000",
        "x,0,30000,1",
        "x,0.1,-1,1",
        "",
        "   ",
        "not-a-uuid,0.2,40000,garbage",
    ])
    entries = decode_csv(text, now=NOW)
    assert len(entries) == 2
    assert entries[0] == Entry(0.1, 30000.0, 1700000000.0, ID_A)
    assert entries[1].id not in ("not-a-uuid", ID_A)
    assert entries[1].timestamp == NOW
    assert entries[1].amount_btc == 0.2


def test_csv_handles_crlf_and_empty() -> None:
    assert decode_csv("") == []
    assert decode_csv("id,amount_btc,price_usd,timestamp\r\n") == []
    assert len(decode_csv(f"{ID_A},0.1,1,1\r\n{ID_B},0.1,1,1\r\n")) == 2


def test_encode_dispatch() -> None:
    entries = _entries()
    assert encode(entries, "JSON") == encode_json(entries)
    assert encode(entries, "csv") == encode_csv(entries)
    with pytest.raises(InvalidInputError):
        encode(entries, "xml")


def test_decode_any_prefers_json() -> None:
    entries, fmt = decode_any(encode_json(_entries()).encode("utf-8"))
    assert fmt == "json"
    assert entries == _entries()


def test_decode_any_falls_back_to_csv() -> None:
    entries, fmt = decode_any(encode_csv(_entries()).encode("utf-8"))
    assert fmt == "csv"
    assert len(entries) == 2


def test_decode_any_empty_json_array_tries_csv_then_fails() -> None:
    """An empty JSON array is not accepted; '[]' is not CSV either."""
    with pytest.raises(UnrecognizedFormatError) as exc:
        decode_any(b"[]")
    assert "amount_btc" in str(exc.value)


@pytest.mark.parametrize("payload", [b"", b"\xff\xfe\x00garbage", b"hello world", b"id,amount_btc,price_usd,timestamp\n"])
def test_decode_any_unrecognized(payload: bytes) -> None:
    with pytest.raises(UnrecognizedFormatError):
        decode_any(payload)


@pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
def test_lenient_defaults_non_finite_json_numbers(token: str) -> None:
    """json.loads accepts NaN/Infinity; they default like any mistyped field."""
    payload = f'[{{"id": "{ID_A}", "amountBtc": {token}, "priceUsd": {token}, "timestamp": {token}}}]'
    (entry,) = decode_json(payload, now=NOW)
    assert entry == Entry(0.0, 0.0, NOW, ID_A)


@pytest.mark.parametrize("field", ["amountBtc", "priceUsd", "timestamp"])
def test_strict_rejects_non_finite_json_numbers(field: str) -> None:
    record = {"id": ID_A, "amountBtc": 0.5, "priceUsd": 30000, "timestamp": 5}
    record[field] = float("nan")
    with pytest.raises(InvalidInputError):
        decode_json(json.dumps([record]), strict=True)


def test_out_of_range_timestamp_falls_back_to_now() -> None:
    """Timestamps datetime cannot represent are treated as malformed."""
    (from_json,) = decode_json(json.dumps([{"id": ID_A, "amountBtc": 0.1, "priceUsd": 1, "timestamp": 1e20}]), now=NOW)
    assert from_json.timestamp == NOW
    (from_csv,) = decode_csv(f"{ID_B},0.1,30000,1e20", now=NOW)
    assert from_csv.timestamp == NOW
    assert from_csv.date.year > 2000
    with pytest.raises(InvalidInputError):
        parse_entry_strict({"id": ID_A, "amountBtc": 0.1, "priceUsd": 1, "timestamp": 1e20})
