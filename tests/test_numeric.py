"""Unit tests for treasury numeric primitives."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from treasury.numeric import (
    NUMERIC_9,
    decimal_to_str,
    fits_storage_precision,
    floor_decimal,
    normalize_decimal,
    normalize_timestamp,
    parse_quantity,
    percent_of,
    stable_hash,
)


def test_decimal_to_str_is_canonical() -> None:
    assert decimal_to_str(Decimal("100.000")) == "100"
    assert decimal_to_str(Decimal("1E+3")) == "1000"
    assert decimal_to_str(Decimal("0.000")) == "0"
    assert decimal_to_str(Decimal("0.000000001")) == "0.000000001"


def test_floor_decimal_truncates_toward_zero() -> None:
    assert floor_decimal(Decimal("1.9999999999"), NUMERIC_9) == Decimal("1.999999999")
    assert floor_decimal(Decimal("0.0000000009"), NUMERIC_9) == Decimal("0E-9")


def test_normalize_decimal_uses_storage_precision() -> None:
    assert normalize_decimal(Decimal("1")) == Decimal("1.000000000000000000")


def test_percent_of_rounds_half_up_to_four_places() -> None:
    assert percent_of(Decimal("70"), Decimal("100")) == Decimal("70.0000")
    assert percent_of(Decimal("1"), Decimal("3")) == Decimal("33.3333")
    assert percent_of(Decimal("2"), Decimal("3")) == Decimal("66.6667")
    assert percent_of(Decimal("5"), Decimal("0")) == Decimal("0.0000")


def test_parse_quantity_accepts_strings_numbers_and_decimals() -> None:
    assert parse_quantity("1.5") == Decimal("1.5")
    assert parse_quantity(" 2 ") == Decimal("2")
    assert parse_quantity(0.1) == Decimal("0.1")
    assert parse_quantity(7) == Decimal("7")
    assert parse_quantity(Decimal("3.25")) == Decimal("3.25")


@pytest.mark.parametrize("value", ["abc", "", None, True, "NaN", "Infinity"])
def test_parse_quantity_rejects_invalid_values(value: object) -> None:
    with pytest.raises(ValueError):
        parse_quantity(value, field="amount")


def test_normalize_timestamp_converts_to_utc_zulu() -> None:
    ts = datetime(2026, 1, 1, 5, 0, tzinfo=timezone(timedelta(hours=5)))
    assert normalize_timestamp(ts) == "2026-01-01T00:00:00Z"


def test_stable_hash_is_deterministic_and_token_sensitive() -> None:
    first = stable_hash(("sim", 1, Decimal("1.5"), None, True))
    again = stable_hash(("sim", 1, Decimal("1.50"), None, True))
    other = stable_hash(("sim", 2, Decimal("1.5"), None, True))

    assert first == again
    assert first != other
    assert len(first) == 64


def test_fits_storage_precision_matches_numeric_38_18() -> None:
    assert fits_storage_precision(Decimal("0.000000000000000001"))
    assert fits_storage_precision(Decimal("1.500000000000000000000"))
    assert fits_storage_precision(Decimal("99999999999999999999.999999999999999999"))
    assert fits_storage_precision(Decimal("0E-30"))
    assert not fits_storage_precision(Decimal("1E-19"))
    assert not fits_storage_precision(Decimal("0.1234567890123456789"))
    assert not fits_storage_precision(Decimal("1E+20"))
    assert not fits_storage_precision(Decimal("NaN"))
