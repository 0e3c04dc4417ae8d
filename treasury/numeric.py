"""Fixed-point quantity, timestamp, and hashing primitives for treasury records."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from hashlib import sha256
from typing import Any, Iterable

NUMERIC_18 = Decimal("0.000000000000000001")
NUMERIC_9 = Decimal("0.000000001")
PERCENT_SCALE = Decimal("0.0001")
ZERO = Decimal("0")


def normalize_decimal(value: Decimal, scale: Decimal = NUMERIC_18) -> Decimal:
    """Quantize decimals to storage precision."""
    return value.quantize(scale, rounding=ROUND_HALF_EVEN)


def floor_decimal(value: Decimal, scale: Decimal = NUMERIC_9) -> Decimal:
    """Quantize toward zero; used when splitting a total into shares."""
    return value.quantize(scale, rounding=ROUND_DOWN)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """Share of ``whole`` as a percentage rounded half-up to 4 places."""
    if whole <= 0:
        return ZERO.quantize(PERCENT_SCALE)
    return (part / whole * Decimal(100)).quantize(PERCENT_SCALE, rounding=ROUND_HALF_UP)


def parse_quantity(value: Any, *, field: str = "amount") -> Decimal:
    """Parse a caller-supplied quantity without going through binary floats."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a decimal quantity")
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not a valid decimal: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"{field} must be finite")
    return parsed


def fits_storage_precision(value: Decimal) -> bool:
    """True when ``value`` is exactly representable as NUMERIC(38,18)."""
    if not value.is_finite():
        return False
    _, digits, exponent = value.as_tuple()
    excess = -exponent - 18
    if excess > 0 and any(digits[-excess:]):
        return False
    return value.is_zero() or value.adjusted() < 20


def decimal_to_str(value: Decimal) -> str:
    """Canonical decimal serialization."""
    return format(value.normalize(), "f") if value != 0 else "0"


def normalize_timestamp(value: datetime) -> str:
    """Normalize timestamps to UTC RFC3339."""
    utc_value = value.astimezone(timezone.utc)
    return utc_value.isoformat().replace("+00:00", "Z")


def normalize_token(value: Any) -> str:
    """Serialize primitive values deterministically for hashing."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        return format(normalize_decimal(value), "f")
    if isinstance(value, datetime):
        return normalize_timestamp(value)
    return str(value)


def stable_hash(tokens: Iterable[Any]) -> str:
    """Compute a stable SHA256 hash over canonical token serialization."""
    preimage = "|".join(normalize_token(token) for token in tokens)
    return sha256(preimage.encode("utf-8")).hexdigest()
