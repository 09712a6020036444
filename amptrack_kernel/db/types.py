"""
Module: amptrack_kernel.db.types
Responsibility: Column types and the canonical decimal helpers for money,
    quantities and tax rates.
Architecture position: Kernel > DB.  May be imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats.  Every monetary value is a Decimal quantized to two places
      by round_money(), the only sanctioned rounding function.
    - Float inputs crossing the boundary are converted through str() so
      binary representation error never enters the arithmetic.
    - Values that reach a Numeric column fit its precision: MAX_MONEY for
      Numeric(12, 2), MAX_QUANTITY for Numeric(12, 3).
    - Timestamps are UTC-aware on the way in and on the way out, whatever
      the backend returns.
"""

from datetime import timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")

# Largest values Numeric(12, 2) and Numeric(12, 3) can hold
MAX_MONEY = Decimal("9999999999.99")
MAX_QUANTITY = Decimal("999999999.999")


class UTCDateTime(TypeDecorator):
    """
    DateTime(timezone=True) that always yields aware UTC datetimes.

    SQLite stores no offset and hands back naive values; PostgreSQL returns
    the session time zone.  Both are normalized to UTC so a freshly written
    row and a reloaded one compare equal.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Convert a request value (str, int, float, Decimal) to Decimal.

    Floats are routed through ``str()`` so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValueError: If the value is not numeric (message names ``field``).
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{field} must be a number") from exc
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given decimal places (default: cents).

    This is the ONLY sanctioned rounding function for money in the kernel.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_minor_units(value: Decimal) -> int:
    """Convert a money Decimal to integer cents (payment providers)."""
    return int(round_money(value) * 100)


def from_minor_units(value: int) -> Decimal:
    """Convert integer cents back to a money Decimal."""
    return round_money(Decimal(value) / Decimal(100))
