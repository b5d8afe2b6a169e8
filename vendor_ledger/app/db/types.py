"""
Column types for financial data.

Amounts are persisted as integer minor units (paise) and surfaced as
``Decimal`` with exactly two fractional digits. No floats anywhere.
Timestamps are always returned timezone-aware in UTC, whatever the backend
does with tzinfo on storage.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.types import TypeDecorator


MONEY_DECIMAL_PLACES = 2
MONEY_QUANTUM = Decimal("0.01")


def to_money(value) -> Decimal:
    """
    Coerce a value into a two-place Decimal.

    Accepts Decimal, int or str. Floats are rejected because their binary
    representation cannot be trusted to the paisa.

    Raises:
        ValueError: if the value is a float, not numeric, or carries more
            than two fractional digits.
    """
    if isinstance(value, float):
        raise ValueError("Monetary amounts must not be floats")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if amount != amount.quantize(MONEY_QUANTUM):
        raise ValueError(f"Amount {amount} has more than {MONEY_DECIMAL_PLACES} decimal places")
    return amount.quantize(MONEY_QUANTUM)


def to_minor_units(amount: Decimal) -> int:
    return int(to_money(amount).scaleb(MONEY_DECIMAL_PLACES))


def from_minor_units(units: int) -> Decimal:
    return Decimal(int(units)).scaleb(-MONEY_DECIMAL_PLACES)


class Money(TypeDecorator):
    """Decimal amount stored as a BigInteger count of minor units."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_minor_units(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_minor_units(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
