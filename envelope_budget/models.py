"""Entity dataclasses and date/amount normalization helpers.

Rows come out of the store as plain dictionaries; the dataclasses here give
them names and types at the edges of the public API.  Monetary values are
always integers in the smallest currency unit.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import pandas as pd

from .errors import ValidationError

# ---------------------------------------------------------------------------
# Dates and months
# ---------------------------------------------------------------------------


def parse_date(value: Any) -> date:
    """Convert a date, datetime, pandas Timestamp or ISO-like string to a date."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("date is required")
    if hasattr(value, 'to_pydatetime'):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        raise ValidationError(f"unparseable date: {value!r}")
    return ts.date()


def month_of(value: Any) -> date:
    """Normalize any date-like value to the first day of its calendar month."""
    return parse_date(value).replace(day=1)


def add_months(month: date, count: int) -> date:
    index = month.year * 12 + (month.month - 1) + count
    return date(index // 12, index % 12 + 1, 1)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def _integral_decimal(value: Decimal, field: str, raw: Any) -> int:
    if not value.is_finite():
        raise ValidationError(f"{field} must be finite, got {raw!r}")
    if value != value.to_integral_value():
        raise ValidationError(f"{field} must be a whole number of minor units, got {raw!r}")
    return int(value)


def parse_amount(value: Any, *, field: str = 'amount', allow_zero: bool = True) -> int:
    """Validate a monetary amount in minor units and return it as an int.

    Accepts integers (numpy included), integral floats and numeric strings
    (``"(500)"`` style negatives and thousands separators included).
    Strings and Decimals are parsed exactly, never through float.  Rejects
    booleans, NaN, infinities and fractional values.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if isinstance(value, numbers.Integral):
        number = int(value)
    elif isinstance(value, str):
        cleaned = value.strip()
        if cleaned.startswith("(") and cleaned.endswith(")"):
            cleaned = f"-{cleaned[1:-1]}"
        cleaned = cleaned.replace(",", "").replace("_", "")
        if not cleaned:
            raise ValidationError(f"{field} is required")
        try:
            number = int(cleaned)
        except ValueError:
            try:
                parsed = Decimal(cleaned)
            except InvalidOperation:
                raise ValidationError(f"{field} is not numeric: {value!r}") from None
            number = _integral_decimal(parsed, field, value)
    elif isinstance(value, Decimal):
        number = _integral_decimal(value, field, value)
    else:
        try:
            as_float = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a number, got {value!r}") from None
        if not math.isfinite(as_float):
            raise ValidationError(f"{field} must be finite, got {value!r}")
        if not as_float.is_integer():
            raise ValidationError(f"{field} must be a whole number of minor units, got {value!r}")
        number = int(as_float)
    if not allow_zero and number == 0:
        raise ValidationError(f"{field} must be non-zero")
    return number


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Profile:
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Profile':
        return cls(id=row['id'], full_name=row.get('full_name'), avatar_url=row.get('avatar_url'))


@dataclass(frozen=True)
class Account:
    id: str
    user_id: str
    name: str
    type: str
    balance: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Account':
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            name=row['name'],
            type=row['type'],
            balance=int(row['balance'] or 0),
        )


@dataclass(frozen=True)
class CategoryGroup:
    id: str
    user_id: str
    name: str
    position: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'CategoryGroup':
        return cls(id=row['id'], user_id=row['user_id'], name=row['name'], position=int(row['position']))


@dataclass(frozen=True)
class Category:
    id: str
    user_id: str
    group_id: str
    name: str
    target_amount: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Category':
        target = row.get('target_amount')
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            group_id=row['group_id'],
            name=row['name'],
            target_amount=None if target is None else int(target),
        )


@dataclass(frozen=True)
class Budget:
    """State of one category in one month."""

    category_id: str
    month: date
    assigned: int = 0
    activity: int = 0
    available: int = 0
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Budget':
        return cls(
            id=row.get('id'),
            category_id=row['category_id'],
            month=parse_date(row['month']),
            assigned=int(row['assigned'] or 0),
            activity=int(row['activity'] or 0),
            available=int(row['available'] or 0),
        )


@dataclass(frozen=True)
class Transaction:
    id: str
    user_id: str
    account_id: str
    date: date
    amount: int
    category_id: Optional[str] = None
    payee: str = ''
    memo: str = ''
    cleared: bool = False
    idempotency_key: Optional[str] = None

    @property
    def month(self) -> date:
        return self.date.replace(day=1)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            account_id=row['account_id'],
            date=parse_date(row['date']),
            amount=int(row['amount']),
            category_id=row.get('category_id'),
            payee=row.get('payee') or '',
            memo=row.get('memo') or '',
            cleared=bool(row.get('cleared')),
            idempotency_key=row.get('idempotency_key'),
        )
