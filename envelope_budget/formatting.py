"""Formatting utilities for amounts stored in minor currency units."""

from __future__ import annotations

from typing import Optional

from .config import CURRENCY_DECIMALS


def to_major_units(amount: int, decimals: Optional[int] = None) -> float:
    """Convert minor units to a float in major units (display only).

    Example:
        >>> to_major_units(123456, decimals=2)
        1234.56
    """
    places = CURRENCY_DECIMALS if decimals is None else decimals
    return amount / (10 ** places)


def format_amount(amount: int, decimals: Optional[int] = None, symbol: str = '') -> str:
    """Format a minor-unit amount with thousands separators.

    Args:
        amount: Amount in the smallest currency unit
        decimals: Digits after the decimal point (defaults to config)
        symbol: Optional currency symbol appended after the number

    Returns:
        Formatted string (e.g. "-50,000" or "1,234.56 $")

    Example:
        >>> format_amount(-50000)
        '-50,000'
        >>> format_amount(123456, decimals=2, symbol='$')
        '1,234.56 $'
    """
    places = CURRENCY_DECIMALS if decimals is None else decimals
    sign = '-' if amount < 0 else ''
    whole, fraction = divmod(abs(int(amount)), 10 ** places)
    text = f"{whole:,}"
    if places:
        text += f".{fraction:0{places}d}"
    text = f"{sign}{text}"
    return f"{text} {symbol}" if symbol else text
