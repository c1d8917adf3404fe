from __future__ import annotations

import pytest

from envelope_budget.formatting import format_amount, to_major_units


@pytest.mark.parametrize(
    "amount, decimals, symbol, expected",
    [
        (-50_000, 0, '', "-50,000"),
        (950_000, 0, '', "950,000"),
        (0, 0, '', "0"),
        (123_456, 2, '$', "1,234.56 $"),
        (-5, 2, '', "-0.05"),
        (1_000_000, 3, 'KWD', "1,000.000 KWD"),
    ],
)
def test_format_amount(amount, decimals, symbol, expected) -> None:
    assert format_amount(amount, decimals=decimals, symbol=symbol) == expected


def test_to_major_units() -> None:
    assert to_major_units(123_456, decimals=2) == pytest.approx(1234.56)
    assert to_major_units(-50_000, decimals=0) == -50_000
