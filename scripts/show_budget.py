#!/usr/bin/env python3
"""Print a user's budget sheet and Ready to Assign for one month."""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from envelope_budget import db
from envelope_budget.config import configure_logging
from envelope_budget.formatting import format_amount
from envelope_budget.overview import group_totals, month_overview, month_totals


def main(user_id: str, month: str, db_path: str | None = None) -> int:
    with db.open_store(db_path) as store:
        sheet = month_overview(store, user_id, month)
        if sheet.empty:
            print(f"No categories for user {user_id}.")
            return 1
        totals = month_totals(store, user_id, month)

    display = sheet.copy()
    for column in ('assigned', 'activity', 'available'):
        display[column] = display[column].map(format_amount)
    print(f"Budget for {month}:")
    print(display[['group', 'category', 'assigned', 'activity', 'available']].to_string(index=False))

    print("\nBy group:")
    print(group_totals(sheet)[['group', 'assigned', 'activity', 'available']].to_string(index=False))

    print("\nTotals:")
    for key, value in totals.items():
        print(f"  {key}: {format_amount(value)}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Show the budget sheet for a month.')
    parser.add_argument('user_id', help='Owner of the budget')
    parser.add_argument('--month', default=date.today().replace(day=1).isoformat(), help='Any date in the month')
    parser.add_argument('--db', default=None, help='Path to the ledger database')
    parser.add_argument('--log-level', default=None, help='Logging level')
    args = parser.parse_args()
    configure_logging(args.log_level)
    raise SystemExit(main(args.user_id, args.month, args.db))
