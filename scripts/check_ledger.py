#!/usr/bin/env python3
"""Check that balances and category carry-forward match the transaction log.

With ``--repair`` category rows are rebuilt from the log.  Account balances
are only reported; fix them by reversing and re-recording transactions.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Tuple

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from envelope_budget import db
from envelope_budget.allocation import reconcile_category, verify_category
from envelope_budget.balances import verify_balance
from envelope_budget.catalog import list_accounts, list_categories
from envelope_budget.config import configure_logging


def main(user_id: str, repair: bool = False, db_path: str | None = None) -> int:
    problems: List[Tuple[str, str]] = []
    with db.open_store(db_path) as store:
        for account in list_accounts(store, user_id):
            drift = verify_balance(store, user_id, account.id)
            if drift:
                problems.append((f"account {account.name}", f"balance off by {drift:+d}"))

        for category in list_categories(store, user_id):
            issues = verify_category(store, user_id, category.id)
            if not issues:
                continue
            for issue in issues:
                problems.append((
                    f"category {category.name}",
                    f"{issue['month']} {issue['field']}: stored {issue['stored']}, expected {issue['expected']}",
                ))
            if repair:
                written = reconcile_category(store, user_id, category.id)
                print(f"Repaired {written} rows for category {category.name}")

    if problems:
        print("Ledger inconsistencies found:")
        for where, message in problems:
            print(f"  - {where}: {message}")
        return 1

    print("Ledger is consistent.")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Verify ledger consistency for a user.')
    parser.add_argument('user_id', help='Owner of the budget')
    parser.add_argument('--repair', action='store_true', help='Rebuild inconsistent category rows')
    parser.add_argument('--db', default=None, help='Path to the ledger database')
    parser.add_argument('--log-level', default=None, help='Logging level')
    args = parser.parse_args()
    configure_logging(args.log_level)
    raise SystemExit(main(args.user_id, repair=args.repair, db_path=args.db))
