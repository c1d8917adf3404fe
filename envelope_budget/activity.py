"""Monthly activity derived straight from the transaction log.

Stored ``budgets.activity`` is a running cache maintained on every write;
the functions here recompute the same figures from ``transactions`` so the
cache can be checked and rebuilt.
"""

from __future__ import annotations

from datetime import date
from typing import Any, List, Optional

import pandas as pd

from .db import LedgerStore
from .models import month_of

TRANSACTION_COLUMNS = [
    'id', 'account_id', 'category_id', 'date', 'month', 'amount', 'payee', 'memo', 'cleared',
]


def transactions_frame(
    store: LedgerStore,
    user_id: str,
    category_id: Optional[str] = None,
    account_id: Optional[str] = None,
) -> pd.DataFrame:
    """Return the user's transactions with a derived first-of-month ``month``."""
    where: List[str] = ["user_id = ?"]
    params: List[Any] = [user_id]
    if category_id is not None:
        where.append("category_id = ?")
        params.append(category_id)
    if account_id is not None:
        where.append("account_id = ?")
        params.append(account_id)

    sql = (
        "SELECT id, account_id, category_id, date, amount, payee, memo, cleared "
        "FROM transactions WHERE " + " AND ".join(where) + " ORDER BY date ASC, created_at ASC"
    )
    df = store.frame(sql, params)
    if df.empty:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)
    df['date'] = pd.to_datetime(df['date']).dt.date
    df['month'] = df['date'].map(lambda d: d.replace(day=1))
    df['amount'] = df['amount'].astype('int64')
    df['cleared'] = df['cleared'].astype(bool)
    return df[TRANSACTION_COLUMNS]


def activity_by_month(
    store: LedgerStore,
    user_id: str,
    category_id: Optional[str] = None,
) -> pd.DataFrame:
    """Sum categorized transaction amounts per ``(category_id, month)``.

    Uncategorized transactions never count toward any category.
    """
    df = transactions_frame(store, user_id, category_id=category_id)
    df = df[df['category_id'].notna()]
    if df.empty:
        return pd.DataFrame(columns=['category_id', 'month', 'activity'])
    grouped = (
        df.groupby(['category_id', 'month'], as_index=False)['amount']
        .sum()
        .rename(columns={'amount': 'activity'})
        .sort_values(['category_id', 'month'])
        .reset_index(drop=True)
    )
    grouped['activity'] = grouped['activity'].astype('int64')
    return grouped


def category_month_activity(store: LedgerStore, user_id: str, category_id: str, month: Any) -> int:
    target: date = month_of(month)
    frame = activity_by_month(store, user_id, category_id=category_id)
    match = frame[frame['month'] == target]
    if match.empty:
        return 0
    return int(match['activity'].iloc[0])
