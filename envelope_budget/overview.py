"""Month budget sheet: every category with its assigned, activity and available."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import pandas as pd

from .db import LedgerStore
from .models import month_of
from .ready_to_assign import total_liquid_funds

OVERVIEW_COLUMNS = [
    'group_id', 'group', 'category_id', 'category', 'target_amount',
    'assigned', 'activity', 'available',
]


def month_overview(store: LedgerStore, user_id: str, month: Any) -> pd.DataFrame:
    """One row per category for ``month``, in group then category creation order.

    Categories without a row for the month show ``assigned`` and ``activity``
    of 0 and the ``available`` carried from their latest earlier row.
    Nothing is written.
    """
    target = month_of(month)
    categories = store.frame(
        "SELECT g.id AS group_id, g.name AS 'group', c.id AS category_id, c.name AS category, "
        "c.target_amount AS target_amount "
        "FROM categories c JOIN category_groups g ON g.id = c.group_id "
        "WHERE c.user_id = ? "
        "ORDER BY g.position ASC, g.created_at ASC, c.created_at ASC, c.rowid ASC",
        [user_id],
    )
    if categories.empty:
        return pd.DataFrame(columns=OVERVIEW_COLUMNS)

    budgets = store.frame(
        "SELECT category_id, month, assigned, activity, available FROM budgets "
        "WHERE user_id = ? AND month <= ? ORDER BY category_id, month",
        [user_id, target],
    )
    latest = budgets.groupby('category_id', as_index=False).last()
    current = latest[latest['month'] == target.isoformat()]

    df = categories.merge(latest[['category_id', 'available']], on='category_id', how='left')
    df = df.merge(current[['category_id', 'assigned', 'activity']], on='category_id', how='left')
    for column in ('assigned', 'activity', 'available'):
        df[column] = df[column].fillna(0).astype('int64')
    df['target_amount'] = pd.to_numeric(df['target_amount'], errors='coerce').astype('Int64')
    return df[OVERVIEW_COLUMNS].reset_index(drop=True)


def group_totals(overview: pd.DataFrame) -> pd.DataFrame:
    """Sum assigned, activity and available per category group, keeping sheet order."""
    if overview.empty:
        return pd.DataFrame(columns=['group_id', 'group', 'assigned', 'activity', 'available'])
    return (
        overview.groupby(['group_id', 'group'], as_index=False, sort=False)[['assigned', 'activity', 'available']]
        .sum()
    )


def month_totals(
    store: LedgerStore,
    user_id: str,
    month: Any,
    include_types: Optional[Sequence[str]] = None,
) -> Dict[str, int]:
    overview = month_overview(store, user_id, month)
    total_available = int(overview['available'].sum()) if not overview.empty else 0
    total_funds = total_liquid_funds(store, user_id, include_types)
    return {
        'total_assigned': int(overview['assigned'].sum()) if not overview.empty else 0,
        'total_activity': int(overview['activity'].sum()) if not overview.empty else 0,
        'total_available': total_available,
        'total_funds': total_funds,
        'ready_to_assign': total_funds - total_available,
    }
