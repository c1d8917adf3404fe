"""Ready to Assign: money in accounts not yet given a job.

    ready_to_assign = total funds - total available across categories

Nothing here is stored; every figure is recomputed from the current rows.
Which account types count as funds is a policy, ``config.FUNDS_ACCOUNT_TYPES``
(all types by default, credit included).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Sequence

from .config import ACCOUNT_TYPES, FUNDS_ACCOUNT_TYPES
from .db import LedgerStore
from .errors import ValidationError
from .models import month_of


@dataclass(frozen=True)
class ReadyToAssign:
    month: date
    total_funds: int
    total_available: int

    @property
    def amount(self) -> int:
        return self.total_funds - self.total_available


def _resolve_types(include_types: Optional[Sequence[str]]) -> Sequence[str]:
    if include_types is None:
        return FUNDS_ACCOUNT_TYPES
    types = [t.strip().lower() for t in include_types]
    unknown = [t for t in types if t not in ACCOUNT_TYPES]
    if unknown:
        raise ValidationError(f"Unknown account types: {unknown}")
    return types


def total_liquid_funds(
    store: LedgerStore,
    user_id: str,
    include_types: Optional[Sequence[str]] = None,
) -> int:
    types = list(_resolve_types(include_types))
    rows = store.select('accounts', {'user_id': user_id, 'type': ('in', types)})
    return sum(int(r['balance'] or 0) for r in rows)


def total_available(store: LedgerStore, user_id: str, month: Any) -> int:
    """Sum, per category, ``available`` of its latest row at or before ``month``."""
    target = month_of(month)
    df = store.frame(
        "SELECT b.category_id, b.available FROM budgets b "
        "JOIN ("
        "  SELECT category_id, MAX(month) AS month FROM budgets "
        "  WHERE user_id = ? AND month <= ? GROUP BY category_id"
        ") latest ON latest.category_id = b.category_id AND latest.month = b.month "
        "WHERE b.user_id = ?",
        [user_id, target, user_id],
    )
    if df.empty:
        return 0
    return int(df['available'].sum())


def ready_to_assign_summary(
    store: LedgerStore,
    user_id: str,
    month: Any,
    include_types: Optional[Sequence[str]] = None,
) -> ReadyToAssign:
    target = month_of(month)
    return ReadyToAssign(
        month=target,
        total_funds=total_liquid_funds(store, user_id, include_types),
        total_available=total_available(store, user_id, target),
    )


def ready_to_assign(
    store: LedgerStore,
    user_id: str,
    month: Any,
    include_types: Optional[Sequence[str]] = None,
) -> int:
    return ready_to_assign_summary(store, user_id, month, include_types).amount
