"""Category-month allocation: assigned, activity and available.

One ``budgets`` row per (category, month), created lazily.  Stored rows keep

    available(m) = available(previous existing row) + assigned(m) + activity(m)

where the previous existing row is the nearest earlier month that has a row,
however far back (0 when there is none).  Because ``available`` carries
forward, every write that changes a month's ``available`` shifts all later
rows of the same category by the same amount; the cascade is applied in the
same store transaction as the write itself.

The stored ``available`` is therefore a cache of a fold over the rows.
:func:`fold_available` recomputes that fold and :func:`reconcile_category`
rewrites the cache from it (and ``activity`` from the transaction log) when
a database has drifted.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .activity import activity_by_month
from .db import LedgerStore
from .errors import ConflictError, NotFoundError
from .models import Budget, month_of, parse_amount

log = logging.getLogger(__name__)

T = TypeVar('T')

BUDGET_KEY = ('category_id', 'month')


def _require_category(store: LedgerStore, user_id: str, category_id: str) -> Dict[str, Any]:
    row = store.select_one('categories', {'id': category_id, 'user_id': user_id})
    if row is None:
        raise NotFoundError('categories', category_id)
    return row


def _retry_on_conflict(operation: Callable[[], T], what: str) -> T:
    """Run ``operation``; on a store conflict run it exactly once more.

    ``operation`` re-reads whatever prior state it needs, so the retry works
    from fresh values.  A second conflict propagates.
    """
    try:
        return operation()
    except ConflictError as exc:
        log.warning("Conflict during %s, retrying once: %s", what, exc)
        return operation()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def prior_available(store: LedgerStore, user_id: str, category_id: str, month: Any) -> int:
    """``available`` of the nearest existing row strictly before ``month``, else 0."""
    rows = store.select(
        'budgets',
        {'category_id': category_id, 'user_id': user_id, 'month': ('<', month_of(month))},
        order_by=['month DESC'],
        limit=1,
    )
    return int(rows[0]['available']) if rows else 0


def available_as_of(store: LedgerStore, user_id: str, category_id: str, month: Any) -> int:
    """``available`` of the latest row at or before ``month``, else 0."""
    rows = store.select(
        'budgets',
        {'category_id': category_id, 'user_id': user_id, 'month': ('<=', month_of(month))},
        order_by=['month DESC'],
        limit=1,
    )
    return int(rows[0]['available']) if rows else 0


def get_budget(store: LedgerStore, user_id: str, category_id: str, month: Any) -> Optional[Budget]:
    row = store.select_one(
        'budgets', {'category_id': category_id, 'user_id': user_id, 'month': month_of(month)}
    )
    return Budget.from_row(row) if row else None


def category_budgets(store: LedgerStore, user_id: str, category_id: str) -> List[Budget]:
    rows = store.select('budgets', {'category_id': category_id, 'user_id': user_id}, order_by=['month'])
    return [Budget.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _cascade(store: LedgerStore, user_id: str, category_id: str, month: date, delta: int) -> int:
    if delta == 0:
        return 0
    return store.increment(
        'budgets',
        {'category_id': category_id, 'user_id': user_id, 'month': ('>', month)},
        {'available': delta},
    )


def record_activity(store: LedgerStore, user_id: str, category_id: str, month: Any, delta: int) -> Budget:
    """Post ``delta`` of transaction activity to the category's month.

    Creates the row when absent (``assigned=0``, ``activity=delta``,
    ``available=prior + delta``); otherwise adds ``delta`` to both
    ``activity`` and ``available``.  Later months shift by ``delta``.
    """
    delta = parse_amount(delta, field='delta')
    target = month_of(month)
    _require_category(store, user_id, category_id)

    def _apply() -> Budget:
        with store.transaction():
            prior = prior_available(store, user_id, category_id, target)
            row = store.upsert(
                'budgets',
                {
                    'user_id': user_id,
                    'category_id': category_id,
                    'month': target,
                    'assigned': 0,
                    'activity': delta,
                    'available': prior + delta,
                },
                BUDGET_KEY,
                update_columns=[],
                increments={'activity': delta, 'available': delta},
            )
            shifted = _cascade(store, user_id, category_id, target, delta)
        log.debug(
            "Activity %+d on %s/%s (shifted %d later months)", delta, category_id, target, shifted
        )
        return Budget.from_row(row)

    return _retry_on_conflict(_apply, f"record_activity {category_id}/{target}")


def set_assigned(store: LedgerStore, user_id: str, category_id: str, month: Any, new_assigned: int) -> Budget:
    """Set the amount assigned to the category for ``month``.

    ``available`` moves by ``new_assigned - old_assigned``; ``activity`` is
    left alone.  Later months move by the same amount, so repeated edits in
    one month only ever carry their net change forward.
    """
    new_assigned = parse_amount(new_assigned, field='assigned')
    target = month_of(month)
    _require_category(store, user_id, category_id)

    def _apply() -> Budget:
        with store.transaction():
            existing = store.select_one(
                'budgets', {'category_id': category_id, 'user_id': user_id, 'month': target}
            )
            old_assigned = int(existing['assigned']) if existing else 0
            delta = new_assigned - old_assigned
            prior = prior_available(store, user_id, category_id, target)
            row = store.upsert(
                'budgets',
                {
                    'user_id': user_id,
                    'category_id': category_id,
                    'month': target,
                    'assigned': new_assigned,
                    'activity': 0,
                    'available': prior + new_assigned,
                },
                BUDGET_KEY,
                update_columns=['assigned'],
                increments={'available': delta},
            )
            _cascade(store, user_id, category_id, target, delta)
        log.debug("Assigned %s/%s: %d -> %d", category_id, target, old_assigned, new_assigned)
        return Budget.from_row(row)

    return _retry_on_conflict(_apply, f"set_assigned {category_id}/{target}")


def touch_month(store: LedgerStore, user_id: str, category_id: str, month: Any) -> Budget:
    """Materialize the row for ``month`` if missing, carrying ``available`` forward."""
    target = month_of(month)
    _require_category(store, user_id, category_id)

    def _apply() -> Budget:
        with store.transaction():
            prior = prior_available(store, user_id, category_id, target)
            row = store.upsert(
                'budgets',
                {
                    'user_id': user_id,
                    'category_id': category_id,
                    'month': target,
                    'assigned': 0,
                    'activity': 0,
                    'available': prior,
                },
                BUDGET_KEY,
                update_columns=[],
            )
        return Budget.from_row(row)

    return _retry_on_conflict(_apply, f"touch_month {category_id}/{target}")


# ---------------------------------------------------------------------------
# Consistency checks
# ---------------------------------------------------------------------------


def fold_available(budgets: Sequence[Budget]) -> List[Budget]:
    """Recompute ``available`` for a category's rows from the first month forward."""
    running = 0
    folded: List[Budget] = []
    for budget in sorted(budgets, key=lambda b: b.month):
        running += budget.assigned + budget.activity
        folded.append(replace(budget, available=running))
    return folded


def verify_category(store: LedgerStore, user_id: str, category_id: str) -> List[Dict[str, Any]]:
    """List every place the stored rows disagree with the transaction log or the fold.

    An empty list means the category is consistent.
    """
    _require_category(store, user_id, category_id)
    stored = category_budgets(store, user_id, category_id)
    by_month = {b.month: b for b in stored}
    derived = activity_by_month(store, user_id, category_id=category_id)
    derived_activity = {row.month: int(row.activity) for row in derived.itertuples(index=False)}

    issues: List[Dict[str, Any]] = []
    for month in sorted(set(by_month) | set(derived_activity)):
        expected = derived_activity.get(month, 0)
        budget = by_month.get(month)
        actual = budget.activity if budget else 0
        if budget is None or actual != expected:
            issues.append({
                'month': month,
                'field': 'activity',
                'stored': None if budget is None else actual,
                'expected': expected,
            })

    for budget, folded in zip(sorted(stored, key=lambda b: b.month), fold_available(stored)):
        if budget.available != folded.available:
            issues.append({
                'month': budget.month,
                'field': 'available',
                'stored': budget.available,
                'expected': folded.available,
            })
    return issues


def reconcile_category(store: LedgerStore, user_id: str, category_id: str) -> int:
    """Rebuild the category's rows from the transaction log and assignments.

    ``activity`` is reset to the transaction sums (rows are created for
    months that have transactions but no row), then ``available`` is
    refolded.  Returns the number of rows written.
    """
    _require_category(store, user_id, category_id)
    written = 0
    with store.transaction():
        derived = activity_by_month(store, user_id, category_id=category_id)
        derived_activity = {row.month: int(row.activity) for row in derived.itertuples(index=False)}
        for month in derived_activity:
            store.upsert(
                'budgets',
                {'user_id': user_id, 'category_id': category_id, 'month': month},
                BUDGET_KEY,
                update_columns=[],
            )

        rows = category_budgets(store, user_id, category_id)
        rebuilt = [replace(b, activity=derived_activity.get(b.month, 0)) for b in rows]
        for before, after in zip(rows, fold_available(rebuilt)):
            if before.activity == after.activity and before.available == after.available:
                continue
            store.update(
                'budgets',
                {'category_id': category_id, 'user_id': user_id, 'month': after.month},
                {'activity': after.activity, 'available': after.available},
            )
            written += 1
    if written:
        log.warning("Reconciled %d budget rows for category %s", written, category_id)
    return written
