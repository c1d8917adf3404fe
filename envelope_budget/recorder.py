"""Recording transactions and applying their monetary effects.

A transaction has three effects which must land together:

1. the ``transactions`` row itself,
2. the account balance moving by ``amount``,
3. the category's month activity moving by ``amount`` (categorized only).

:class:`TransactionRecorder` applies them inside one store transaction, so a
failure at any step leaves nothing behind.  With ``atomic=False`` it instead
applies them one at a time and, on failure, undoes the steps already applied
in reverse order; when an undo itself fails the ledger is inconsistent and
:class:`~envelope_budget.errors.PartialApplicationError` is raised.

Callers that may retry after a timeout or crash pass an ``idempotency_key``.
A key that was already recorded returns the original transaction id without
posting anything again.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .allocation import record_activity
from .balances import apply_balance_delta
from .config import ATOMIC_WRITES
from .db import LedgerStore, _now
from .errors import ConflictError, NotFoundError, PartialApplicationError, ValidationError
from .models import Transaction, month_of, parse_amount, parse_date

log = logging.getLogger(__name__)


class TransactionRecorder:
    """Entry point for posting transactions against a store."""

    def __init__(self, store: LedgerStore, *, atomic: Optional[bool] = None) -> None:
        self.store = store
        self.atomic = ATOMIC_WRITES if atomic is None else atomic

    # Public API -------------------------------------------------------------

    def record(
        self,
        user_id: str,
        date: Any,
        amount: Any,
        account_id: str,
        category_id: Optional[str] = None,
        payee: str = '',
        memo: str = '',
        *,
        cleared: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Record a transaction and return its id."""
        row = self._build_row(
            user_id, date, amount, account_id, category_id, payee, memo, cleared, idempotency_key
        )
        self._check_ownership(user_id, account_id, category_id)

        existing = self._find_by_key(user_id, idempotency_key)
        if existing is not None:
            log.info("Idempotency key %s already recorded as %s", idempotency_key, existing['id'])
            return existing['id']

        if self.atomic:
            return self._record_atomic(row)
        return self._record_stepwise(row)

    # Validation -------------------------------------------------------------

    def _build_row(
        self,
        user_id: str,
        date: Any,
        amount: Any,
        account_id: str,
        category_id: Optional[str],
        payee: str,
        memo: str,
        cleared: bool,
        idempotency_key: Optional[str],
    ) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("user_id is required")
        if not account_id:
            raise ValidationError("account_id is required")
        if idempotency_key is not None and not str(idempotency_key).strip():
            raise ValidationError("idempotency_key cannot be blank")
        return {
            'id': uuid.uuid4().hex,
            'user_id': user_id,
            'account_id': account_id,
            'category_id': category_id or None,
            'date': parse_date(date),
            'amount': parse_amount(amount, allow_zero=False),
            'payee': (payee or '').strip(),
            'memo': (memo or '').strip(),
            'cleared': bool(cleared),
            'idempotency_key': idempotency_key,
            'created_at': _now(),
        }

    def _check_ownership(self, user_id: str, account_id: str, category_id: Optional[str]) -> None:
        if self.store.select_one('accounts', {'id': account_id, 'user_id': user_id}) is None:
            raise NotFoundError('accounts', account_id)
        if category_id and self.store.select_one('categories', {'id': category_id, 'user_id': user_id}) is None:
            raise NotFoundError('categories', category_id)

    def _find_by_key(self, user_id: str, idempotency_key: Optional[str]) -> Optional[Dict[str, Any]]:
        if idempotency_key is None:
            return None
        return self.store.select_one('transactions', {'user_id': user_id, 'idempotency_key': idempotency_key})

    # Effects ------------------------------------------------------------------

    def _steps(self, row: Dict[str, Any]) -> List[Tuple[str, Callable[[], Any], Callable[[], Any]]]:
        """(name, apply, undo) for each effect of ``row``, in application order."""
        store = self.store
        user_id = row['user_id']
        amount = row['amount']
        steps = [
            (
                'insert',
                lambda: store.insert('transactions', row),
                lambda: store.delete('transactions', {'id': row['id'], 'user_id': user_id}),
            ),
            (
                'balance',
                lambda: apply_balance_delta(store, user_id, row['account_id'], amount),
                lambda: apply_balance_delta(store, user_id, row['account_id'], -amount),
            ),
        ]
        if row['category_id']:
            month = month_of(row['date'])
            steps.append((
                'activity',
                lambda: record_activity(store, user_id, row['category_id'], month, amount),
                lambda: record_activity(store, user_id, row['category_id'], month, -amount),
            ))
        return steps

    def _resolve_duplicate(self, row: Dict[str, Any], exc: ConflictError) -> str:
        winner = self._find_by_key(row['user_id'], row['idempotency_key'])
        if winner is None:
            raise exc
        log.info("Concurrent duplicate of key %s resolved to %s", row['idempotency_key'], winner['id'])
        return winner['id']

    def _record_atomic(self, row: Dict[str, Any]) -> str:
        try:
            with self.store.transaction():
                for name, apply, _undo in self._steps(row):
                    apply()
                    log.debug("Transaction %s: applied %s", row['id'], name)
        except ConflictError as exc:
            if row['idempotency_key'] is None:
                raise
            return self._resolve_duplicate(row, exc)
        return row['id']

    def _record_stepwise(self, row: Dict[str, Any]) -> str:
        applied: List[Tuple[str, Callable[[], Any]]] = []
        for name, apply, undo in self._steps(row):
            try:
                apply()
            except ConflictError as exc:
                if not applied and row['idempotency_key'] is not None:
                    return self._resolve_duplicate(row, exc)
                self._compensate(row, applied, name)
                raise
            except Exception:
                self._compensate(row, applied, name)
                raise
            applied.append((name, undo))
        return row['id']

    def _compensate(self, row: Dict[str, Any], applied: List[Tuple[str, Callable[[], Any]]], failed_step: str) -> None:
        remaining = [name for name, _ in applied]
        for name, undo in reversed(applied):
            try:
                undo()
            except Exception as exc:
                log.error(
                    "Transaction %s left partially applied (%s) after %s failed",
                    row['id'], ', '.join(remaining), failed_step,
                )
                raise PartialApplicationError(
                    f"Transaction {row['id']}: step '{failed_step}' failed and undoing "
                    f"'{name}' also failed; applied effects remain: {remaining}",
                    transaction_id=row['id'],
                    applied=remaining,
                    failed_step=failed_step,
                ) from exc
            remaining.remove(name)
        log.warning("Transaction %s rolled back after %s failed", row['id'], failed_step)


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def record_transaction(
    store: LedgerStore,
    user_id: str,
    date: Any,
    amount: Any,
    account_id: str,
    category_id: Optional[str] = None,
    payee: str = '',
    memo: str = '',
    *,
    cleared: bool = False,
    idempotency_key: Optional[str] = None,
    atomic: Optional[bool] = None,
) -> str:
    """Record a transaction and return its id.

    See :class:`TransactionRecorder` for the failure semantics.
    """
    recorder = TransactionRecorder(store, atomic=atomic)
    return recorder.record(
        user_id, date, amount, account_id, category_id, payee, memo,
        cleared=cleared, idempotency_key=idempotency_key,
    )


def get_transaction(store: LedgerStore, user_id: str, transaction_id: str) -> Transaction:
    row = store.select_one('transactions', {'id': transaction_id, 'user_id': user_id})
    if row is None:
        raise NotFoundError('transactions', transaction_id)
    return Transaction.from_row(row)


def reverse_transaction(store: LedgerStore, user_id: str, transaction_id: str) -> Transaction:
    """Delete a transaction and undo its balance and activity effects together."""
    with store.transaction():
        txn = get_transaction(store, user_id, transaction_id)
        store.delete('transactions', {'id': transaction_id, 'user_id': user_id})
        apply_balance_delta(store, user_id, txn.account_id, -txn.amount)
        if txn.category_id:
            record_activity(store, user_id, txn.category_id, txn.month, -txn.amount)
    log.info("Reversed transaction %s (%+d)", transaction_id, txn.amount)
    return txn


def set_cleared(store: LedgerStore, user_id: str, transaction_id: str, cleared: bool = True) -> Transaction:
    """Flip the reconciliation flag.  No monetary effect."""
    affected = store.update(
        'transactions', {'id': transaction_id, 'user_id': user_id}, {'cleared': bool(cleared)}
    )
    if affected == 0:
        raise NotFoundError('transactions', transaction_id)
    return get_transaction(store, user_id, transaction_id)


def list_transactions(
    store: LedgerStore,
    user_id: str,
    account_id: Optional[str] = None,
    month: Any = None,
) -> List[Transaction]:
    filters: Dict[str, Any] = {'user_id': user_id}
    if account_id is not None:
        filters['account_id'] = account_id
    if month is not None:
        start = month_of(month)
        filters['date'] = ('>=', start)
    rows = store.select('transactions', filters, order_by=['date', 'created_at'])
    txns = [Transaction.from_row(r) for r in rows]
    if month is not None:
        txns = [t for t in txns if t.month == start]
    return txns
