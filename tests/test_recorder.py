"""Posting transactions: effects, validation, idempotency and failure handling."""

from __future__ import annotations

from datetime import date

import pytest

from conftest import MONTH
from envelope_budget import catalog, recorder
from envelope_budget.allocation import get_budget, set_assigned, touch_month
from envelope_budget.balances import account_balance, verify_balance
from envelope_budget.errors import NotFoundError, PartialApplicationError, ValidationError
from envelope_budget.models import add_months
from envelope_budget.recorder import (
    TransactionRecorder,
    get_transaction,
    list_transactions,
    record_transaction,
    reverse_transaction,
    set_cleared,
)


class _UntouchableStore:
    """Fails the test if anything reaches the store."""

    def __getattr__(self, name):
        raise AssertionError(f"store.{name} used before validation finished")


def test_spending_moves_balance_and_category(store, budget) -> None:
    txn_id = record_transaction(
        store, budget.user, date(2024, 3, 15), -50_000, budget.cash.id, budget.groceries.id, payee="Market"
    )

    assert account_balance(store, budget.user, budget.cash.id) == 950_000
    row = get_budget(store, budget.user, budget.groceries.id, MONTH)
    assert (row.assigned, row.activity, row.available) == (0, -50_000, -50_000)

    txn = get_transaction(store, budget.user, txn_id)
    assert txn.payee == "Market"
    assert txn.month == MONTH
    assert not txn.cleared


def test_assigning_after_overspending_refills_the_envelope(store, budget) -> None:
    record_transaction(store, budget.user, "2024-03-15", -50_000, budget.cash.id, budget.groceries.id)
    row = set_assigned(store, budget.user, budget.groceries.id, MONTH, 100_000)
    assert (row.assigned, row.activity, row.available) == (100_000, -50_000, 50_000)

    following = touch_month(store, budget.user, budget.groceries.id, add_months(MONTH, 1))
    assert (following.assigned, following.activity, following.available) == (0, 0, 50_000)


def test_uncategorized_transaction_leaves_budgets_alone(store, budget) -> None:
    record_transaction(store, budget.user, MONTH, 25_000, budget.cash.id)
    assert account_balance(store, budget.user, budget.cash.id) == 1_025_000
    assert store.select('budgets') == []


@pytest.mark.parametrize(
    "overrides",
    [
        {'amount': 0},
        {'amount': float('nan')},
        {'amount': float('inf')},
        {'amount': 1.5},
        {'amount': "abc"},
        {'date': "not a date"},
        {'date': None},
        {'account_id': ""},
        {'user_id': ""},
        {'idempotency_key': "   "},
    ],
)
def test_malformed_input_is_rejected_before_the_store(overrides) -> None:
    args = {
        'user_id': "user-1",
        'date': MONTH,
        'amount': -100,
        'account_id': "acct",
        'idempotency_key': None,
    }
    args.update(overrides)
    with pytest.raises(ValidationError):
        record_transaction(_UntouchableStore(), **args)


def test_foreign_account_or_category_is_not_found(store, budget) -> None:
    catalog.ensure_profile(store, "user-2")
    theirs = catalog.create_account(store, "user-2", "Theirs", "checking", 500)

    with pytest.raises(NotFoundError):
        record_transaction(store, budget.user, MONTH, -10, theirs.id)
    with pytest.raises(NotFoundError):
        record_transaction(store, "user-2", MONTH, -10, theirs.id, budget.groceries.id)
    with pytest.raises(NotFoundError):
        record_transaction(store, budget.user, MONTH, -10, budget.cash.id, "no-such-category")

    assert store.select('transactions') == []
    assert account_balance(store, "user-2", theirs.id) == 500


def test_failed_write_leaves_nothing_and_retry_applies_once(store, budget, monkeypatch) -> None:
    def broken_activity(*args, **kwargs):
        raise RuntimeError("connection dropped")

    monkeypatch.setattr(recorder, 'record_activity', broken_activity)
    with pytest.raises(RuntimeError):
        record_transaction(
            store, budget.user, MONTH, -50_000, budget.cash.id, budget.groceries.id, idempotency_key="k-1"
        )

    assert store.select('transactions') == []
    assert account_balance(store, budget.user, budget.cash.id) == 1_000_000
    assert get_budget(store, budget.user, budget.groceries.id, MONTH) is None

    monkeypatch.undo()
    record_transaction(
        store, budget.user, MONTH, -50_000, budget.cash.id, budget.groceries.id, idempotency_key="k-1"
    )
    assert account_balance(store, budget.user, budget.cash.id) == 950_000
    assert get_budget(store, budget.user, budget.groceries.id, MONTH).activity == -50_000


def test_repeated_idempotency_key_posts_once(store, budget) -> None:
    first = record_transaction(
        store, budget.user, MONTH, -50_000, budget.cash.id, budget.groceries.id, idempotency_key="retry-me"
    )
    second = record_transaction(
        store, budget.user, MONTH, -50_000, budget.cash.id, budget.groceries.id, idempotency_key="retry-me"
    )

    assert first == second
    assert len(store.select('transactions')) == 1
    assert account_balance(store, budget.user, budget.cash.id) == 950_000
    assert get_budget(store, budget.user, budget.groceries.id, MONTH).available == -50_000


def test_racing_duplicate_key_resolves_to_the_first_id(store, budget, monkeypatch) -> None:
    first = record_transaction(store, budget.user, MONTH, -700, budget.cash.id, idempotency_key="dup")

    original = TransactionRecorder._find_by_key
    calls = {'count': 0}

    def stale_lookup(self, user_id, key):
        # The pre-check misses the row, as if another session committed it just after.
        calls['count'] += 1
        if calls['count'] == 1:
            return None
        return original(self, user_id, key)

    monkeypatch.setattr(TransactionRecorder, '_find_by_key', stale_lookup)
    second = record_transaction(store, budget.user, MONTH, -700, budget.cash.id, idempotency_key="dup")

    assert second == first
    assert account_balance(store, budget.user, budget.cash.id) == 999_300


def test_same_key_for_different_users_is_independent(store, budget) -> None:
    catalog.ensure_profile(store, "user-2")
    theirs = catalog.create_account(store, "user-2", "Theirs", "cash", 0)

    mine = record_transaction(store, budget.user, MONTH, -1, budget.cash.id, idempotency_key="shared")
    other = record_transaction(store, "user-2", MONTH, -1, theirs.id, idempotency_key="shared")
    assert mine != other


def test_stepwise_failure_is_undone_and_reraised(store, budget, monkeypatch) -> None:
    def broken_activity(*args, **kwargs):
        raise RuntimeError("activity write failed")

    monkeypatch.setattr(recorder, 'record_activity', broken_activity)
    with pytest.raises(RuntimeError, match="activity write failed"):
        record_transaction(
            store, budget.user, MONTH, -50_000, budget.cash.id, budget.groceries.id, atomic=False
        )

    assert store.select('transactions') == []
    assert account_balance(store, budget.user, budget.cash.id) == 1_000_000


def test_failed_undo_raises_partial_application(store, budget, monkeypatch) -> None:
    original_delta = recorder.apply_balance_delta
    calls = {'count': 0}

    def balance_then_fail(*args, **kwargs):
        calls['count'] += 1
        if calls['count'] == 1:
            return original_delta(*args, **kwargs)
        raise RuntimeError("lost connection while undoing")

    def broken_activity(*args, **kwargs):
        raise RuntimeError("activity write failed")

    monkeypatch.setattr(recorder, 'apply_balance_delta', balance_then_fail)
    monkeypatch.setattr(recorder, 'record_activity', broken_activity)

    with pytest.raises(PartialApplicationError) as excinfo:
        record_transaction(
            store, budget.user, MONTH, -50_000, budget.cash.id, budget.groceries.id, atomic=False
        )

    error = excinfo.value
    assert error.kind == "partial_application"
    assert error.failed_step == "activity"
    assert error.applied == ["insert", "balance"]
    assert store.select_one('transactions', {'id': error.transaction_id}) is not None
    assert account_balance(store, budget.user, budget.cash.id) == 950_000


def test_stepwise_success_matches_atomic(store, budget) -> None:
    record_transaction(store, budget.user, MONTH, -300, budget.cash.id, budget.groceries.id, atomic=False)
    record_transaction(store, budget.user, MONTH, -300, budget.cash.id, budget.rent.id, atomic=True)

    assert account_balance(store, budget.user, budget.cash.id) == 999_400
    assert (
        get_budget(store, budget.user, budget.groceries.id, MONTH).available
        == get_budget(store, budget.user, budget.rent.id, MONTH).available
        == -300
    )
    assert verify_balance(store, budget.user, budget.cash.id) == 0


def test_reverse_transaction_undoes_every_effect(store, budget) -> None:
    set_assigned(store, budget.user, budget.groceries.id, MONTH, 80_000)
    txn_id = record_transaction(store, budget.user, MONTH, -20_000, budget.cash.id, budget.groceries.id)

    reversed_txn = reverse_transaction(store, budget.user, txn_id)

    assert reversed_txn.amount == -20_000
    assert account_balance(store, budget.user, budget.cash.id) == 1_000_000
    row = get_budget(store, budget.user, budget.groceries.id, MONTH)
    assert (row.activity, row.available) == (0, 80_000)
    with pytest.raises(NotFoundError):
        get_transaction(store, budget.user, txn_id)


def test_set_cleared_has_no_monetary_effect(store, budget) -> None:
    txn_id = record_transaction(store, budget.user, MONTH, -10, budget.cash.id)
    assert set_cleared(store, budget.user, txn_id).cleared
    assert not set_cleared(store, budget.user, txn_id, False).cleared
    assert account_balance(store, budget.user, budget.cash.id) == 999_990

    with pytest.raises(NotFoundError):
        set_cleared(store, "someone-else", txn_id)


def test_list_transactions_filters_by_month_and_account(store, budget) -> None:
    savings = catalog.create_account(store, budget.user, "Savings", "savings", 0)
    record_transaction(store, budget.user, date(2024, 2, 28), -1, budget.cash.id)
    record_transaction(store, budget.user, date(2024, 3, 2), -2, budget.cash.id)
    record_transaction(store, budget.user, date(2024, 3, 30), -3, savings.id)
    record_transaction(store, budget.user, date(2024, 4, 1), -4, budget.cash.id)

    assert [t.amount for t in list_transactions(store, budget.user, month=MONTH)] == [-2, -3]
    assert [t.amount for t in list_transactions(store, budget.user, account_id=budget.cash.id)] == [-1, -2, -4]
    assert [t.amount for t in list_transactions(store, budget.user, budget.cash.id, MONTH)] == [-2]


def test_large_string_amounts_keep_every_unit(store, budget) -> None:
    record_transaction(store, budget.user, MONTH, "9007199254740993", budget.cash.id, budget.groceries.id)

    assert account_balance(store, budget.user, budget.cash.id) == 9_007_199_255_740_993
    assert verify_balance(store, budget.user, budget.cash.id) == 0
    assert get_budget(store, budget.user, budget.groceries.id, MONTH).available == 9_007_199_254_740_993
