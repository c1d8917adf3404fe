"""Running account balances.

Balances only move through :func:`apply_balance_delta`, which adds the delta
inside the database (``balance = balance + ?``) instead of reading the value
into Python and writing it back, so two sessions posting to the same account
cannot lose each other's update.
"""

from __future__ import annotations

import logging

from .db import LedgerStore
from .errors import NotFoundError
from .models import parse_amount

log = logging.getLogger(__name__)


def apply_balance_delta(store: LedgerStore, user_id: str, account_id: str, delta: int) -> int:
    """Add ``delta`` to the account balance and return the new balance.

    Applying ``-delta`` afterwards restores the previous balance.
    """
    delta = parse_amount(delta, field='delta')
    with store.transaction():
        affected = store.increment('accounts', {'id': account_id, 'user_id': user_id}, {'balance': delta})
        if affected == 0:
            raise NotFoundError('accounts', account_id)
        balance = account_balance(store, user_id, account_id)
    log.debug("Account %s balance %+d -> %d", account_id, delta, balance)
    return balance


def account_balance(store: LedgerStore, user_id: str, account_id: str) -> int:
    row = store.select_one('accounts', {'id': account_id, 'user_id': user_id})
    if row is None:
        raise NotFoundError('accounts', account_id)
    return int(row['balance'])


def expected_balance(store: LedgerStore, user_id: str, account_id: str) -> int:
    """Opening balance plus every recorded transaction on the account."""
    row = store.select_one('accounts', {'id': account_id, 'user_id': user_id})
    if row is None:
        raise NotFoundError('accounts', account_id)
    posted = store.frame(
        "SELECT COALESCE(SUM(amount), 0) AS total FROM transactions WHERE user_id = ? AND account_id = ?",
        [user_id, account_id],
    )
    return int(row['opening_balance']) + int(posted['total'].iloc[0])


def verify_balance(store: LedgerStore, user_id: str, account_id: str) -> int:
    """Return stored balance minus expected balance (0 when consistent)."""
    return account_balance(store, user_id, account_id) - expected_balance(store, user_id, account_id)
