"""Profiles, accounts, category groups and categories.

These are the long-lived, user-managed entities.  Every function takes the
caller's ``user_id`` explicitly and never reads or writes another user's rows.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import ACCOUNT_TYPES
from .db import LedgerStore, _now
from .errors import NotFoundError, ValidationError
from .models import Account, Category, CategoryGroup, Profile, parse_amount

log = logging.getLogger(__name__)


def _require_name(name: Optional[str], what: str) -> str:
    if name is None or not str(name).strip():
        raise ValidationError(f"{what} name cannot be empty")
    return str(name).strip()


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def ensure_profile(
    store: LedgerStore,
    user_id: str,
    full_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Profile:
    """Return the profile for ``user_id``, creating it on first sign-in."""
    if not user_id:
        raise ValidationError("user_id is required")
    row = store.upsert(
        'profiles',
        {'id': user_id, 'full_name': full_name, 'avatar_url': avatar_url, 'updated_at': _now()},
        ('id',),
        update_columns=[],
    )
    return Profile.from_row(row)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def create_account(
    store: LedgerStore,
    user_id: str,
    name: str,
    account_type: str,
    balance: int = 0,
) -> Account:
    """Open an account with an initial balance.

    The type tag is descriptive only; it does not change how the account is
    posted to.
    """
    name = _require_name(name, 'Account')
    account_type = (account_type or '').strip().lower()
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError(f"Account type must be one of {ACCOUNT_TYPES}, got {account_type!r}")
    opening = parse_amount(balance, field='balance')
    row = store.insert('accounts', {
        'user_id': user_id,
        'name': name,
        'type': account_type,
        'balance': opening,
        'opening_balance': opening,
    })
    log.debug("Created account %s (%s) for %s with balance %s", row['id'], account_type, user_id, opening)
    return Account.from_row(row)


def get_account(store: LedgerStore, user_id: str, account_id: str) -> Account:
    row = store.select_one('accounts', {'id': account_id, 'user_id': user_id})
    if row is None:
        raise NotFoundError('accounts', account_id)
    return Account.from_row(row)


def list_accounts(store: LedgerStore, user_id: str) -> List[Account]:
    rows = store.select('accounts', {'user_id': user_id}, order_by=['created_at', 'id'])
    return [Account.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Category groups and categories
# ---------------------------------------------------------------------------


def create_category_group(store: LedgerStore, user_id: str, name: str) -> CategoryGroup:
    name = _require_name(name, 'Category group')
    with store.transaction():
        last = store.select(
            'category_groups', {'user_id': user_id}, order_by=['position DESC'], limit=1
        )
        position = (int(last[0]['position']) + 1) if last else 0
        row = store.insert('category_groups', {'user_id': user_id, 'name': name, 'position': position})
    return CategoryGroup.from_row(row)


def list_category_groups(store: LedgerStore, user_id: str) -> List[CategoryGroup]:
    rows = store.select('category_groups', {'user_id': user_id}, order_by=['position', 'created_at'])
    return [CategoryGroup.from_row(r) for r in rows]


def create_category(
    store: LedgerStore,
    user_id: str,
    group_id: str,
    name: str,
    target_amount: Optional[int] = None,
) -> Category:
    name = _require_name(name, 'Category')
    target = None if target_amount is None else parse_amount(target_amount, field='target_amount')
    if store.select_one('category_groups', {'id': group_id, 'user_id': user_id}) is None:
        raise NotFoundError('category_groups', group_id)
    row = store.insert('categories', {
        'user_id': user_id,
        'group_id': group_id,
        'name': name,
        'target_amount': target,
    })
    return Category.from_row(row)


def get_category(store: LedgerStore, user_id: str, category_id: str) -> Category:
    row = store.select_one('categories', {'id': category_id, 'user_id': user_id})
    if row is None:
        raise NotFoundError('categories', category_id)
    return Category.from_row(row)


def list_categories(store: LedgerStore, user_id: str, group_id: Optional[str] = None) -> List[Category]:
    filters = {'user_id': user_id}
    if group_id is not None:
        filters['group_id'] = group_id
    rows = store.select('categories', filters, order_by=['created_at', 'id'])
    return [Category.from_row(r) for r in rows]


def update_category_target(
    store: LedgerStore,
    user_id: str,
    category_id: str,
    target_amount: Optional[int],
) -> Category:
    """Set or clear the advisory goal of a category."""
    target = None if target_amount is None else parse_amount(target_amount, field='target_amount')
    affected = store.update('categories', {'id': category_id, 'user_id': user_id}, {'target_amount': target})
    if affected == 0:
        raise NotFoundError('categories', category_id)
    return get_category(store, user_id, category_id)
