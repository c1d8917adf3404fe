"""Shared fixtures: every test gets its own temporary SQLite ledger."""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from envelope_budget import catalog
from envelope_budget import db as db_mod

USER_ID = "user-1"
MONTH = date(2024, 3, 1)


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "ledger.db"
    db_mod.init_db(path)
    return path


@pytest.fixture
def store(db_path):
    with db_mod.LedgerStore(db_path) as ledger:
        yield ledger


@pytest.fixture
def user(store) -> str:
    catalog.ensure_profile(store, USER_ID, full_name="Test User")
    return USER_ID


@pytest.fixture
def budget(store, user) -> SimpleNamespace:
    """A Cash account with 1,000,000 and two spending categories."""
    cash = catalog.create_account(store, user, "Cash", "cash", 1_000_000)
    essentials = catalog.create_category_group(store, user, "Essentials")
    groceries = catalog.create_category(store, user, essentials.id, "Groceries", target_amount=300_000)
    rent = catalog.create_category(store, user, essentials.id, "Rent")
    return SimpleNamespace(
        user=user,
        cash=cash,
        essentials=essentials,
        groceries=groceries,
        rent=rent,
    )
