from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .config import BUSY_TIMEOUT, DB_PATH, ensure_data_directories
from .errors import ConflictError, LedgerError, NotFoundError, ValidationError

log = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    full_name TEXT,
    avatar_url TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles (id),
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('checking', 'savings', 'credit', 'cash')),
    balance INTEGER NOT NULL DEFAULT 0,
    opening_balance INTEGER NOT NULL DEFAULT 0,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS category_groups (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles (id),
    name TEXT NOT NULL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles (id),
    group_id TEXT NOT NULL REFERENCES category_groups (id),
    name TEXT NOT NULL,
    target_amount INTEGER,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles (id),
    category_id TEXT NOT NULL REFERENCES categories (id),
    month TEXT NOT NULL,
    assigned INTEGER NOT NULL DEFAULT 0,
    activity INTEGER NOT NULL DEFAULT 0,
    available INTEGER NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_budget_category_month ON budgets (category_id, month);
CREATE INDEX IF NOT EXISTS ix_budget_user_month ON budgets (user_id, month);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles (id),
    account_id TEXT NOT NULL REFERENCES accounts (id),
    category_id TEXT REFERENCES categories (id),
    date TEXT NOT NULL,
    amount INTEGER NOT NULL CHECK (amount != 0),
    payee TEXT,
    memo TEXT,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_txn_account ON transactions (account_id);
CREATE INDEX IF NOT EXISTS ix_txn_category_date ON transactions (category_id, date);
"""

# Columns each table accepts through the generic interface
TABLE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    'profiles': ('id', 'full_name', 'avatar_url', 'updated_at'),
    'accounts': ('id', 'user_id', 'name', 'type', 'balance', 'opening_balance', 'created_at'),
    'category_groups': ('id', 'user_id', 'name', 'position', 'created_at'),
    'categories': ('id', 'user_id', 'group_id', 'name', 'target_amount', 'created_at'),
    'budgets': ('id', 'user_id', 'category_id', 'month', 'assigned', 'activity', 'available'),
    'transactions': (
        'id', 'user_id', 'account_id', 'category_id', 'date', 'amount', 'payee', 'memo',
        'cleared', 'idempotency_key', 'created_at',
    ),
}

_OPERATORS = {'=', '!=', '<', '<=', '>', '>=', 'in'}

Filter = Union[Any, Tuple[str, Any]]


def _ensure_dirs() -> None:
    ensure_data_directories()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    """Convert Python values to SQLite-friendly ones."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


@contextmanager
def connect(path: Optional[Union[str, Path]] = None) -> Iterator[sqlite3.Connection]:
    target = Path(path or DB_PATH)
    if path is None:
        _ensure_dirs()
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(target), timeout=BUSY_TIMEOUT)
    try:
        yield conn
    finally:
        conn.close()


def init_db(path: Optional[Union[str, Path]] = None) -> None:
    with connect(path) as conn:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        # Run migrations to add new columns if they don't exist
        _migrate_database(conn)


def _migrate_database(conn: sqlite3.Connection) -> None:
    """Add new columns and indexes to an existing database if missing."""
    cursor = conn.cursor()

    new_columns = {
        'accounts': [('opening_balance', 'INTEGER NOT NULL DEFAULT 0')],
        'category_groups': [('position', 'INTEGER NOT NULL DEFAULT 0')],
        'transactions': [
            ('cleared', 'INTEGER NOT NULL DEFAULT 0'),
            ('idempotency_key', 'TEXT'),
        ],
    }

    for table, columns in new_columns.items():
        cursor.execute(f"PRAGMA table_info({table})")
        existing_columns = [row[1] for row in cursor.fetchall()]
        for column_name, column_type in columns:
            if column_name not in existing_columns:
                cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column_name} {column_type}")
                log.info("Added column %s to %s table", column_name, table)

    cursor.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_txn_idempotency "
        "ON transactions (user_id, idempotency_key)"
    )
    conn.commit()


def _translate_error(exc: sqlite3.Error, table: Optional[str]) -> Optional[LedgerError]:
    message = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        if 'FOREIGN KEY' in message:
            return NotFoundError(table or 'unknown', None, f"{table}: referenced row does not exist ({message})")
        if 'UNIQUE' in message or 'PRIMARY KEY' in message:
            return ConflictError(f"{table}: {message}")
        return ValidationError(f"{table}: {message}")
    if isinstance(exc, sqlite3.OperationalError):
        lowered = message.lower()
        if 'locked' in lowered or 'busy' in lowered:
            return ConflictError(f"{table or 'store'}: {message}")
    return None


class LedgerStore:
    """Generic table access over a single SQLite connection.

    Each instance owns one connection and is meant to be used by one session
    (one thread).  Concurrent sessions open their own stores against the same
    database file; consistency between them comes from SQLite locking, the
    unique indexes and server-side increments, never from shared memory.

    Outside :meth:`transaction` every statement commits on its own.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, *, timeout: float = BUSY_TIMEOUT) -> None:
        self.path = str(path or DB_PATH)
        self._conn = sqlite3.connect(self.path, timeout=timeout, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._depth = 0

    # Lifecycle ----------------------------------------------------------------

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> 'LedgerStore':
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator['LedgerStore']:
        """Run the enclosed statements as one all-or-nothing unit.

        The outermost call takes the write lock up front (``BEGIN IMMEDIATE``)
        so reads made inside the block cannot go stale before the writes.
        Nested calls become savepoints.
        """
        savepoint = None
        if self._depth == 0:
            self._execute("BEGIN IMMEDIATE")
        else:
            savepoint = f"sp_{self._depth}"
            self._execute(f"SAVEPOINT {savepoint}")
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if savepoint is None:
                self._conn.execute("ROLLBACK")
            else:
                self._conn.execute(f"ROLLBACK TO {savepoint}")
                self._conn.execute(f"RELEASE {savepoint}")
            raise
        self._depth -= 1
        if savepoint is None:
            try:
                self._execute("COMMIT")
            except Exception:
                # A failed COMMIT can leave the transaction open
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
        else:
            self._execute(f"RELEASE {savepoint}")

    # Internal -----------------------------------------------------------------

    def _execute(self, sql: str, params: Sequence[Any] = (), table: Optional[str] = None) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, [_to_db(p) for p in params])
        except sqlite3.Error as exc:
            translated = _translate_error(exc, table)
            if translated is None:
                raise
            raise translated from exc

    def _columns(self, table: str) -> Tuple[str, ...]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError:
            raise ValidationError(f"Unknown table '{table}'") from None

    def _check_columns(self, table: str, columns: Sequence[str]) -> None:
        allowed = self._columns(table)
        unknown = [c for c in columns if c not in allowed]
        if unknown:
            raise ValidationError(f"Unknown columns for {table}: {unknown}")

    def _where(self, table: str, filters: Optional[Mapping[str, Filter]]) -> Tuple[str, List[Any]]:
        if not filters:
            return '', []
        self._check_columns(table, list(filters))
        clauses: List[str] = []
        params: List[Any] = []
        for column, condition in filters.items():
            if isinstance(condition, tuple):
                op, value = condition
            else:
                op, value = '=', condition
            if op not in _OPERATORS:
                raise ValidationError(f"Unsupported filter operator '{op}'")
            if op == 'in':
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            elif value is None and op in {'=', '!='}:
                clauses.append(f"{column} IS {'NOT ' if op == '!=' else ''}NULL")
            else:
                clauses.append(f"{column} {op} ?")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    # Public API ---------------------------------------------------------------

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Filter]] = None,
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self._columns(table)
        where, params = self._where(table, filters)
        sql = f"SELECT * FROM {table}{where}"
        if order_by:
            parts = []
            for entry in order_by:
                column, _, direction = entry.partition(' ')
                self._check_columns(table, [column])
                direction = direction.strip().upper() or 'ASC'
                if direction not in {'ASC', 'DESC'}:
                    raise ValidationError(f"Bad sort direction '{direction}'")
                parts.append(f"{column} {direction}")
            sql += " ORDER BY " + ", ".join(parts)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = self._execute(sql, params, table).fetchall()
        return [dict(r) for r in rows]

    def select_one(self, table: str, filters: Mapping[str, Filter]) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        columns = self._columns(table)
        record = dict(row)
        if 'id' not in record:
            record['id'] = uuid.uuid4().hex
        if 'created_at' in columns and 'created_at' not in record:
            record['created_at'] = _now()
        self._check_columns(table, list(record))
        names = list(record)
        sql = (
            f"INSERT INTO {table} ({', '.join(names)}) "
            f"VALUES ({', '.join('?' for _ in names)})"
        )
        self._execute(sql, [record[n] for n in names], table)
        return self.select_one(table, {'id': record['id']}) or record

    def update(self, table: str, filters: Mapping[str, Filter], patch: Mapping[str, Any]) -> int:
        if not patch:
            return 0
        self._check_columns(table, list(patch))
        where, params = self._where(table, filters)
        assignments = ", ".join(f"{c} = ?" for c in patch)
        sql = f"UPDATE {table} SET {assignments}{where}"
        cur = self._execute(sql, list(patch.values()) + params, table)
        return cur.rowcount

    def increment(self, table: str, filters: Mapping[str, Filter], deltas: Mapping[str, int]) -> int:
        """Add ``deltas`` to numeric columns, evaluated inside the database."""
        if not deltas:
            return 0
        self._check_columns(table, list(deltas))
        where, params = self._where(table, filters)
        assignments = ", ".join(f"{c} = {c} + ?" for c in deltas)
        sql = f"UPDATE {table} SET {assignments}{where}"
        cur = self._execute(sql, list(deltas.values()) + params, table)
        return cur.rowcount

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_key: Sequence[str],
        *,
        update_columns: Optional[Sequence[str]] = None,
        increments: Optional[Mapping[str, int]] = None,
    ) -> Dict[str, Any]:
        """Insert ``row`` or, when ``conflict_key`` already exists, update it.

        One ``INSERT ... ON CONFLICT DO UPDATE`` statement, so two sessions
        racing on the same key can never produce two rows.  ``update_columns``
        are overwritten from ``row`` (default: every non-key column given);
        ``increments`` are added to the stored values.
        """
        record = dict(row)
        if 'id' not in record:
            record['id'] = uuid.uuid4().hex
        self._check_columns(table, list(record) + list(conflict_key))
        increments = dict(increments or {})
        self._check_columns(table, list(increments))
        if update_columns is None:
            update_columns = [
                c for c in record
                if c not in conflict_key and c not in {'id', 'created_at'} and c not in increments
            ]
        else:
            self._check_columns(table, list(update_columns))

        names = list(record)
        sql = (
            f"INSERT INTO {table} ({', '.join(names)}) "
            f"VALUES ({', '.join('?' for _ in names)}) "
            f"ON CONFLICT ({', '.join(conflict_key)}) "
        )
        params: List[Any] = [record[n] for n in names]
        assignments = [f"{c} = excluded.{c}" for c in update_columns]
        for column, delta in increments.items():
            assignments.append(f"{column} = {column} + ?")
            params.append(delta)
        if assignments:
            sql += "DO UPDATE SET " + ", ".join(assignments)
        else:
            sql += "DO NOTHING"
        self._execute(sql, params, table)
        stored = self.select_one(table, {k: record[k] for k in conflict_key})
        if stored is None:
            raise ConflictError(f"{table}: upsert on {tuple(conflict_key)} left no row")
        return stored

    def delete(self, table: str, filters: Mapping[str, Filter]) -> int:
        if not filters:
            raise ValidationError("Refusing to delete without filters")
        where, params = self._where(table, filters)
        cur = self._execute(f"DELETE FROM {table}{where}", params, table)
        return cur.rowcount

    def frame(self, sql: str, params: Sequence[Any] = ()) -> pd.DataFrame:
        """Run a read-only query and return a DataFrame."""
        return pd.read_sql_query(sql, self._conn, params=[_to_db(p) for p in params])


def open_store(path: Optional[Union[str, Path]] = None) -> LedgerStore:
    """Create the schema if needed and return a store on ``path``."""
    init_db(path)
    return LedgerStore(path)
