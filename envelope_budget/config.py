"""Configuration management for the envelope budget ledger.

This module centralizes all configuration values including paths,
policy defaults, and environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

# Base project root - assumes this file is in envelope_budget/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("ENVBUDGET_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("ENVBUDGET_DB_PATH", DATA_DIR / "ledger.db")
).resolve()

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT = float(os.getenv("ENVBUDGET_BUSY_TIMEOUT", "30"))

ACCOUNT_TYPES: Tuple[str, ...] = ("checking", "savings", "credit", "cash")


def _parse_account_types(raw: Optional[str]) -> Tuple[str, ...]:
    if raw is None or not raw.strip():
        return ACCOUNT_TYPES
    types = tuple(t.strip().lower() for t in raw.split(",") if t.strip())
    unknown = [t for t in types if t not in ACCOUNT_TYPES]
    if unknown:
        raise ValueError(f"Unknown account types in ENVBUDGET_FUNDS_ACCOUNT_TYPES: {unknown}")
    return types


def _parse_flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Account types whose balances count as funds for Ready to Assign.
# Credit accounts are included by default.
FUNDS_ACCOUNT_TYPES = _parse_account_types(os.getenv("ENVBUDGET_FUNDS_ACCOUNT_TYPES"))

# When false the transaction recorder falls back to step-by-step writes
# with compensation instead of a single store transaction.
ATOMIC_WRITES = _parse_flag(os.getenv("ENVBUDGET_ATOMIC_WRITES"), True)

# Decimal places of the minor currency unit used when formatting amounts
CURRENCY_DECIMALS = int(os.getenv("ENVBUDGET_CURRENCY_DECIMALS", "0"))

LOG_LEVEL = os.getenv("ENVBUDGET_LOG_LEVEL", "WARNING").upper()


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def configure_logging(level: Optional[str] = None) -> None:
    """Set up root logging for scripts."""
    logging.basicConfig(
        level=(level or LOG_LEVEL),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
