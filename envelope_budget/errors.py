"""Error taxonomy for ledger operations.

Every failure surfaced by the core is a :class:`LedgerError` with a ``kind``
string, so callers can tell validation problems, missing references,
retryable conflicts and fatal partial writes apart without parsing messages.
"""

from __future__ import annotations

from typing import List, Optional


class LedgerError(Exception):
    kind = "ledger"


class ValidationError(LedgerError, ValueError):
    """Malformed input, rejected before any store call."""

    kind = "validation"


class NotFoundError(LedgerError, LookupError):
    """Referenced row is missing or owned by another user."""

    kind = "not_found"

    def __init__(self, table: str, identifier: object, message: Optional[str] = None) -> None:
        self.table = table
        self.identifier = identifier
        super().__init__(message or f"{table} row {identifier!r} not found")


class ConflictError(LedgerError):
    """Uniqueness or lock conflict at the store. Safe to retry once."""

    kind = "conflict"


class PartialApplicationError(LedgerError):
    """A multi-step write left some effects applied and could not undo them.

    This is fatal: balances or category availability no longer match the
    transaction log until the transaction is reversed or reconciled by hand.
    """

    kind = "partial_application"

    def __init__(
        self,
        message: str,
        *,
        transaction_id: Optional[str] = None,
        applied: Optional[List[str]] = None,
        failed_step: Optional[str] = None,
    ) -> None:
        self.transaction_id = transaction_id
        self.applied = list(applied or [])
        self.failed_step = failed_step
        super().__init__(message)
