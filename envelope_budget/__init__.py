"""Top‑level package for the envelope budget ledger.

The ledger keeps account balances, category assignments, transaction
activity and "ready to assign" funds consistent with each other.  The
primary modules are:

* ``db`` – the SQLite-backed store and its generic table interface
* ``recorder`` – posting transactions (balance + category activity together)
* ``allocation`` – per category-month assigned / activity / available
* ``ready_to_assign`` – unallocated funds, computed on demand
* ``catalog`` – profiles, accounts, category groups and categories
* ``overview`` – the month budget sheet as a pandas DataFrame

Every operation takes the caller's ``user_id`` explicitly; nothing is read
from ambient session state.
"""

from . import activity  # noqa: F401  # re-exported for convenience
from . import allocation  # noqa: F401
from . import balances  # noqa: F401
from . import catalog  # noqa: F401
from . import db  # noqa: F401
from . import overview  # noqa: F401
from . import ready_to_assign  # noqa: F401
from . import recorder  # noqa: F401
from .errors import (  # noqa: F401
    ConflictError,
    LedgerError,
    NotFoundError,
    PartialApplicationError,
    ValidationError,
)

__all__ = [
    "activity",
    "allocation",
    "balances",
    "catalog",
    "db",
    "overview",
    "ready_to_assign",
    "recorder",
    "ConflictError",
    "LedgerError",
    "NotFoundError",
    "PartialApplicationError",
    "ValidationError",
]
