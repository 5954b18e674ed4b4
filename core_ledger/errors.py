"""
Error Taxonomy Module

Ledger errors and the retriable-conflict classification hook used by the
transaction executor to decide between retrying and giving up.
"""

import sqlite3
from typing import Optional


# SQLSTATE codes that mean "the transaction lost a race, restart it"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
RETRIABLE_SQLSTATES = frozenset({SERIALIZATION_FAILURE, DEADLOCK_DETECTED})

_SQLITE_CONTENTION_MARKERS = ("database is locked", "database table is locked", "busy")


class LedgerError(Exception):
    """Base exception for all ledger errors"""

    error_code: str = "LEDGER_ERROR"
    retriable: bool = False

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(message)


class StoreError(LedgerError):
    """Failure reported by a storage backend"""

    error_code = "STORE_ERROR"

    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class SerializationConflictError(StoreError):
    """
    The store aborted the transaction because it conflicted with a
    concurrent one. Always safe to retry from the beginning.
    """

    error_code = "SERIALIZATION_CONFLICT"
    retriable = True

    def __init__(self, message: str = "restart transaction: serialization failure",
                 sqlstate: str = SERIALIZATION_FAILURE):
        super().__init__(message, sqlstate=sqlstate)


class TransactionClosedError(StoreError):
    """Transaction handle used after commit or rollback"""

    error_code = "TRANSACTION_CLOSED"


class AccountNotFoundError(LedgerError):
    """Referenced account does not exist"""

    error_code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class TransactionCancelledError(LedgerError):
    """Caller cancelled the executor while it was waiting to retry"""

    error_code = "CANCELLED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transaction cancelled after {attempts} attempt(s)")


class RetryLimitExceededError(LedgerError):
    """Optional attempt ceiling was reached while conflicts persisted"""

    error_code = "RETRY_LIMIT_EXCEEDED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} conflicting attempt(s)")


def _sqlstate_of(error: BaseException) -> Optional[str]:
    """Extract a SQLSTATE from ledger, psycopg2 or DB-API style errors"""
    for attr in ("sqlstate", "pgcode", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and len(value) == 5:
            return value
    return None


def is_retriable_conflict(error: BaseException) -> bool:
    """
    Classify an error as a transient serialization conflict.

    Checks the ledger error flag, then SQLSTATE codes, then SQLite
    busy/locked messages, following the ``__cause__`` chain so wrapped
    driver errors are recognised.

    Args:
        error: Exception raised by a store or a unit of work

    Returns:
        True if the transaction should be restarted
    """
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))

        if isinstance(current, LedgerError) and current.retriable:
            return True
        if _sqlstate_of(current) in RETRIABLE_SQLSTATES:
            return True
        if isinstance(current, sqlite3.OperationalError):
            text = str(current).lower()
            if any(marker in text for marker in _SQLITE_CONTENTION_MARKERS):
                return True

        current = current.__cause__
    return False
