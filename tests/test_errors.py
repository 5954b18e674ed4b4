"""
Tests for the ledger error taxonomy and conflict classification
"""

import sqlite3

import pytest

from core_ledger.errors import (
    LedgerError, StoreError, SerializationConflictError, TransactionClosedError,
    AccountNotFoundError, TransactionCancelledError, RetryLimitExceededError,
    is_retriable_conflict, SERIALIZATION_FAILURE, DEADLOCK_DETECTED
)


class DriverError(Exception):
    """Stand-in for a DB-API driver error carrying a SQLSTATE"""

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


class TestErrorTypes:
    """Test error attributes"""

    def test_serialization_conflict_defaults(self):
        """Conflicts carry SQLSTATE 40001 and are flagged retriable"""
        error = SerializationConflictError()
        assert error.sqlstate == SERIALIZATION_FAILURE
        assert error.retriable is True
        assert error.error_code == "SERIALIZATION_CONFLICT"
        assert isinstance(error, StoreError)

    def test_permanent_errors_not_flagged(self):
        """Other ledger errors are permanent"""
        assert StoreError("boom").retriable is False
        assert TransactionClosedError("closed").retriable is False
        assert AccountNotFoundError(7).retriable is False

    def test_account_not_found_message(self):
        error = AccountNotFoundError(42)
        assert error.account_id == 42
        assert "42" in str(error)

    def test_cancelled_and_retry_limit_carry_attempts(self):
        assert TransactionCancelledError(3).attempts == 3
        assert RetryLimitExceededError(5).attempts == 5

    def test_custom_error_code(self):
        error = LedgerError("custom", error_code="X1")
        assert error.error_code == "X1"
        assert error.message == "custom"


class TestIsRetriableConflict:
    """Test retriable vs permanent classification"""

    def test_ledger_conflict_is_retriable(self):
        assert is_retriable_conflict(SerializationConflictError())

    def test_store_error_with_conflict_sqlstate_is_retriable(self):
        assert is_retriable_conflict(StoreError("abort", sqlstate=SERIALIZATION_FAILURE))

    def test_store_error_with_other_sqlstate_is_permanent(self):
        assert not is_retriable_conflict(StoreError("duplicate key", sqlstate="23505"))

    @pytest.mark.parametrize("code", [SERIALIZATION_FAILURE, DEADLOCK_DETECTED])
    def test_driver_error_with_conflict_code(self, code):
        """psycopg2-style errors expose the SQLSTATE as pgcode"""
        assert is_retriable_conflict(DriverError("could not serialize access", pgcode=code))

    def test_driver_error_without_code(self):
        assert not is_retriable_conflict(DriverError("connection refused"))

    @pytest.mark.parametrize("message", [
        "database is locked",
        "database table is locked: accounts",
    ])
    def test_sqlite_contention_is_retriable(self, message):
        assert is_retriable_conflict(sqlite3.OperationalError(message))

    def test_other_sqlite_errors_are_permanent(self):
        assert not is_retriable_conflict(sqlite3.OperationalError("no such table: accounts"))

    def test_plain_exceptions_are_permanent(self):
        assert not is_retriable_conflict(ValueError("bad amount"))
        assert not is_retriable_conflict(KeyError("missing"))

    def test_follows_cause_chain(self):
        """A wrapped driver conflict is still recognised"""
        try:
            try:
                raise sqlite3.OperationalError("database is locked")
            except sqlite3.OperationalError as inner:
                raise RuntimeError("write failed") from inner
        except RuntimeError as outer:
            assert is_retriable_conflict(outer)

    def test_cause_chain_of_permanent_errors(self):
        outer = RuntimeError("write failed")
        outer.__cause__ = ValueError("bad data")
        assert not is_retriable_conflict(outer)
