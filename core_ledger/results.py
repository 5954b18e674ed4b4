"""
Transaction Result Module

Tagged outcome of running a unit of work through the executor, and the
unit-of-work contract itself.

A unit of work is any callable taking an open TransactionHandle. It may be
invoked several times, once per attempt, so it must read its state fresh
through the handle every time and must not touch anything outside the
transaction before commit. Returning ``TransactionResult.declined(...)``
rejects the operation on business grounds; any other return value is the
result to commit.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .storage import TransactionHandle


UnitOfWork = Callable[[TransactionHandle], Any]


class TransactionOutcome(Enum):
    """Possible outcomes of an executor run"""
    COMMITTED = "committed"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass(frozen=True)
class TransactionResult:
    """
    Result of a retryable transaction.

    Attributes:
        outcome: Which of committed / declined / failed happened
        value: The unit of work's return value (committed only)
        reason: Why the business rule rejected the operation (declined only)
        cause: The error that ended the run (failed only)
        attempts: Number of transaction attempts made
    """
    outcome: TransactionOutcome
    value: Any = None
    reason: Optional[str] = None
    cause: Optional[BaseException] = None
    attempts: int = 0

    @classmethod
    def committed(cls, value: Any, attempts: int = 0) -> 'TransactionResult':
        return cls(TransactionOutcome.COMMITTED, value=value, attempts=attempts)

    @classmethod
    def declined(cls, reason: Optional[str] = None, attempts: int = 0) -> 'TransactionResult':
        return cls(TransactionOutcome.DECLINED, reason=reason, attempts=attempts)

    @classmethod
    def failed(cls, cause: BaseException, attempts: int = 0) -> 'TransactionResult':
        return cls(TransactionOutcome.FAILED, cause=cause, attempts=attempts)

    @property
    def is_committed(self) -> bool:
        return self.outcome == TransactionOutcome.COMMITTED

    @property
    def is_declined(self) -> bool:
        return self.outcome == TransactionOutcome.DECLINED

    @property
    def is_failed(self) -> bool:
        return self.outcome == TransactionOutcome.FAILED

    def with_attempts(self, attempts: int) -> 'TransactionResult':
        """Copy of this result carrying the executor's attempt count"""
        return TransactionResult(self.outcome, self.value, self.reason, self.cause, attempts)


def declined(reason: Optional[str] = None) -> TransactionResult:
    """Return this from a unit of work to reject the operation"""
    return TransactionResult.declined(reason)
