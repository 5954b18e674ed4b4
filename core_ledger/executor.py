"""
Retryable Transaction Executor Module

Runs a unit of work inside a store transaction and transparently restarts it
when the store aborts the transaction with a serialization conflict.

Each attempt:
    1. begin a transaction
    2. call the unit of work with the transaction handle
    3. commit, for both a value and a decline
    4. on any error, roll back and classify it: conflicts sleep for a backoff
       delay and go again, everything else is returned as a failure

The retry loop is unbounded unless ``max_attempts`` is set. ``run`` never
raises for errors derived from Exception; callers branch on the returned
TransactionResult.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .backoff import BackoffPolicy
from .errors import is_retriable_conflict, TransactionCancelledError, RetryLimitExceededError
from .events import PhaseEvent, PhaseHook, PhaseOutcome, TransactionPhase
from .results import TransactionResult, TransactionOutcome, UnitOfWork
from .storage import StorageInterface, TransactionHandle


logger = logging.getLogger("ledger.executor")


@dataclass
class RetryState:
    """Counters owned by a single ``run`` invocation"""
    attempts: int = 0  # transaction attempts started
    retries: int = 0   # backoff sleeps completed


def _outcome_for(error: BaseException) -> PhaseOutcome:
    return PhaseOutcome.CONFLICT if is_retriable_conflict(error) else PhaseOutcome.ERROR


class RetryableTransactionExecutor:
    """
    Executes units of work with automatic retry on serialization conflicts.

    Args:
        storage: Transactional store to run against
        backoff: Delay policy between attempts (defaults to 100ms base, 100ms jitter)
        hook: Optional observer called with a PhaseEvent for every phase
        max_attempts: Optional ceiling on attempts; None retries until commit

    Safe to share between threads: all per-call state lives in RetryState.
    """

    def __init__(
        self,
        storage: StorageInterface,
        backoff: Optional[BackoffPolicy] = None,
        hook: Optional[PhaseHook] = None,
        max_attempts: Optional[int] = None
    ):
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.storage = storage
        self.backoff = backoff or BackoffPolicy()
        self.hook = hook
        self.max_attempts = max_attempts

    @classmethod
    def from_config(cls, storage: StorageInterface, config,
                    hook: Optional[PhaseHook] = None) -> 'RetryableTransactionExecutor':
        """Build an executor from a LedgerConfig"""
        return cls(
            storage,
            backoff=BackoffPolicy.from_config(config),
            hook=hook,
            max_attempts=config.max_attempts
        )

    def run(self, work: UnitOfWork,
            cancel_event: Optional[threading.Event] = None) -> TransactionResult:
        """
        Run ``work`` in a transaction until it commits, declines or fails.

        Args:
            work: Unit of work; called once per attempt with the transaction handle
            cancel_event: Set it to abandon the run before the next attempt or
                while waiting out a backoff delay

        Returns:
            TransactionResult tagged committed, declined or failed
        """
        cancel = cancel_event or threading.Event()
        state = RetryState()

        while True:
            if cancel.is_set():
                return self._cancelled(state)

            state.attempts += 1
            try:
                result = self._attempt(work, state)
            except Exception as exc:
                if not is_retriable_conflict(exc):
                    logger.error(
                        f"Transaction failed permanently on attempt {state.attempts}: "
                        f"{type(exc).__name__}: {exc}",
                        extra={"attempt": state.attempts}
                    )
                    return TransactionResult.failed(exc, state.attempts)

                if self.max_attempts is not None and state.attempts >= self.max_attempts:
                    error = RetryLimitExceededError(state.attempts)
                    error.__cause__ = exc
                    logger.error(str(error), extra={"attempt": state.attempts})
                    return TransactionResult.failed(error, state.attempts)

                # Event.wait rejects timeouts above TIMEOUT_MAX with OverflowError
                delay = min(self.backoff.delay(state.retries), threading.TIMEOUT_MAX)
                logger.warning(
                    f"Hit retriable conflict on attempt {state.attempts}, "
                    f"sleeping {delay * 1000:.0f} milliseconds: {exc}",
                    extra={"attempt": state.attempts, "phase": TransactionPhase.RETRY_SLEEP.value}
                )
                self._emit(state, TransactionPhase.RETRY_SLEEP, PhaseOutcome.CONFLICT,
                           delay=delay, error=exc)

                if cancel.wait(delay):
                    self._emit(state, TransactionPhase.RETRY_SLEEP, PhaseOutcome.CANCELLED)
                    return self._cancelled(state)
                state.retries += 1
                continue

            return result.with_attempts(state.attempts)

    def _attempt(self, work: UnitOfWork, state: RetryState) -> TransactionResult:
        """One begin / work / commit cycle; raises on any error after rolling back"""
        try:
            tx = self.storage.begin_transaction()
        except Exception as exc:
            self._emit(state, TransactionPhase.BEGIN, _outcome_for(exc), error=exc)
            raise
        self._emit(state, TransactionPhase.BEGIN, PhaseOutcome.OK)

        try:
            value = work(tx)
        except Exception as exc:
            self._rollback(tx, state, exc)
            raise

        if isinstance(value, TransactionResult):
            if value.outcome == TransactionOutcome.FAILED:
                error = value.cause or RuntimeError("unit of work reported failure")
                self._rollback(tx, state, error)
                raise error
            outcome = value
        else:
            outcome = TransactionResult.committed(value)

        try:
            tx.commit()
        except Exception as exc:
            self._emit(state, TransactionPhase.COMMIT, _outcome_for(exc), error=exc)
            self._rollback(tx, state, exc)
            raise

        self._emit(
            state, TransactionPhase.COMMIT,
            PhaseOutcome.DECLINED if outcome.is_declined else PhaseOutcome.OK
        )
        return outcome

    def _rollback(self, tx: TransactionHandle, state: RetryState, cause: BaseException) -> None:
        try:
            tx.rollback()
        except Exception as exc:
            # The original error decides what happens next, not the rollback
            logger.warning(f"Rollback failed on attempt {state.attempts}: {exc}",
                           extra={"attempt": state.attempts, "phase": TransactionPhase.ROLLBACK.value})
            self._emit(state, TransactionPhase.ROLLBACK, PhaseOutcome.ERROR, error=exc)
            return
        self._emit(state, TransactionPhase.ROLLBACK, _outcome_for(cause), error=cause)

    def _cancelled(self, state: RetryState) -> TransactionResult:
        logger.info(f"Transaction cancelled after {state.attempts} attempt(s)",
                    extra={"attempt": state.attempts})
        return TransactionResult.failed(TransactionCancelledError(state.attempts), state.attempts)

    def _emit(self, state: RetryState, phase: TransactionPhase, outcome: PhaseOutcome,
              delay: Optional[float] = None, error: Optional[BaseException] = None) -> None:
        logger.debug(f"{phase.value} -> {outcome.value}",
                     extra={"attempt": state.attempts, "phase": phase.value})
        if self.hook is None:
            return
        try:
            self.hook(PhaseEvent(state.attempts, phase, outcome, delay=delay, error=error))
        except Exception as e:
            logger.error(f"Error in transaction hook for {phase.value}: {e}")
