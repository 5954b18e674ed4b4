"""
Event System Module

Phase events emitted by the transaction executor and a publish/subscribe
dispatcher that fans them out to observers. Observers are for tracing only:
their failures are logged and never change how a transaction runs.
"""

from enum import Enum
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
import logging


class TransactionPhase(Enum):
    """Executor phases an observer can see"""
    BEGIN = "begin"
    COMMIT = "commit"
    ROLLBACK = "rollback"
    RETRY_SLEEP = "retry-sleep"


class PhaseOutcome(Enum):
    """What happened in a phase"""
    OK = "ok"
    DECLINED = "declined"
    CONFLICT = "conflict"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PhaseEvent:
    """One executor phase; ``delay`` is set for retry sleeps (seconds)"""
    attempt: int
    phase: TransactionPhase
    outcome: PhaseOutcome
    delay: Optional[float] = None
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, object]:
        """Convert to dictionary for serialization"""
        return {
            'attempt': self.attempt,
            'phase': self.phase.value,
            'outcome': self.outcome.value,
            'delay': self.delay,
            'error': repr(self.error) if self.error is not None else None,
            'timestamp': self.timestamp.isoformat()
        }


PhaseHook = Callable[[PhaseEvent], None]


class EventDispatcher:
    """Central phase event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[TransactionPhase, List[PhaseHook]] = {}
        self._global_handlers: List[PhaseHook] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("ledger.events")

    def subscribe(self, phase: TransactionPhase, handler: PhaseHook) -> None:
        """Subscribe to a specific phase"""
        with self._lock:
            self._handlers.setdefault(phase, []).append(handler)
            self.logger.debug(f"Subscribed handler {getattr(handler, '__name__', repr(handler))} to {phase.value}")

    def subscribe_all(self, handler: PhaseHook) -> None:
        """Subscribe to ALL phases"""
        with self._lock:
            self._global_handlers.append(handler)

    def publish(self, event: PhaseEvent) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.phase, [])) + list(self._global_handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the transaction
                self.logger.error(f"Error in event handler {getattr(handler, '__name__', repr(handler))} for {event.phase.value}: {e}")


def logging_hook(logger: Optional[logging.Logger] = None) -> PhaseHook:
    """Build a hook that writes every phase event to a logger at DEBUG"""
    target = logger or logging.getLogger("ledger.events")

    def hook(event: PhaseEvent) -> None:
        target.debug(
            f"{event.phase.value} -> {event.outcome.value}",
            extra={"attempt": event.attempt, "phase": event.phase.value, "extra": event.to_dict()}
        )

    return hook
