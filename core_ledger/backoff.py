"""
Backoff Policy Module

Exponential backoff with additive jitter for transaction retries:

    delay(attempt) = min(max_delay, base_delay * 2 ** attempt) + uniform(0, jitter_window)

``attempt`` is 0 for the first retry. All parameters are in milliseconds.
"""

import random
import threading
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_MAX_DELAY_MILLIS = 10_000

# 2 ** 64 * base already dwarfs any useful delay; larger exponents would
# overflow the float conversion
_MAX_EXPONENT = 64


class _SharedRandom:
    """Process-wide generator, seeded at import, safe to share across threads"""

    def __init__(self):
        self._rng = random.Random()
        self._lock = threading.Lock()

    def uniform(self, a: float, b: float) -> float:
        with self._lock:
            return self._rng.uniform(a, b)


_shared_random = _SharedRandom()


@dataclass
class BackoffPolicy:
    """Configuration and calculation of retry delays"""
    base_delay_millis: float = 100
    jitter_window_millis: float = 100
    max_delay_millis: Optional[float] = DEFAULT_MAX_DELAY_MILLIS  # None = uncapped
    rng: Optional[random.Random] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.base_delay_millis < 0:
            raise ValueError("base_delay_millis must not be negative")
        if self.jitter_window_millis < 0:
            raise ValueError("jitter_window_millis must not be negative")
        if self.max_delay_millis is not None and self.max_delay_millis < 0:
            raise ValueError("max_delay_millis must not be negative")

    @classmethod
    def from_config(cls, config) -> 'BackoffPolicy':
        """Build a policy from a LedgerConfig"""
        return cls(
            base_delay_millis=config.backoff_base_delay_millis,
            jitter_window_millis=config.backoff_jitter_window_millis,
            max_delay_millis=config.backoff_max_delay_millis
        )

    def base_delay_for(self, attempt: int) -> float:
        """Exponential term without jitter, in milliseconds"""
        if attempt < 0:
            raise ValueError("attempt must not be negative")
        exponential = self.base_delay_millis * float(2 ** min(attempt, _MAX_EXPONENT))
        if self.max_delay_millis is not None:
            exponential = min(self.max_delay_millis, exponential)
        return exponential

    def _jitter(self) -> float:
        if self.jitter_window_millis == 0:
            return 0.0
        source = self.rng if self.rng is not None else _shared_random
        return source.uniform(0, self.jitter_window_millis)

    def delay_millis(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), in milliseconds"""
        return self.base_delay_for(attempt) + self._jitter()

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), in seconds"""
        return self.delay_millis(attempt) / 1000.0
