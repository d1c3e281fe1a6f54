"""Token-bucket limiter for request weight.

Tokens refill continuously and lazily: the refill is computed from the
elapsed monotonic time on every acquisition, so no timer thread is needed.
Thread-safe: concurrent callers share one bucket behind one lock, and the
lock is only held for the refill/debit arithmetic, never while sleeping.
"""
from __future__ import annotations

import logging
import threading
import time

logger = logging.getLogger(__name__)

# float refills can land a hair under an integer weight
_EPSILON = 1e-9
# floor for a single sleep
_MIN_WAIT = 1e-3


class TokenBucket:
    """
    Usage:
        bucket = TokenBucket.per_minute(1200)
        bucket.acquire(weight=5)  # blocks until 5 tokens are available
    """

    def __init__(self, capacity: float, refill_rate: float):
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be greater than 0")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)  # tokens per second
        self._tokens = float(capacity)         # start full
        self._last_refill = time.monotonic()
        self._lock = threading.Lock()

    @classmethod
    def per_minute(cls, requests_per_minute: int) -> TokenBucket:
        return cls(capacity=requests_per_minute, refill_rate=requests_per_minute / 60.0)

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def acquire(self, weight: int = 1, timeout: float | None = None) -> bool:
        """
        Block until `weight` tokens are available, then debit them.

        Without `timeout` this always returns True. With `timeout` (seconds),
        returns False as soon as it is clear the tokens cannot accrue before
        the deadline; nothing is debited in that case.
        """
        self._check_weight(weight)
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            with self._lock:
                if self._take(weight):
                    return True
                wait = max((weight - self._tokens) / self.refill_rate, _MIN_WAIT)

            if deadline is not None:
                remaining = deadline - time.monotonic()
                if wait > remaining:
                    logger.debug("acquire(%s) gives up: needs %.3fs, %.3fs left", weight, wait, remaining)
                    return False

            logger.debug("acquire(%s) waiting %.3fs for tokens", weight, wait)
            time.sleep(wait)

    def try_acquire(self, weight: int = 1) -> bool:
        """Debit `weight` tokens if available right now; never blocks."""
        self._check_weight(weight)
        with self._lock:
            return self._take(weight)

    def _take(self, weight: int) -> bool:
        """Refill, then debit `weight` if it is there. Must be called under lock."""
        self._refill()
        if self._tokens < weight - _EPSILON:
            return False
        self._tokens = max(0.0, self._tokens - weight)
        return True

    def _check_weight(self, weight: int) -> None:
        if weight <= 0:
            raise ValueError(f"weight must be positive, got {weight}")
        if weight > self.capacity:
            raise ValueError(f"weight {weight} exceeds bucket capacity {self.capacity:g}")

    def _refill(self) -> None:
        """Add tokens based on elapsed time. Must be called under lock."""
        now = time.monotonic()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
            self._last_refill = now
