from __future__ import annotations

import random
from dataclasses import dataclass

from .config import ClientConfig


@dataclass(frozen=True)
class BackoffPolicy:
    max_retries: int = 3          # number of retries (excluding the first attempt)
    base_delay: float = 0.5       # seconds: 0.5, 1.0, 2.0, ...
    max_delay: float = 30.0       # cap for backoff
    jitter: float = 0.0           # extra random fraction of the delay, 0 = deterministic

    @classmethod
    def from_config(cls, config: ClientConfig) -> BackoffPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay=config.backoff_base,
            max_delay=config.backoff_max,
            jitter=config.backoff_jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (0 = first retry)."""
        if attempt < 0:
            raise ValueError("attempt must not be negative")
        delay = min(self.base_delay * (2 ** min(attempt, 64)), self.max_delay)
        if self.jitter:
            delay *= 1.0 + random.uniform(0.0, self.jitter)
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries
