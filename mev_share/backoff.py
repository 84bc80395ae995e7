from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Backoff:
    """Bounded exponential backoff: attempt n waits base * factor ** (n - 1), capped at max_delay."""

    base: float = 0.5
    factor: float = 2.0
    max_retries: int = 8
    max_delay: Optional[float] = None

    def delay(self, attempt):
        delay = self.base * self.factor ** max(attempt - 1, 0)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def delays(self):
        for attempt in range(1, self.max_retries + 1):
            yield self.delay(attempt)

    def total(self):
        """Longest time spent sleeping before the retries run out."""
        return sum(self.delays())
