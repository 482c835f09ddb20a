"""Retry schedule for source fetches: exponential growth, capped, with proportional jitter."""

from __future__ import annotations

import random
from collections.abc import Iterator
from dataclasses import dataclass, field
from random import SystemRandom


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 5.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=SystemRandom, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    def schedule(self) -> Iterator[tuple[int, float]]:
        """Yield ``(attempt, delay_after_failure)``; the final attempt's delay is never slept."""
        delay = self.base_delay
        for attempt in range(1, self.max_attempts + 1):
            offset = self.rng.uniform(0, delay * self.jitter) if self.jitter and delay else 0.0
            yield attempt, min(delay + offset, self.max_delay)
            delay = min(delay * self.factor, self.max_delay)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts
