from __future__ import annotations

import random as _random
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RequestDelay:
    """Pacing policy for a single domain queue.

    A fixed delay always waits ``min_seconds``. A random delay draws a new
    interval uniformly (millisecond resolution, both bounds inclusive) every
    time the queue releases a request."""

    min_seconds: float
    max_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.min_seconds < 0:
            raise ValueError("delay must be >= 0")
        if self.max_seconds is not None and self.max_seconds < self.min_seconds:
            raise ValueError("max delay must be >= min delay")

    @classmethod
    def fixed(cls, seconds: float) -> "RequestDelay":
        return cls(min_seconds=seconds)

    @classmethod
    def random(cls, max_seconds: float) -> "RequestDelay":
        return cls(min_seconds=0.0, max_seconds=max_seconds)

    @classmethod
    def random_in_range(cls, min_seconds: float, max_seconds: float) -> "RequestDelay":
        return cls(min_seconds=min_seconds, max_seconds=max_seconds)

    @property
    def is_random(self) -> bool:
        return self.max_seconds is not None

    def next_delay(self) -> float:
        """Return the interval in seconds to wait before the next release."""
        if self.max_seconds is None:
            return self.min_seconds
        lo = int(self.min_seconds * 1000)
        hi = int(self.max_seconds * 1000)
        return _random.randint(lo, hi) / 1000.0
