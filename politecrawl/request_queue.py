from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Generic, List, Optional, TypeVar

from .delay import RequestDelay
from .models import QueuedRequest

S = TypeVar("S")


class RequestQueue(Generic[S]):
    """FIFO of pending requests for one domain, gated by a pacing deadline.

    Unlike a blocking rate limiter, the queue never sleeps: poll_next()
    either hands out the front request or reports that nothing is ready, and
    ready_in() tells the caller how long to wait before asking again.
    The deadline is only consumed by an actual release."""

    def __init__(
        self,
        delay: Optional[RequestDelay] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._delay = delay
        self._clock = clock
        self._items: Deque[QueuedRequest[S]] = deque()
        self._next_allowed: Optional[float] = None

    @classmethod
    def with_delay(cls, delay: RequestDelay, clock: Callable[[], float] = time.monotonic) -> "RequestQueue[S]":
        return cls(delay=delay, clock=clock)

    @property
    def delay(self) -> Optional[RequestDelay]:
        return self._delay

    def set_delay(self, delay: RequestDelay) -> Optional[RequestDelay]:
        """Swap the pacing policy, returning the previous one. An armed deadline is kept."""
        old, self._delay = self._delay, delay
        return old

    def remove_delay(self) -> Optional[RequestDelay]:
        """Stop pacing future releases. An armed deadline still has to elapse."""
        old, self._delay = self._delay, None
        return old

    def push(self, request: QueuedRequest[S]) -> None:
        self._items.append(request)

    def drain(self) -> List[QueuedRequest[S]]:
        """Remove and return every queued request in FIFO order."""
        items = list(self._items)
        self._items.clear()
        return items

    def is_empty(self) -> bool:
        return not self._items

    def len(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def ready_in(self) -> float:
        """Seconds until the armed deadline elapses (0.0 when unarmed or elapsed)."""
        if self._next_allowed is None:
            return 0.0
        return max(0.0, self._next_allowed - self._clock())

    def poll_next(self) -> Optional[QueuedRequest[S]]:
        """Release the front request if the pacing deadline allows it, else None."""
        if not self._items:
            return None
        now = self._clock()
        if self._next_allowed is not None and now < self._next_allowed:
            return None
        item = self._items.popleft()
        if self._delay is not None:
            self._next_allowed = now + self._delay.next_delay()
        else:
            self._next_allowed = None
        return item
