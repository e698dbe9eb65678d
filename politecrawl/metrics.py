from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Deque, Dict, List, Optional


@dataclass(frozen=True)
class CrawlEvent:
    domain: str
    status_code: Optional[int]
    error_type: Optional[str]
    latency_ms: int

    @property
    def success(self) -> bool:
        return self.error_type is None


@dataclass(frozen=True)
class CrawlSnapshot:
    window_secs: int
    total_requests: int
    success_count: int
    error_counts: Dict[str, int]
    http_429_count: int
    http_403_count: int
    avg_latency_ms: float
    per_domain: Dict[str, int] = field(default_factory=dict)
    timestamp: float = 0.0


class CrawlMetrics:
    """Thread-safe collector for finished requests.

    Records one CrawlEvent per fetched (or failed) request and produces
    aggregated CrawlSnapshot objects over sliding time windows."""

    def __init__(self, maxlen: int = 10000) -> None:
        self._lock = Lock()
        self._events: Deque[tuple[float, CrawlEvent]] = deque(maxlen=maxlen)

    def record(
        self,
        domain: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        latency_ms: int = 0,
    ) -> None:
        """Record a finished request with the current timestamp."""
        with self._lock:
            self._events.append((time.time(), CrawlEvent(domain, status_code, error_type, latency_ms)))

    def snapshot(self, window_secs: int = 60) -> CrawlSnapshot:
        """Return aggregated metrics for events within the last window_secs seconds."""
        now = time.time()
        cutoff = now - window_secs
        with self._lock:
            events: List[CrawlEvent] = [e for ts, e in self._events if ts >= cutoff]
        total = len(events)
        errors = Counter(e.error_type for e in events if e.error_type is not None)
        per_domain = Counter(e.domain for e in events)
        avg_latency_ms = (sum(e.latency_ms for e in events) / total) if total else 0.0

        return CrawlSnapshot(
            window_secs=window_secs,
            total_requests=total,
            success_count=sum(1 for e in events if e.success),
            error_counts=dict(errors),
            http_429_count=sum(1 for e in events if e.status_code == 429),
            http_403_count=sum(1 for e in events if e.status_code == 403),
            avg_latency_ms=avg_latency_ms,
            per_domain=dict(per_domain),
            timestamp=now,
        )

    def reset(self) -> None:
        with self._lock:
            self._events.clear()

    def export_json(self) -> List[Dict]:
        """Export all recorded events as a list of dictionaries."""
        with self._lock:
            return [{"timestamp": ts, **asdict(e)} for ts, e in self._events]
