"""robots.txt compliance gate.

Rules are fetched through the crawler's shared client the first time a host
is asked about, parsed with the standard library parser, and cached per host.
A failed fetch is cached too, so a broken robots.txt costs one request and
one RobotsTxtError, not one per queued page.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional
from urllib import robotparser
from urllib.parse import urlsplit

from . import transport
from .errors import RobotsTxtError

logger = logging.getLogger(__name__)


class RobotsDecision(Enum):
    ALLOWED = "allowed"
    DISALLOWED = "disallowed"
    UNKNOWN = "unknown"


class RobotsStatus(Enum):
    FETCHED = "fetched"
    MISSING = "missing"
    FORBIDDEN = "forbidden"
    FAILED = "failed"


class RobotsFailurePolicy(Enum):
    """What to do with requests to a host whose robots.txt could not be fetched."""

    ALLOW = "allow"
    DENY = "deny"


@dataclass
class RobotsData:
    parser: robotparser.RobotFileParser
    status: RobotsStatus
    fetched_at: float
    error: Optional[BaseException] = None
    reported: bool = False

    def decide(self, user_agent: str, url: str) -> RobotsDecision:
        if self.status is RobotsStatus.FAILED:
            return RobotsDecision.UNKNOWN
        if self.parser.can_fetch(user_agent, url):
            return RobotsDecision.ALLOWED
        return RobotsDecision.DISALLOWED


class RobotsGate:
    """Thread-safe per-host cache of robots.txt rules.

    Worker threads may ask about the same host at the same time; only one of
    them fetches, the others wait on the host lock and read the cache."""

    def __init__(
        self,
        client: Any,
        user_agent: str = "*",
        timeout: Optional[float] = transport.DEFAULT_TIMEOUT,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._user_agent = user_agent
        self._timeout = timeout
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._host_locks: Dict[str, threading.Lock] = {}
        self._cache: Dict[str, RobotsData] = {}

    def check(self, url: str) -> RobotsDecision:
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return self.check_host(parts.scheme or "http", parts.netloc, path)

    def check_host(self, scheme: str, host: str, path: str) -> RobotsDecision:
        """Decide whether ``path`` on ``host`` may be fetched."""
        key = host.lower()
        data = self._rules_for(scheme, key)
        return data.decide(self._user_agent, f"{scheme}://{key}{path}")

    def rules(self, host: str) -> Optional[RobotsData]:
        with self._lock:
            return self._cache.get(host.lower())

    def take_failure(self, host: str) -> Optional[RobotsTxtError]:
        """Return the RobotsTxtError for a failed host, once per failed fetch."""
        with self._lock:
            data = self._cache.get(host.lower())
            if data is None or data.status is not RobotsStatus.FAILED or data.reported:
                return None
            data.reported = True
            return RobotsTxtError(host.lower(), data.error)

    def invalidate(self, host: str) -> None:
        with self._lock:
            self._cache.pop(host.lower(), None)

    def _fresh(self, data: Optional[RobotsData]) -> bool:
        if data is None:
            return False
        if self._ttl is None:
            return True
        return self._clock() - data.fetched_at < self._ttl

    def _rules_for(self, scheme: str, host: str) -> RobotsData:
        with self._lock:
            data = self._cache.get(host)
            if self._fresh(data):
                return data
            host_lock = self._host_locks.setdefault(host, threading.Lock())

        with host_lock:
            with self._lock:
                data = self._cache.get(host)
                if self._fresh(data):
                    return data
            data = self._fetch(scheme, host)
            with self._lock:
                self._cache[host] = data
                # waiters already holding this lock object re-read the cache
                self._host_locks.pop(host, None)
            return data

    def _fetch(self, scheme: str, host: str) -> RobotsData:
        robots_url = f"{scheme}://{host}/robots.txt"
        parser = robotparser.RobotFileParser(robots_url)
        now = self._clock()
        try:
            resp = transport.get(self._client, robots_url, timeout=self._timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("robots.txt fetch failed for %s: %s", host, exc)
            return RobotsData(parser, RobotsStatus.FAILED, now, error=exc)

        status_code = int(getattr(resp, "status_code", 0) or 0)
        if 200 <= status_code < 300:
            content = getattr(resp, "content", b"") or b""
            parser.parse(content.decode("utf-8", errors="replace").splitlines())
            logger.debug("robots.txt loaded for %s", host)
            return RobotsData(parser, RobotsStatus.FETCHED, now)
        if status_code in (401, 403):
            parser.disallow_all = True
            return RobotsData(parser, RobotsStatus.FORBIDDEN, now)
        if 400 <= status_code < 500:
            parser.allow_all = True
            return RobotsData(parser, RobotsStatus.MISSING, now)

        logger.warning("robots.txt for %s answered with status %s", host, status_code)
        return RobotsData(parser, RobotsStatus.FAILED, now, error=RuntimeError(f"HTTP_{status_code}"))
