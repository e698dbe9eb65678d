from __future__ import annotations

import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union
from urllib.parse import urlsplit

import requests

from .delay import RequestDelay
from .errors import (
    CrawlError,
    DisallowedRequest,
    DisallowReason,
    FailedToBuildRequest,
    InvalidRequest,
    ReachedMaxDepth,
)
from .models import QueuedRequest
from .request_queue import RequestQueue

logger = logging.getLogger(__name__)

S = TypeVar("S")

MAX_CONCURRENT_REQUESTS = 100


@dataclass
class DomainConfig:
    """Per-domain crawl limits. ``max_depth=None`` means unbounded;
    ``max_requests=None`` means an even share of the global cap."""

    max_depth: Optional[int] = None
    max_requests: Optional[int] = None
    delay: Optional[RequestDelay] = None
    respect_robots_txt: bool = False
    skip_non_successful_response: bool = True


def normalize_domain(name: str) -> str:
    return name.strip().lower().rstrip(".")


def host_of(url: str) -> Optional[str]:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None
    return normalize_domain(parts.hostname)


class Domain(Generic[S]):
    """A registered host: its configuration, its queue and its in-flight count."""

    def __init__(
        self,
        name: str,
        config: DomainConfig,
        cap: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config
        self.cap = cap
        self.queue: RequestQueue[S] = RequestQueue(delay=config.delay, clock=clock)
        self.in_flight = 0

    def has_capacity(self) -> bool:
        return self.in_flight < self.cap

    def is_idle(self) -> bool:
        """Nothing queued, nothing in flight and no pacing deadline still pending."""
        return self.in_flight == 0 and self.queue.is_empty() and self.queue.ready_in() == 0.0

    def exceeds_depth(self, depth: int) -> bool:
        return self.config.max_depth is not None and depth > self.config.max_depth

    def set_delay(self, delay: RequestDelay) -> Optional[RequestDelay]:
        self.config.delay = delay
        return self.queue.set_delay(delay)

    def remove_delay(self) -> Optional[RequestDelay]:
        self.config.delay = None
        return self.queue.remove_delay()

    def __repr__(self) -> str:
        return (
            f"Domain(name={self.name!r}, queued={len(self.queue)}, "
            f"in_flight={self.in_flight}, cap={self.cap})"
        )


class DomainRegistry(ABC, Generic[S]):
    """Maps hosts to their queues and decides whether a request may be crawled.

    Only the crawler's consumer thread touches a registry, so it holds no lock."""

    def __init__(
        self,
        max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be >= 1")
        self.max_concurrent_requests = max_concurrent_requests
        self._clock = clock
        self._domains: Dict[str, Domain[S]] = {}

    @abstractmethod
    def register(self, domain: str, config: Optional[DomainConfig] = None) -> List[QueuedRequest[S]]:
        ...

    @abstractmethod
    def unregister(self, domain: str) -> List[QueuedRequest[S]]:
        ...

    @abstractmethod
    def _resolve(self, host: str) -> Optional[Domain[S]]:
        """Return the owning domain for ``host``, or None if user config forbids it."""

    def route(self, queued: QueuedRequest[S]) -> Domain[S]:
        """Return the domain that owns ``queued`` or raise the rejection."""
        host = host_of(queued.url)
        if host is None:
            raise InvalidRequest(queued.url, queued.state)
        domain = self._resolve(host)
        if domain is None:
            raise DisallowedRequest(DisallowReason.USER_CONFIG, queued.url, queued.state)
        return domain

    def add_request(
        self,
        request: Union[requests.Request, requests.PreparedRequest],
        state: Optional[S] = None,
        depth: int = 0,
    ) -> Optional[CrawlError]:
        """Build, route and enqueue a request. Returns the rejection instead of raising it."""
        try:
            prepared = request.prepare() if isinstance(request, requests.Request) else request
        except Exception as exc:  # noqa: BLE001
            return FailedToBuildRequest(exc, state, depth)

        queued = QueuedRequest(prepared, state, depth)
        try:
            domain = self.route(queued)
        except CrawlError as err:
            return err
        if domain.exceeds_depth(depth):
            return ReachedMaxDepth(queued.url, depth, state)
        domain.queue.push(queued)
        return None

    def lookup(self, domain: str) -> Optional[DomainConfig]:
        """A detached copy of a domain's configuration."""
        found = self._domains.get(normalize_domain(domain))
        return dataclasses.replace(found.config) if found else None

    def lookup_mut(self, domain: str) -> Optional[Domain[S]]:
        """The live domain entry; changes to it affect the running crawl."""
        return self._domains.get(normalize_domain(domain))

    def domains(self) -> List[Domain[S]]:
        return list(self._domains.values())

    def __contains__(self, domain: object) -> bool:
        return isinstance(domain, str) and normalize_domain(domain) in self._domains

    def __len__(self) -> int:
        return len(self._domains)

    def queued(self) -> int:
        return sum(len(d.queue) for d in self._domains.values())

    def is_empty(self) -> bool:
        return all(d.queue.is_empty() for d in self._domains.values())

    def prune(self) -> List[str]:
        """Drop entries that can be recreated on demand. Returns the dropped names."""
        return []

    def drain(self) -> List[QueuedRequest[S]]:
        drained: List[QueuedRequest[S]] = []
        for d in self._domains.values():
            drained.extend(d.queue.drain())
        return drained


class AllowList(DomainRegistry[S]):
    """Only registered domains are crawled.

    Domains without an explicit ``max_requests`` split the global cap evenly;
    the split is recomputed whenever the membership changes."""

    def register(self, domain: str, config: Optional[DomainConfig] = None) -> List[QueuedRequest[S]]:
        name = normalize_domain(domain)
        config = config or DomainConfig()
        existing = self._domains.get(name)
        if existing is not None:
            existing.config = config
            if config.delay is not None:
                existing.queue.set_delay(config.delay)
            else:
                existing.queue.remove_delay()
        else:
            self._domains[name] = Domain(name, config, cap=1, clock=self._clock)
            logger.info("allowed domain %s", name)
        self._rebalance()
        return []

    def allow(self, domain: str, config: Optional[DomainConfig] = None) -> None:
        self.register(domain, config)

    def unregister(self, domain: str) -> List[QueuedRequest[S]]:
        removed = self._domains.pop(normalize_domain(domain), None)
        if removed is None:
            return []
        logger.info("removed domain %s with %d queued requests", removed.name, len(removed.queue))
        self._rebalance()
        return removed.queue.drain()

    def disallow(self, domain: str) -> List[QueuedRequest[S]]:
        return self.unregister(domain)

    def _resolve(self, host: str) -> Optional[Domain[S]]:
        return self._domains.get(host)

    def share(self) -> int:
        """The concurrency cap given to each domain without an explicit one."""
        shared = [d for d in self._domains.values() if d.config.max_requests is None]
        if not shared:
            return self.max_concurrent_requests
        return max(1, self.max_concurrent_requests // len(shared))

    def _rebalance(self) -> None:
        share = self.share()
        for d in self._domains.values():
            cap = d.config.max_requests if d.config.max_requests is not None else share
            if cap != d.cap:
                logger.debug("concurrency cap for %s: %d -> %d", d.name, d.cap, cap)
                d.cap = max(1, cap)


class BlockList(DomainRegistry[S]):
    """Every host is crawled except the blocked ones.

    Each host gets its own queue and a copy of the shared configuration,
    created on first use and dropped again once the host is idle, so pacing
    and the per-domain cap apply per host. Changing one host through
    lookup_mut() leaves the others alone; use set_delay() to change all of
    them."""

    def __init__(
        self,
        config: Optional[DomainConfig] = None,
        blocked: Iterable[str] = (),
        max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(max_concurrent_requests, clock)
        self.config = config or DomainConfig()
        self.blocked = {normalize_domain(b) for b in blocked}

    def register(self, domain: str, config: Optional[DomainConfig] = None) -> List[QueuedRequest[S]]:
        """Block ``domain``. Requests already queued for it are returned."""
        name = normalize_domain(domain)
        self.blocked.add(name)
        logger.info("blocked domain %s", name)
        removed = self._domains.pop(name, None)
        return removed.queue.drain() if removed else []

    def block(self, domain: str) -> List[QueuedRequest[S]]:
        return self.register(domain)

    def unregister(self, domain: str) -> List[QueuedRequest[S]]:
        self.blocked.discard(normalize_domain(domain))
        return []

    def unblock(self, domain: str) -> None:
        self.unregister(domain)

    def is_blocked(self, domain: str) -> bool:
        return normalize_domain(domain) in self.blocked

    def set_delay(self, delay: Optional[RequestDelay]) -> None:
        """Change pacing for every host, present and future."""
        self.config.delay = delay
        for d in self._domains.values():
            d.config.delay = delay
            if delay is None:
                d.queue.remove_delay()
            else:
                d.queue.set_delay(delay)

    def _cap(self) -> int:
        if self.config.max_requests is not None:
            return max(1, self.config.max_requests)
        return self.max_concurrent_requests

    def _resolve(self, host: str) -> Optional[Domain[S]]:
        if host in self.blocked:
            return None
        domain = self._domains.get(host)
        if domain is None:
            domain = Domain(host, dataclasses.replace(self.config), cap=self._cap(), clock=self._clock)
            self._domains[host] = domain
        return domain

    def prune(self) -> List[str]:
        """Forget hosts with no pending work; they get a fresh queue on their next request."""
        idle = [name for name, d in self._domains.items() if d.is_idle()]
        for name in idle:
            del self._domains[name]
        return idle
