"""The crawl driver.

A Crawler owns the domain registry, the robots gate and a thread pool.
Its consumer calls next_event() repeatedly; each call dispatches whatever
the pacing deadlines and concurrency caps allow, waits for the earliest of
a fetch completion or a pacing deadline, and returns one Response or one
CrawlError. None means the crawl has drained.

Only the consumer thread touches the registry and the queues. Worker threads
run the robots check and the HTTP request for one request each.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Generic, Iterator, List, Optional, TypeVar, Union
from urllib.parse import urlsplit

import requests

from . import transport
from .config import CrawlerConfig
from .domain import AllowList, BlockList, Domain, DomainConfig, DomainRegistry
from .errors import (
    CrawlError,
    DisallowedRequest,
    DisallowReason,
    NoSuccessResponse,
    ReachedMaxDepth,
    TransportError,
)
from .metrics import CrawlMetrics
from .models import QueuedRequest, Response
from .robots import RobotsDecision, RobotsFailurePolicy, RobotsGate

logger = logging.getLogger(__name__)

S = TypeVar("S")

Event = Union[Response, CrawlError]

# key used in the delivery order map for custom jobs, which have no domain
_JOBS = ""


class CrawlState(Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING = "awaiting"
    DELIVERING = "delivering"
    DRAINED = "drained"


@dataclass
class _Flight:
    key: str
    domain: Optional[Domain]
    url: str
    released: bool = False


@dataclass
class _Job:
    fn: Callable[[Any], Any]
    state: Any
    depth: int


def build_registry(config: CrawlerConfig, clock: Callable[[], float] = time.monotonic) -> DomainRegistry:
    """Create the allow-list or block-list registry described by ``config``."""
    if config.is_allow_list:
        registry: DomainRegistry = AllowList(config.max_concurrent_requests, clock=clock)
        for name, delay in config.allowed_domains.items():
            registry.register(
                name,
                DomainConfig(
                    max_depth=config.max_depth,
                    delay=delay,
                    respect_robots_txt=config.respect_robots_txt,
                    skip_non_successful_response=config.skip_non_successful_response,
                ),
            )
        return registry
    return BlockList(
        DomainConfig(
            max_depth=config.max_depth,
            respect_robots_txt=config.respect_robots_txt,
            skip_non_successful_response=config.skip_non_successful_response,
        ),
        blocked=config.disallowed_domains,
        max_concurrent_requests=config.max_concurrent_requests,
        clock=clock,
    )


class Crawler(Generic[S]):
    """Schedules requests across domains and produces one event at a time."""

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = config or CrawlerConfig()
        config.validate()
        self._config = config
        self._clock = clock
        self._client = config.client if config.client is not None else transport.default_client()
        self._registry: DomainRegistry[S] = build_registry(config, clock)
        self._robots = RobotsGate(
            self._client,
            user_agent=config.user_agent,
            timeout=config.request_timeout,
            ttl=config.robots_ttl,
        )
        self._metrics = CrawlMetrics()
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_concurrent_requests,
            thread_name_prefix="politecrawl",
        )

        self._events: Deque[Event] = deque()
        self._jobs: Deque[_Job] = deque()
        self._flights: Dict[Future, _Flight] = {}
        self._order: Dict[str, Deque[Future]] = {}
        self._active = 0
        self._cursor = 0
        self._parent_depth: Optional[int] = None
        self._state = CrawlState.IDLE
        self._closed = False

    # -- accessors -------------------------------------------------------

    @property
    def max_depth(self) -> Optional[int]:
        return self._config.max_depth

    @property
    def respect_robots_txt(self) -> bool:
        return self._config.respect_robots_txt

    @property
    def skip_non_successful_response(self) -> bool:
        return self._config.skip_non_successful_response

    @property
    def registry(self) -> DomainRegistry[S]:
        return self._registry

    @property
    def robots(self) -> RobotsGate:
        return self._robots

    @property
    def metrics(self) -> CrawlMetrics:
        return self._metrics

    @property
    def client(self) -> Any:
        return self._client

    @property
    def state(self) -> CrawlState:
        return self._state

    @property
    def in_flight(self) -> int:
        return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    # -- visiting --------------------------------------------------------

    def visit(self, url: str) -> None:
        self.visit_with_state(url, None)

    def visit_with_state(self, url: str, state: Optional[S]) -> None:
        """Queue a GET for ``url``. Called from a scraper, the depth is the parent's plus one."""
        self.request_with_state(requests.Request("GET", url), state)

    def request(self, request: Union[requests.Request, requests.PreparedRequest]) -> None:
        self.request_with_state(request, None)

    def request_with_state(
        self,
        request: Union[requests.Request, requests.PreparedRequest],
        state: Optional[S],
    ) -> None:
        self._ensure_open()
        depth = self._child_depth()
        err = self._registry.add_request(request, state, depth)
        if err is not None:
            logger.debug("rejected request at depth %d: %s", depth, err)
            self._events.append(err)

    def crawl(self, fn: Callable[[Any], Any], state: Optional[S] = None) -> None:
        """Run a custom fetch ``fn(client) -> response`` outside the domain queues.

        It still counts against the global concurrency cap, and its response
        is delivered like any other."""
        self._ensure_open()
        self._jobs.append(_Job(fn, state, self._child_depth()))

    @contextmanager
    def delivering(self, response: Response[S]) -> Iterator[Response[S]]:
        """Mark ``response`` as being handed to the scraper; visits made meanwhile are its children."""
        self._state = CrawlState.DELIVERING
        self._parent_depth = response.depth
        try:
            yield response
        finally:
            self._parent_depth = None
            if self._state is CrawlState.DELIVERING:
                self._state = CrawlState.IDLE

    # -- driving ---------------------------------------------------------

    def next_event(self) -> Optional[Event]:
        """Return the next Response or CrawlError, or None once everything is drained."""
        while not self._closed:
            self._harvest()
            if self._events:
                self._state = CrawlState.IDLE
                return self._events.popleft()

            self._dispatch()
            self._harvest()
            if self._events:
                self._state = CrawlState.IDLE
                return self._events.popleft()

            if not self._flights and not self._jobs and self._registry.is_empty():
                if self._state is not CrawlState.DRAINED:
                    logger.info("crawl drained")
                self._state = CrawlState.DRAINED
                return None

            self._await()
        return None

    def close(self) -> None:
        """Cancel everything: queued requests, pending jobs and in-flight fetches."""
        if self._closed:
            return
        self._closed = True
        for fut in self._flights:
            fut.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
        dropped = len(self._registry.drain())
        self._jobs.clear()
        self._events.clear()
        self._flights.clear()
        self._order.clear()
        self._active = 0
        self._state = CrawlState.DRAINED
        logger.info("crawler closed, %d queued requests dropped", dropped)

    def __enter__(self) -> "Crawler[S]":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- internals -------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("crawler is closed")
        if self._state is CrawlState.DRAINED:
            raise RuntimeError("crawl has already drained")

    def _child_depth(self) -> int:
        return 0 if self._parent_depth is None else self._parent_depth + 1

    def _has_global_capacity(self) -> bool:
        return self._active < self._registry.max_concurrent_requests

    def _dispatch(self) -> None:
        self._state = CrawlState.DISPATCHING
        while self._jobs and self._has_global_capacity():
            job = self._jobs.popleft()
            fut = self._executor.submit(self._run_job, job)
            self._track(fut, _Flight(_JOBS, None, getattr(job.fn, "__name__", "job")))

        domains = self._registry.domains()
        if not domains:
            return
        self._cursor %= len(domains)
        progressed = True
        while progressed and self._has_global_capacity():
            progressed = False
            for i in range(len(domains)):
                idx = (self._cursor + i) % len(domains)
                domain = domains[idx]
                if not domain.has_capacity():
                    continue
                queued = domain.queue.poll_next()
                if queued is None:
                    continue
                self._cursor = (idx + 1) % len(domains)
                progressed = True
                if domain.exceeds_depth(queued.depth):
                    self._reject_in_order(domain, queued.url, ReachedMaxDepth(queued.url, queued.depth, queued.state))
                else:
                    self._submit(domain, queued)
                break

    def _submit(self, domain: Domain[S], queued: QueuedRequest[S]) -> None:
        logger.debug("dispatch %s depth=%d (%s in flight)", queued.url, queued.depth, domain.in_flight + 1)
        domain.in_flight += 1
        fut = self._executor.submit(
            self._fetch,
            queued,
            domain.config.respect_robots_txt,
            domain.config.skip_non_successful_response,
        )
        self._track(fut, _Flight(domain.name, domain, queued.url))

    def _reject_in_order(self, domain: Domain[S], url: str, err: CrawlError) -> None:
        # queued behind the domain's in-flight fetches without taking a slot
        fut: Future = Future()
        fut.set_result([err])
        self._flights[fut] = _Flight(domain.name, domain, url, released=True)
        self._order.setdefault(domain.name, deque()).append(fut)

    def _track(self, fut: Future, flight: _Flight) -> None:
        self._active += 1
        self._flights[fut] = flight
        self._order.setdefault(flight.key, deque()).append(fut)

    def _release(self, flight: _Flight) -> None:
        if flight.released:
            return
        flight.released = True
        self._active -= 1
        if flight.domain is not None:
            flight.domain.in_flight -= 1

    def _harvest(self) -> None:
        """Free capacity for finished fetches, then deliver them in per-domain dispatch order."""
        for fut, flight in self._flights.items():
            if fut.done():
                self._release(flight)

        for key in list(self._order):
            futures = self._order[key]
            while futures and futures[0].done():
                fut = futures.popleft()
                flight = self._flights.pop(fut)
                self._release(flight)
                self._events.extend(self._outcome(fut, flight))
            if not futures:
                del self._order[key]

        pruned = self._registry.prune()
        if pruned:
            logger.debug("dropped %d idle hosts", len(pruned))

    def _outcome(self, fut: Future, flight: _Flight) -> List[Event]:
        if fut.cancelled():
            return []
        exc = fut.exception()
        if exc is not None:
            # workers report their own failures; this is a bug in the worker
            logger.error("worker for %s crashed: %s", flight.url, exc)
            return [TransportError(exc, flight.url)]
        return fut.result()

    def _next_wakeup(self) -> Optional[float]:
        if not self._has_global_capacity():
            return None
        waits = [
            d.queue.ready_in()
            for d in self._registry.domains()
            if not d.queue.is_empty() and d.has_capacity()
        ]
        return min(waits) if waits else None

    def _await(self) -> None:
        timeout = self._next_wakeup()
        pending = [f for f in self._flights if not f.done()]
        if pending:
            self._state = CrawlState.AWAITING
            wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
        else:
            self._state = CrawlState.IDLE
            if timeout is None:
                # nothing in flight yet nothing dispatchable; a queued item
                # must be behind its pacing deadline
                waits = [d.queue.ready_in() for d in self._registry.domains() if not d.queue.is_empty()]
                timeout = min(waits) if waits else 0.0
            logger.debug("pacing: sleeping %.3fs", timeout)
            time.sleep(timeout)

    def _fetch(self, queued: QueuedRequest[S], respect_robots: bool, skip_non_success: bool) -> List[Event]:
        events: List[Event] = []
        host = urlsplit(queued.url).netloc.lower()
        if respect_robots:
            decision = self._robots.check(queued.url)
            if decision is RobotsDecision.UNKNOWN:
                failure = self._robots.take_failure(host)
                if failure is not None:
                    events.append(failure)
                if self._config.robots_failure_policy is RobotsFailurePolicy.DENY:
                    events.append(DisallowedRequest(DisallowReason.ROBOTS_TXT, queued.url, queued.state))
                    return events
            elif decision is RobotsDecision.DISALLOWED:
                self._metrics.record(host, error_type="DisallowedRequest")
                events.append(DisallowedRequest(DisallowReason.ROBOTS_TXT, queued.url, queued.state))
                return events

        start = time.time()
        try:
            raw = transport.send(self._client, queued.request, timeout=self._config.request_timeout)
        except Exception as exc:  # noqa: BLE001
            latency_ms = int((time.time() - start) * 1000)
            logger.warning("request to %s failed: %s", queued.url, type(exc).__name__)
            self._metrics.record(host, error_type=type(exc).__name__, latency_ms=latency_ms)
            events.append(TransportError(exc, queued.url, queued.state, queued.depth))
            return events

        latency_ms = int((time.time() - start) * 1000)
        response = Response.from_transport(raw, queued.url, queued.state, queued.depth)
        events.append(self._check_status(response, host, latency_ms, skip_non_success))
        return events

    def _run_job(self, job: _Job) -> List[Event]:
        name = getattr(job.fn, "__name__", "job")
        start = time.time()
        try:
            raw = job.fn(self._client)
        except Exception as exc:  # noqa: BLE001
            logger.warning("custom crawl job %s failed: %s", name, type(exc).__name__)
            self._metrics.record(_JOBS, error_type=type(exc).__name__)
            return [TransportError(exc, name, job.state, job.depth)]
        latency_ms = int((time.time() - start) * 1000)
        url = str(getattr(raw, "url", None) or name)
        response = Response.from_transport(raw, url, job.state, job.depth)
        host = urlsplit(url).netloc.lower()
        return [self._check_status(response, host, latency_ms, self._config.skip_non_successful_response)]

    def _check_status(self, response: Response[S], host: str, latency_ms: int, skip_non_success: bool) -> Event:
        if not response.ok and skip_non_success:
            self._metrics.record(
                host,
                status_code=response.status_code,
                error_type=f"HTTP_{response.status_code}",
                latency_ms=latency_ms,
            )
            return NoSuccessResponse(response.status_code, response.url, response.state, response)
        self._metrics.record(host, status_code=response.status_code, latency_ms=latency_ms)
        return response
