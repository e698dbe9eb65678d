from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from .delay import RequestDelay
from .domain import MAX_CONCURRENT_REQUESTS, normalize_domain
from .robots import RobotsFailurePolicy
from .transport import DEFAULT_TIMEOUT


@dataclass
class CrawlerConfig:
    """Construction-time settings for a crawler.

    With no allowed domains the crawler runs in block-list mode (everything
    but ``disallowed_domains``); otherwise only the allowed domains are
    crawled and the global concurrency cap is split between them.

    Builder methods return ``self`` so settings can be chained::

        config = (
            CrawlerConfig()
            .allow_domain_with_delay("example.com", RequestDelay.fixed(1.0))
            .set_max_depth(2)
            .respect_robots()
        )
    """

    max_depth: Optional[int] = None
    max_requests: Optional[int] = None
    skip_non_successful_response: bool = True
    allowed_domains: Dict[str, Optional[RequestDelay]] = field(default_factory=dict)
    disallowed_domains: Set[str] = field(default_factory=set)
    respect_robots_txt: bool = False
    client: Optional[Any] = None
    request_timeout: Optional[float] = DEFAULT_TIMEOUT
    user_agent: str = "*"
    robots_failure_policy: RobotsFailurePolicy = RobotsFailurePolicy.ALLOW
    robots_ttl: Optional[float] = None

    @property
    def max_concurrent_requests(self) -> int:
        return self.max_requests if self.max_requests is not None else MAX_CONCURRENT_REQUESTS

    @property
    def is_allow_list(self) -> bool:
        return bool(self.allowed_domains)

    def validate(self) -> None:
        if self.max_requests is not None and self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        both = set(self.allowed_domains) & self.disallowed_domains
        if both:
            raise ValueError(f"domains both allowed and disallowed: {sorted(both)}")

    def set_max_depth(self, max_depth: int) -> "CrawlerConfig":
        self.max_depth = max_depth
        return self

    def max_concurrent(self, max_requests: int) -> "CrawlerConfig":
        self.max_requests = max_requests
        return self

    def respect_robots(self, policy: Optional[RobotsFailurePolicy] = None) -> "CrawlerConfig":
        self.respect_robots_txt = True
        if policy is not None:
            self.robots_failure_policy = policy
        return self

    def scrape_non_success_response(self) -> "CrawlerConfig":
        self.skip_non_successful_response = False
        return self

    def set_client(self, client: Any) -> "CrawlerConfig":
        self.client = client
        return self

    def disallow_domain(self, domain: str) -> "CrawlerConfig":
        self.disallowed_domains.add(normalize_domain(domain))
        return self

    def disallow_domains(self, domains: Iterable[str]) -> "CrawlerConfig":
        for domain in domains:
            self.disallow_domain(domain)
        return self

    def allow_domain(self, domain: str) -> "CrawlerConfig":
        self.allowed_domains[normalize_domain(domain)] = None
        return self

    def allow_domain_with_delay(self, domain: str, delay: RequestDelay) -> "CrawlerConfig":
        self.allowed_domains[normalize_domain(domain)] = delay
        return self

    def allow_domains(self, domains: Iterable[str]) -> "CrawlerConfig":
        for domain in domains:
            self.allow_domain(domain)
        return self

    def allow_domains_with_delay(self, domains: Iterable[Tuple[str, RequestDelay]]) -> "CrawlerConfig":
        for domain, delay in domains:
            self.allow_domain_with_delay(domain, delay)
        return self
