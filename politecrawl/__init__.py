"""Polite, state-driven crawling engine.

Seeds and a scraper callback go in; one result per fetched page (or per
rejected request) comes out of a pull-based Collector, while every domain is
paced, capped and, if asked, kept within its robots.txt rules.

Key modules:
    delay           -- RequestDelay pacing policy (fixed or random)
    request_queue   -- RequestQueue, the delay-gated per-domain FIFO
    domain          -- DomainConfig, AllowList and BlockList registries
    robots          -- RobotsGate for robots.txt compliance
    crawler         -- Crawler, the scheduling state machine
    collector       -- Scraper callback interface and the Collector sequence
    config          -- CrawlerConfig construction settings
    errors          -- CrawlError taxonomy
    models          -- QueuedRequest, Response, CrawlResult
    metrics         -- CrawlMetrics for runtime statistics
    transport       -- HTTP client handles (requests, curl_cffi)
"""
from .collector import Collector, FunctionScraper, Scraper
from .config import CrawlerConfig
from .crawler import Crawler, CrawlState
from .delay import RequestDelay
from .domain import AllowList, BlockList, DomainConfig
from .errors import (
    CrawlError,
    DisallowedRequest,
    DisallowReason,
    FailedToBuildRequest,
    InvalidRequest,
    NoSuccessResponse,
    ReachedMaxDepth,
    RobotsTxtError,
    ScrapeError,
    TransportError,
)
from .models import CrawlResult, QueuedRequest, Response
from .robots import RobotsDecision, RobotsFailurePolicy, RobotsGate

__all__ = [
    "AllowList",
    "BlockList",
    "Collector",
    "CrawlError",
    "CrawlResult",
    "CrawlState",
    "Crawler",
    "CrawlerConfig",
    "DisallowReason",
    "DisallowedRequest",
    "DomainConfig",
    "FailedToBuildRequest",
    "FunctionScraper",
    "InvalidRequest",
    "NoSuccessResponse",
    "QueuedRequest",
    "ReachedMaxDepth",
    "RequestDelay",
    "Response",
    "RobotsDecision",
    "RobotsFailurePolicy",
    "RobotsGate",
    "RobotsTxtError",
    "ScrapeError",
    "Scraper",
    "TransportError",
]
