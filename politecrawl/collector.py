from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar, Union

from .config import CrawlerConfig
from .crawler import Crawler
from .errors import CrawlError, ScrapeError
from .models import CrawlResult, Response

logger = logging.getLogger(__name__)

S = TypeVar("S")
O = TypeVar("O")


class Scraper(ABC, Generic[S, O]):
    """Caller-supplied handler that turns a response into output and further visits.

    ``scrape`` may call ``crawler.visit_with_state(url, state)`` any number of
    times and returns at most one output (None for no output). Raising is
    allowed: the exception is reported as a ScrapeError carrying the state.
    """

    @abstractmethod
    def scrape(self, response: Response[S], crawler: Crawler[S]) -> Optional[O]:
        ...


class FunctionScraper(Scraper[S, O]):
    """Adapts a plain ``fn(response, crawler)`` callable to the Scraper interface."""

    def __init__(self, fn: Callable[[Response[S], Crawler[S]], Optional[O]]) -> None:
        self._fn = fn

    def scrape(self, response: Response[S], crawler: Crawler[S]) -> Optional[O]:
        return self._fn(response, crawler)


class Collector(Generic[S, O]):
    """The output sequence of a crawl.

    Iterating yields one CrawlResult per scraper output or error until the
    crawl drains; it cannot be restarted afterwards. Seed it through
    ``collector.crawler.visit(...)`` before iterating.

    Example::

        collector = Collector(MyScraper(), CrawlerConfig().allow_domain("example.com"))
        collector.crawler.visit_with_state("https://example.com/", "index")
        for result in collector:
            if result.success:
                print(result.output)
    """

    def __init__(
        self,
        scraper: Union[Scraper[S, O], Callable[[Response[S], Crawler[S]], Optional[O]]],
        config: Optional[CrawlerConfig] = None,
        crawler: Optional[Crawler[S]] = None,
    ) -> None:
        if not isinstance(scraper, Scraper):
            scraper = FunctionScraper(scraper)
        self._scraper = scraper
        self._crawler: Crawler[S] = crawler if crawler is not None else Crawler(config)
        self._done = False

    @property
    def crawler(self) -> Crawler[S]:
        return self._crawler

    @property
    def scraper(self) -> Scraper[S, O]:
        return self._scraper

    def __iter__(self) -> Iterator[CrawlResult]:
        return self

    def __next__(self) -> CrawlResult:
        if self._done:
            raise StopIteration
        while True:
            event = self._crawler.next_event()
            if event is None:
                self._done = True
                raise StopIteration
            if isinstance(event, CrawlError):
                return CrawlResult(error=event)

            with self._crawler.delivering(event):
                try:
                    output = self._scraper.scrape(event, self._crawler)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("scraper failed on %s: %s", event.url, type(exc).__name__)
                    return CrawlResult(error=ScrapeError(exc, event.url, event.state, event.depth))
            if output is not None:
                return CrawlResult(output=output)

    def close(self) -> None:
        """Stop the crawl early, releasing queues and in-flight fetches."""
        self._done = True
        self._crawler.close()

    def __enter__(self) -> "Collector[S, O]":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
