"""Errors delivered on the output sequence.

Every error keeps the caller state of the request that failed, so a scraper
working through a multi-step extraction can tell where it was. None of them
stop the crawl; each one is a single item of the sequence.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class DisallowReason(str, Enum):
    ROBOTS_TXT = "robots_txt"
    USER_CONFIG = "user_config"

    def __str__(self) -> str:
        if self is DisallowReason.ROBOTS_TXT:
            return "URL blocked by robots.txt"
        return "URL blocked by user config"


class CrawlError(Exception):
    """Base class for every error the crawler reports."""

    def __init__(self, message: str, state: Optional[Any] = None) -> None:
        super().__init__(message)
        self.state = state

    def into_state(self) -> Optional[Any]:
        """Detach and return the carried state."""
        state, self.state = self.state, None
        return state

    @property
    def error_type(self) -> str:
        return type(self).__name__


class NoSuccessResponse(CrawlError):
    def __init__(self, status: int, url: str, state: Optional[Any] = None, response: Any = None) -> None:
        super().__init__(
            f"Received response with non 2xx status {status} for {url} carrying state: {state!r}",
            state,
        )
        self.status = status
        self.url = url
        self.response = response


class FailedToBuildRequest(CrawlError):
    def __init__(self, cause: BaseException, state: Optional[Any] = None, depth: int = 0) -> None:
        super().__init__(f"Failed to construct a request: {cause} while carrying state: {state!r}", state)
        self.cause = cause
        self.depth = depth


class InvalidRequest(CrawlError):
    def __init__(self, url: Optional[str] = None, state: Optional[Any] = None) -> None:
        super().__init__(f"Failed to process invalid request {url!r} while carrying state: {state!r}", state)
        self.url = url


class ReachedMaxDepth(CrawlError):
    def __init__(self, url: str, depth: int, state: Optional[Any] = None) -> None:
        super().__init__(f"Reached max depth at {depth} for {url} while carrying state: {state!r}", state)
        self.url = url
        self.depth = depth


class RobotsTxtError(CrawlError):
    """robots.txt for a host could not be fetched. Host level, so no state."""

    def __init__(self, host: str, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to get robots.txt for {host}{detail}")
        self.host = host
        self.cause = cause


class DisallowedRequest(CrawlError):
    def __init__(self, reason: DisallowReason, url: str, state: Optional[Any] = None) -> None:
        super().__init__(
            f"Rejected a request to {url}, because its url is disallowed due to {reason!s}, "
            f"while carrying state: {state!r}",
            state,
        )
        self.reason = reason
        self.url = url


class TransportError(CrawlError):
    """The HTTP client raised while fetching."""

    def __init__(self, cause: BaseException, url: str, state: Optional[Any] = None, depth: int = 0) -> None:
        super().__init__(f"Request to {url} failed: {type(cause).__name__}: {cause} while carrying state: {state!r}", state)
        self.cause = cause
        self.url = url
        self.depth = depth


class ScrapeError(CrawlError):
    """The scraper raised while handling a response."""

    def __init__(self, cause: BaseException, url: str, state: Optional[Any] = None, depth: int = 0) -> None:
        super().__init__(f"Scraper failed on {url}: {type(cause).__name__}: {cause} while carrying state: {state!r}", state)
        self.cause = cause
        self.url = url
        self.depth = depth
