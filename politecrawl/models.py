from __future__ import annotations

import json as _json
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

import requests

S = TypeVar("S")


@dataclass
class QueuedRequest(Generic[S]):
    """A prepared request waiting in a domain queue, with the caller state that produced it."""

    request: requests.PreparedRequest
    state: Optional[S] = None
    depth: int = 0

    @property
    def url(self) -> str:
        return self.request.url or ""


@dataclass
class Response(Generic[S]):
    """A fetched page handed to the scraper, paired with the state of its request."""

    request_url: str
    url: str
    status_code: int
    headers: Dict[str, str]
    content: bytes
    state: Optional[S] = None
    depth: int = 0
    encoding: Optional[str] = None
    raw: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def from_transport(
        cls,
        raw: Any,
        request_url: str,
        state: Optional[S] = None,
        depth: int = 0,
    ) -> "Response[S]":
        headers = getattr(raw, "headers", None) or {}
        return cls(
            request_url=request_url,
            url=str(getattr(raw, "url", None) or request_url),
            status_code=int(getattr(raw, "status_code", 0) or 0),
            headers=dict(headers),
            content=getattr(raw, "content", b"") or b"",
            state=state,
            depth=depth,
            encoding=getattr(raw, "encoding", None),
            raw=raw,
        )

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    def json(self) -> Any:
        return _json.loads(self.text)


@dataclass(frozen=True)
class CrawlResult:
    """One item of the output sequence: either a scraper output or an error."""

    output: Optional[Any] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def state(self) -> Optional[Any]:
        return getattr(self.error, "state", None)

    def unwrap(self) -> Any:
        """Return the output, raising the carried error for a failed result."""
        if self.error is not None:
            raise self.error
        return self.output
