from __future__ import annotations

from typing import Any, Optional

import requests
from curl_cffi import requests as curl_requests

DEFAULT_TIMEOUT = 20


def default_client() -> requests.Session:
    """A fresh requests session, used when the caller does not supply a client."""
    return requests.Session()


def impersonating_client(impersonate: str = "chrome120") -> Any:
    """A curl_cffi session that presents a browser TLS fingerprint.

    Useful for hosts that reject plain python clients. It exposes the same
    request() call as a requests session, so it can be passed as the
    crawler's client."""
    return curl_requests.Session(impersonate=impersonate)


def send(client: Any, prepared: requests.PreparedRequest, timeout: Optional[float] = DEFAULT_TIMEOUT) -> Any:
    """Perform one prepared request on the shared client handle.

    Any exception from the client propagates to the caller."""
    return client.request(
        method=prepared.method or "GET",
        url=prepared.url,
        headers=dict(prepared.headers or {}),
        data=prepared.body,
        timeout=timeout,
    )


def get(client: Any, url: str, timeout: Optional[float] = DEFAULT_TIMEOUT) -> Any:
    prepared = requests.Request("GET", url).prepare()
    return send(client, prepared, timeout=timeout)
