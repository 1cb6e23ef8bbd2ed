"""
Network Fetch
=============
Blocking HTTP fetch of remote page assets using requests.
One request at a time; each bounded by a timeout, never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import requests

from . import __version__

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when a remote asset cannot be retrieved."""


@dataclass(frozen=True)
class FetchedResource:
    """Payload and declared content type of a fetched asset."""
    content: bytes
    content_type: str = ""


class Fetcher(Protocol):
    def fetch(self, url: str) -> FetchedResource: ...


class HttpFetcher:
    """Fetches absolute http(s) references with a shared requests session."""

    def __init__(
        self,
        timeout: Optional[float] = 30.0,
        user_agent: str = f"svgbook/{__version__}",
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        # A caller-supplied session keeps its own headers
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = user_agent
        self.session = session

    def fetch(self, url: str) -> FetchedResource:
        """
        Download a URL.

        Raises:
            FetchError: On connection problems or non-2xx responses.
        """
        logger.debug(f"Fetching {url}")
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise FetchError(f"HTTP {status}") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(str(e) or e.__class__.__name__) from e

        return FetchedResource(
            content=resp.content,
            content_type=resp.headers.get("Content-Type", ""),
        )


class OfflineFetcher:
    """Fetcher used when network access is disabled."""

    def fetch(self, url: str) -> FetchedResource:
        raise FetchError("network access disabled")
