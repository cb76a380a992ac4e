"""
HTTP transport for archive mirrors.

Provides the ``Transport`` interface the fetcher consumes and an httpx
implementation with exponential backoff on transient failures
(connection errors, timeouts, 429 and 5xx responses).
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx

from archive_graph.core.errors import FetchError

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


class ExponentialBackoff:
    """Exponential backoff with ±25% jitter between retry attempts."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, max_retries: int = 3):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries

    def calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0, delay + jitter)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


@dataclass
class TransportResponse:
    """Status line, body stream and freshness information of one request."""

    status: int
    chunks: AsyncIterator[bytes]
    last_modified: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def not_modified(self) -> bool:
        return self.status == 304

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@runtime_checkable
class Transport(Protocol):
    """
    Protocol for fetching a URL.

    ``fetch`` is an async context manager so the body can be streamed and the
    connection released when the caller is done with it.
    """

    def fetch(self, url: str, headers: dict[str, str] | None = None):
        """Yield a TransportResponse for ``url`` sent with ``headers``."""
        ...


class HttpxTransport:
    """Transport built on httpx.AsyncClient streaming requests."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        backoff: ExponentialBackoff | None = None,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=60.0),
            follow_redirects=True,
        )
        self.backoff = backoff or ExponentialBackoff(base_delay=1.0, max_delay=60.0, max_retries=3)
        self.requests = 0

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @asynccontextmanager
    async def fetch(self, url: str, headers: dict[str, str] | None = None):
        attempt = 0
        while True:
            self.requests += 1
            request = self.client.build_request("GET", url, headers=headers or {})
            try:
                response = await self.client.send(request, stream=True)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if self.backoff.should_retry(attempt):
                    delay = self.backoff.calculate_delay(attempt)
                    logger.debug(f"Request failed ({type(e).__name__}), retry {attempt + 1} after {delay:.1f}s")
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                raise FetchError(f"Request to {url} failed after {attempt + 1} attempts: {e}", url=url) from e

            if response.status_code in RETRY_STATUSES and self.backoff.should_retry(attempt):
                await response.aclose()
                retry_after = response.headers.get("Retry-After", "")
                delay = float(retry_after) if retry_after.isdigit() else self.backoff.calculate_delay(attempt)
                logger.warning(f"HTTP {response.status_code} from {url}. Waiting {delay:.1f}s...")
                await asyncio.sleep(delay)
                attempt += 1
                continue
            break

        try:
            yield TransportResponse(
                status=response.status_code,
                chunks=self._iter_body(response, url),
                last_modified=response.headers.get("last-modified"),
                headers=dict(response.headers),
            )
        finally:
            await response.aclose()

    @staticmethod
    async def _iter_body(response: httpx.Response, url: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise FetchError(f"Connection lost while reading {url}: {e}", url=url) from e
