"""
HTTP Fetcher Module
===================

Provides bounded-timeout HTTP fetching for platform adapters and the
asset resolver, with per-host rate limiting and content hashing.

Non-2xx responses are returned to the caller (adapters treat them as
"no data"); connection errors and timeouts propagate so the item is
failed and retried by the state machine.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from catalog_pipeline.config import DEFAULT_USER_AGENT, RateLimitConfig

logger = logging.getLogger(__name__)

DEFAULT_ACCEPT = "text/html,application/xml,application/json;q=0.9,*/*;q=0.8"

# Hosts whose token buckets are kept; the least recently used is evicted
MAX_TRACKED_HOSTS = 256


@dataclass
class FetchResult:
    """Result of fetching a URL."""

    url: str
    status_code: int
    content: bytes
    final_url: str
    content_type: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Check if the response was a 2xx."""
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        """Body decoded as UTF-8 (invalid bytes replaced)."""
        return self.content.decode("utf-8", errors="replace")


class TokenBucket:
    """
    Token bucket rate limiter for per-host rate limiting.

    Allows bursting up to burst_limit requests, then enforces
    the steady-state rate of requests_per_second.
    """

    def __init__(self, requests_per_second: float, burst_limit: int) -> None:
        self.requests_per_second = requests_per_second
        self.burst_limit = burst_limit
        self.tokens = float(burst_limit)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.last_update = now

            self.tokens = min(
                self.burst_limit, self.tokens + elapsed * self.requests_per_second
            )

            if self.tokens < 1.0:
                wait_time = (1.0 - self.tokens) / self.requests_per_second
                await asyncio.sleep(wait_time)
                self.tokens = 0.0
            else:
                self.tokens -= 1.0


class Fetcher:
    """
    Async HTTP fetcher shared by adapters.

    Features:
    - Conservative request timeout (single-digit seconds by default)
    - Per-host token bucket
    - Redirect following and a fixed crawler user agent
    - One pooled HTTP client per event loop, closed with aclose()
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 8.0,
        rate_limit: RateLimitConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.rate_limit = rate_limit or RateLimitConfig()
        self._transport = transport
        self._rate_limiters: OrderedDict[str, TokenBucket] = OrderedDict()
        self._client: httpx.AsyncClient | None = None
        self._client_loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def from_config(cls, transport: httpx.AsyncBaseTransport | None = None) -> Fetcher:
        """Build a fetcher from the default pipeline registry."""
        from catalog_pipeline.config import get_default_registry

        global_config = get_default_registry().global_config
        return cls(
            user_agent=global_config.user_agent,
            timeout=global_config.request_timeout,
            rate_limit=global_config.rate_limit,
            transport=transport,
        )

    def _get_rate_limiter(self, url: str) -> TokenBucket:
        host = urlparse(url).netloc
        limiter = self._rate_limiters.get(host)
        if limiter is None:
            limiter = TokenBucket(
                requests_per_second=self.rate_limit.requests_per_second,
                burst_limit=self.rate_limit.burst_limit,
            )
            self._rate_limiters[host] = limiter
            while len(self._rate_limiters) > MAX_TRACKED_HOSTS:
                self._rate_limiters.popitem(last=False)
        else:
            self._rate_limiters.move_to_end(host)
        return limiter

    def _get_client(self) -> httpx.AsyncClient:
        loop = asyncio.get_running_loop()
        if self._client is None or self._client.is_closed or self._client_loop is not loop:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": self.user_agent},
            )
            self._client_loop = loop
        return self._client

    async def aclose(self) -> None:
        """Close the pooled HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
        self._client_loop = None

    @staticmethod
    def compute_hash(content: bytes) -> str:
        """
        Compute SHA-256 hash of content.

        Args:
            content: Raw bytes to hash

        Returns:
            Hex-encoded SHA-256 hash
        """
        return hashlib.sha256(content).hexdigest()

    async def fetch(self, url: str, accept: str = DEFAULT_ACCEPT) -> FetchResult:
        """
        Fetch a URL.

        Args:
            url: URL to fetch
            accept: Accept header value

        Returns:
            FetchResult for any HTTP status

        Raises:
            httpx.HTTPError: On connection failures and timeouts
        """
        await self._get_rate_limiter(url).acquire()
        response = await self._get_client().get(url, headers={"Accept": accept})
        logger.debug(f"GET {url} -> {response.status_code}")
        return self._to_result(url, response)

    async def fetch_text(self, url: str) -> FetchResult:
        """Fetch a page, feed or JSON document."""
        return await self.fetch(url)

    async def post_json(self, url: str, payload: dict[str, Any]) -> FetchResult:
        """
        POST a JSON body (GraphQL endpoints).

        Raises:
            httpx.HTTPError: On connection failures and timeouts
        """
        await self._get_rate_limiter(url).acquire()
        response = await self._get_client().post(
            url, json=payload, headers={"Accept": "application/json"}
        )
        logger.debug(f"POST {url} -> {response.status_code}")
        return self._to_result(url, response)

    @staticmethod
    def _to_result(url: str, response: httpx.Response) -> FetchResult:
        return FetchResult(
            url=url,
            status_code=response.status_code,
            content=response.content,
            final_url=str(response.url),
            content_type=response.headers.get("content-type", "").split(";")[0].strip(),
            headers=dict(response.headers),
        )
