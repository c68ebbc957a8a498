"""
Async HTTP client with per-source rate limiting and retries.

Built on httpx with:
- Explicit RateLimiter values (owned by the orchestrator, one per source)
- Exponential backoff retry on transport errors and 5xx (never 4xx)
- HEAD-based link liveness checks
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


USER_AGENT = "GrantsIngest/0.1 (Grant Discovery Bot)"
LINK_CHECK_USER_AGENT = "GrantsIngest/0.1 (Link Validator)"

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


@dataclass
class RateLimiter:
    """
    Per-source rate limiter.

    Enforces a minimum delay between request starts and caps the number
    of requests in flight.
    """
    min_interval: float = 1.0
    max_concurrent: int = 1
    last_request: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    semaphore: Optional[asyncio.Semaphore] = None

    def __post_init__(self) -> None:
        if self.semaphore is None:
            self.semaphore = asyncio.Semaphore(max(1, self.max_concurrent))

    @classmethod
    def for_source(cls, request_delay_ms: int, max_concurrent: int) -> "RateLimiter":
        return cls(min_interval=request_delay_ms / 1000.0, max_concurrent=max_concurrent)

    async def acquire(self) -> None:
        """Wait for rate limit slot."""
        async with self.lock:
            now = time.monotonic()
            elapsed = now - self.last_request

            if self.last_request and elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)

            self.last_request = time.monotonic()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one concurrency slot and respect the inter-request delay."""
        async with self.semaphore:
            await self.acquire()
            yield


@dataclass
class UrlCheck:
    """Result of a link liveness check."""
    url: str
    is_valid: bool
    status: Optional[int] = None
    redirect_url: Optional[str] = None
    error: Optional[str] = None


def is_retryable(exc: BaseException) -> bool:
    """Transport errors, timeouts and 5xx are retried; 4xx never."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


class HttpClient:
    """
    Async HTTP client with rate limiting and retries.

    Usage:
        async with HttpClient() as client:
            response = await client.get(url, limiter=limiter)
            html = response.text
    """

    def __init__(
        self,
        timeout: float = 30.0,
        head_timeout: float = 10.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        retry_max_wait: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            timeout: Content request timeout in seconds
            head_timeout: Timeout for HEAD liveness checks
            max_retries: Total attempts for retryable failures
            retry_backoff: Exponential backoff multiplier (seconds)
            retry_max_wait: Upper bound for a single backoff sleep
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.timeout = timeout
        self.head_timeout = head_timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.retry_max_wait = retry_max_wait
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HttpClient":
        """Enter async context."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
            transport=self.transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "HttpClient":
        """Build from an HttpSettings section."""
        return cls(
            timeout=settings.timeout,
            head_timeout=settings.head_timeout,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
            retry_max_wait=settings.retry_max_wait,
            transport=transport,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_backoff, max=self.retry_max_wait),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )

    async def _do_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute one HTTP request, raising for any non-2xx status."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        response = await self._client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    async def request(
        self,
        method: str,
        url: str,
        limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Rate-limited request with retry.

        Args:
            method: HTTP method
            url: Target URL
            limiter: Per-source rate limiter (None = unthrottled)
            timeout: Per-request timeout override
            **kwargs: Additional httpx arguments

        Returns:
            httpx.Response (2xx)

        Raises:
            httpx.HTTPStatusError: 4xx immediately, 5xx after retries
            httpx.TransportError: after retries
        """
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)

        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(
                        "http_retry",
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                if limiter is not None:
                    async with limiter.slot():
                        return await self._do_request(method, url, **kwargs)
                return await self._do_request(method, url, **kwargs)

        raise RuntimeError("unreachable")  # pragma: no cover

    async def get(self, url: str, limiter: Optional[RateLimiter] = None, **kwargs) -> httpx.Response:
        logger.debug("http_get", url=url)
        return await self.request("GET", url, limiter=limiter, **kwargs)

    async def post_json(
        self,
        url: str,
        payload: dict,
        limiter: Optional[RateLimiter] = None,
        **kwargs,
    ) -> httpx.Response:
        logger.debug("http_post", url=url)
        return await self.request("POST", url, limiter=limiter, json=payload, **kwargs)

    async def verify_url(self, url: str) -> UrlCheck:
        """
        Check a URL with a HEAD request (no retries).

        2xx/3xx count as live, and so does 405 (HEAD not allowed).

        Args:
            url: URL to check

        Returns:
            UrlCheck with status and final redirect target
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        try:
            response = await self._client.head(
                url,
                timeout=httpx.Timeout(self.head_timeout),
                headers={"User-Agent": LINK_CHECK_USER_AGENT},
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("url_check_failed", url=url, error=str(e))
            return UrlCheck(url=url, is_valid=False, error=str(e))

        status = response.status_code
        final_url = str(response.url)
        return UrlCheck(
            url=url,
            is_valid=200 <= status < 400 or status == 405,
            status=status,
            redirect_url=final_url if final_url != url else None,
        )

    async def batch_verify_urls(
        self,
        urls: list[str],
        concurrency: int = 5,
        delay: float = 0.2,
    ) -> dict[str, UrlCheck]:
        """
        Verify URLs in bounded concurrent batches.

        Args:
            urls: URLs to check
            concurrency: Batch size
            delay: Sleep between batches in seconds

        Returns:
            Mapping url -> UrlCheck
        """
        results: dict[str, UrlCheck] = {}
        step = max(1, concurrency)

        for start in range(0, len(urls), step):
            batch = urls[start:start + step]
            checks = await asyncio.gather(*(self.verify_url(u) for u in batch))
            for check in checks:
                results[check.url] = check

            if start + step < len(urls) and delay > 0:
                await asyncio.sleep(delay)

        return results
