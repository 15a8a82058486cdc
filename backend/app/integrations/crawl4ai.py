"""Crawl4AI integration client used to fetch target pages.

Features:
- Async HTTP client using httpx
- Circuit breaker for fault tolerance
- Retry logic with exponential backoff
- Handles timeouts, rate limits (429), auth failures (401/403)
- Plain httpx fetch when no Crawl4AI server is configured
- Returns raw HTML, response headers and an optional base64 screenshot

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with endpoint, target URL, timing
- Include retry attempt number in logs
- Never log the API token
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.config import get_settings
from app.core.logging import crawl4ai_logger, get_logger
from app.integrations.responses import json_body, retry_after_seconds

logger = get_logger(__name__)

CRAWL_ENDPOINT = "/crawl"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class CrawlResult:
    """Result of a crawl operation."""

    success: bool
    url: str
    html: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    screenshot: str | None = None
    error: str | None = None
    status_code: int | None = None
    duration_ms: float = 0.0


@dataclass
class CrawlOptions:
    """Options for crawl operations."""

    screenshot: bool = True
    viewport_width: int = 1440
    viewport_height: int = 900
    wait_for: str | None = None  # CSS selector to wait for
    delay_before_return_html: float = 0.0
    bypass_cache: bool = True
    magic: bool = False  # anti-bot detection bypass

    def to_dict(self) -> dict[str, Any]:
        """Convert options to API request format."""
        result: dict[str, Any] = {
            "bypass_cache": self.bypass_cache,
            "screenshot": self.screenshot,
            "viewport_width": self.viewport_width,
            "viewport_height": self.viewport_height,
        }
        if self.wait_for:
            result["wait_for"] = self.wait_for
        if self.delay_before_return_html > 0:
            result["delay_before_return_html"] = self.delay_before_return_html
        if self.magic:
            result["magic"] = self.magic
        return result


class Crawl4AIError(Exception):
    """Base exception for Crawl4AI errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Crawl4AITimeoutError(Crawl4AIError):
    """Raised when a request times out."""

    pass


class Crawl4AIRateLimitError(Crawl4AIError):
    """Raised when rate limited (429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class Crawl4AIAuthError(Crawl4AIError):
    """Raised when authentication fails (401/403)."""

    pass


class Crawl4AICircuitOpenError(Crawl4AIError):
    """Raised when circuit breaker is open."""

    pass


class Crawl4AIClient:
    """Async client for a Crawl4AI server.

    When no server URL is configured, ``crawl`` falls back to a plain GET
    that returns HTML and headers without a screenshot.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Crawl4AI client.

        Args:
            api_url: Crawl4AI API base URL. Defaults to settings.
            api_token: API token for authentication. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            max_retries: Maximum retry attempts. Defaults to settings.
            retry_delay: Base delay between retries. Defaults to settings.
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()

        self._api_url = (api_url or settings.crawl4ai_api_url or "").rstrip("/")
        self._api_token = api_token or settings.crawl4ai_api_token
        self._timeout = timeout or settings.crawl4ai_timeout
        self._max_retries = max_retries or settings.crawl4ai_max_retries
        self._retry_delay = (
            retry_delay if retry_delay is not None else settings.crawl4ai_retry_delay
        )
        self._transport = transport

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.crawl4ai_circuit_failure_threshold,
                recovery_timeout=settings.crawl4ai_circuit_recovery_timeout,
            ),
            name="crawl4ai",
        )

        self._client: httpx.AsyncClient | None = None
        self._available = bool(self._api_url)

    @property
    def available(self) -> bool:
        """Check if a Crawl4AI server is configured."""
        return self._available

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers: dict[str, str] = {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
            if self._api_token:
                headers["Authorization"] = f"Bearer {self._api_token}"

            self._client = httpx.AsyncClient(
                base_url=self._api_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Crawl4AI client closed")

    async def _backoff(self, attempt: int, reason: str, **extra: Any) -> None:
        delay = self._retry_delay * (2**attempt)
        logger.warning(
            f"Crawl4AI request attempt {attempt + 1} {reason}, retrying in {delay}s",
            extra={
                "attempt": attempt + 1,
                "max_retries": self._max_retries,
                "delay_seconds": delay,
                **extra,
            },
        )
        await asyncio.sleep(delay)

    async def _post_crawl(self, body: dict[str, Any], target_url: str) -> dict[str, Any]:
        """POST /crawl with retry logic and circuit breaker.

        Raises:
            Crawl4AICircuitOpenError: If circuit breaker is open
            Crawl4AITimeoutError: If every attempt times out
            Crawl4AIRateLimitError: If rate limited (429)
            Crawl4AIAuthError: If authentication fails (401/403)
            Crawl4AIError: For other errors
        """
        if not await self._circuit_breaker.can_execute():
            crawl4ai_logger.graceful_fallback(CRAWL_ENDPOINT, "Circuit breaker open")
            raise Crawl4AICircuitOpenError("Circuit breaker is open")

        client = await self._get_client()
        last_error: Crawl4AIError | None = None

        for attempt in range(self._max_retries):
            attempt_start = time.monotonic()
            crawl4ai_logger.api_call_start(
                CRAWL_ENDPOINT, target=target_url, retry_attempt=attempt
            )

            try:
                response = await client.post(CRAWL_ENDPOINT, json=body)
            except httpx.TimeoutException:
                crawl4ai_logger.timeout(CRAWL_ENDPOINT, self._timeout, target=target_url)
                await self._circuit_breaker.record_failure()
                last_error = Crawl4AITimeoutError(
                    f"Request timed out after {self._timeout}s"
                )
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "timed out")
                    continue
                break
            except httpx.RequestError as e:
                crawl4ai_logger.api_call_error(
                    CRAWL_ENDPOINT,
                    (time.monotonic() - attempt_start) * 1000,
                    None,
                    str(e),
                    type(e).__name__,
                    target=target_url,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                last_error = Crawl4AIError(f"Request failed: {e}")
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "failed", error=str(e))
                    continue
                break

            duration_ms = (time.monotonic() - attempt_start) * 1000

            if response.status_code == 429:
                retry_after = retry_after_seconds(response.headers.get("retry-after"))
                crawl4ai_logger.rate_limit(
                    CRAWL_ENDPOINT, retry_after=retry_after, target=target_url
                )
                await self._circuit_breaker.record_failure()
                last_error = Crawl4AIRateLimitError(
                    "Rate limit exceeded", retry_after=retry_after
                )
                if attempt < self._max_retries - 1 and retry_after and retry_after <= 60:
                    await asyncio.sleep(retry_after)
                    continue
                break

            if response.status_code in (401, 403):
                crawl4ai_logger.auth_failure(CRAWL_ENDPOINT, response.status_code)
                await self._circuit_breaker.record_failure()
                raise Crawl4AIAuthError(
                    f"Authentication failed ({response.status_code})",
                    status_code=response.status_code,
                )

            if response.status_code >= 500:
                error_msg = f"Server error ({response.status_code})"
                crawl4ai_logger.api_call_error(
                    CRAWL_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    error_msg,
                    "ServerError",
                    target=target_url,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                last_error = Crawl4AIError(error_msg, status_code=response.status_code)
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "failed", status_code=response.status_code)
                    continue
                break

            if response.status_code >= 400:
                crawl4ai_logger.api_call_error(
                    CRAWL_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    response.text[:200],
                    "ClientError",
                    target=target_url,
                    retry_attempt=attempt,
                )
                raise Crawl4AIError(
                    f"Client error ({response.status_code})",
                    status_code=response.status_code,
                )

            body = json_body(response)
            if response.content and not isinstance(body, dict):
                crawl4ai_logger.api_call_error(
                    CRAWL_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    response.text[:200],
                    "InvalidResponse",
                    target=target_url,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                raise Crawl4AIError(
                    "Invalid response from Crawl4AI",
                    status_code=response.status_code,
                )

            crawl4ai_logger.api_call_success(
                CRAWL_ENDPOINT,
                duration_ms,
                status_code=response.status_code,
                target=target_url,
            )
            await self._circuit_breaker.record_success()
            return body or {}

        raise last_error or Crawl4AIError("Request failed after all retries")

    async def _simple_crawl(self, url: str) -> CrawlResult:
        """Plain GET used when no Crawl4AI server is configured."""
        start_time = time.monotonic()
        logger.debug(
            "Using simple httpx crawl (Crawl4AI not configured)",
            extra={"target_url": url},
        )

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers={"User-Agent": BROWSER_USER_AGENT})
        except httpx.TimeoutException:
            return CrawlResult(
                success=False,
                url=url,
                error=f"Request timed out after {self._timeout}s",
                duration_ms=(time.monotonic() - start_time) * 1000,
            )
        except httpx.RequestError as e:
            return CrawlResult(
                success=False,
                url=url,
                error=str(e),
                duration_ms=(time.monotonic() - start_time) * 1000,
            )

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code >= 400:
            return CrawlResult(
                success=False,
                url=url,
                error=f"HTTP {response.status_code}",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        return CrawlResult(
            success=True,
            url=url,
            html=response.text,
            headers=dict(response.headers),
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

    async def crawl(
        self,
        url: str,
        options: CrawlOptions | None = None,
    ) -> CrawlResult:
        """Fetch a single URL.

        Never raises for fetch failures; inspect ``success`` and ``error``.
        """
        if not self._available:
            return await self._simple_crawl(url)

        start_time = time.monotonic()
        options = options or CrawlOptions()
        crawl4ai_logger.crawl_start(url, options.to_dict())

        try:
            response = await self._post_crawl(
                {"urls": [url], **options.to_dict()}, target_url=url
            )
        except Crawl4AIError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            crawl4ai_logger.crawl_complete(url, duration_ms, success=False)
            return CrawlResult(
                success=False,
                url=url,
                error=str(e),
                status_code=e.status_code,
                duration_ms=duration_ms,
            )

        # The server answers with "results" (list) or a single "result"
        data = response.get("results") or response.get("result") or response
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            data = {"success": False, "error": "Malformed crawl result"}

        duration_ms = (time.monotonic() - start_time) * 1000
        result = CrawlResult(
            success=bool(data.get("success", True)) and bool(data.get("html")),
            url=url,
            html=data.get("html"),
            headers=data.get("response_headers") or {},
            screenshot=data.get("screenshot"),
            error=data.get("error_message") or data.get("error"),
            status_code=data.get("status_code"),
            duration_ms=duration_ms,
        )
        if not result.success and not result.error:
            result.error = "Crawl returned no HTML"
        crawl4ai_logger.crawl_complete(url, duration_ms, result.success)
        return result


# Global Crawl4AI client instance
crawl4ai_client: Crawl4AIClient | None = None


async def init_crawl4ai() -> Crawl4AIClient:
    """Initialize the global Crawl4AI client.

    Returns:
        Initialized Crawl4AIClient instance
    """
    global crawl4ai_client
    if crawl4ai_client is None:
        crawl4ai_client = Crawl4AIClient()
        if crawl4ai_client.available:
            logger.info("Crawl4AI client initialized")
        else:
            logger.info("Crawl4AI not configured (missing API URL), using plain fetch")
    return crawl4ai_client


async def close_crawl4ai() -> None:
    """Close the global Crawl4AI client."""
    global crawl4ai_client
    if crawl4ai_client:
        await crawl4ai_client.close()
        crawl4ai_client = None


async def get_crawl4ai() -> Crawl4AIClient:
    """Dependency for getting Crawl4AI client."""
    global crawl4ai_client
    if crawl4ai_client is None:
        await init_crawl4ai()
    return crawl4ai_client  # type: ignore[return-value]
