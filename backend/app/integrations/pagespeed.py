"""Google PageSpeed Insights integration client.

Features:
- Async HTTP client using httpx (direct API calls)
- Circuit breaker for fault tolerance
- Retry logic with exponential backoff
- Handles timeouts, rate limits (429), auth failures (401/403)
- Extracts the Lighthouse performance score and Core Web Vitals

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with endpoint, target URL and timing
- Log and handle: timeouts, rate limits (429), auth failures (401/403)
- Include retry attempt number in logs
- Never log the API key
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.config import get_settings
from app.core.logging import get_logger, pagespeed_logger
from app.integrations.responses import error_message, json_body, retry_after_seconds
from app.services.errors import ExternalAPIError

logger = get_logger(__name__)

PAGESPEED_API_URL = "https://www.googleapis.com"
PAGESPEED_ENDPOINT = "/pagespeedonline/v5/runPagespeed"

# Lighthouse audit ids for the vitals we score
LCP_AUDIT = "largest-contentful-paint"
CLS_AUDIT = "cumulative-layout-shift"
FID_AUDIT = "max-potential-fid"


@dataclass
class PageSpeedMeasurement:
    """Performance score (0-100, None when omitted) plus web vitals.

    Vitals: lcp in seconds, cls unitless, fid in milliseconds.
    """

    url: str
    performance_score: float | None
    web_vitals: dict[str, float] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "performance_score": self.performance_score,
            "web_vitals": dict(self.web_vitals),
        }


class PageSpeedError(ExternalAPIError):
    """Base exception for PageSpeed Insights API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__("pagespeed", message, status_code=status_code)


class PageSpeedTimeoutError(PageSpeedError):
    """Raised when a request times out."""

    pass


class PageSpeedRateLimitError(PageSpeedError):
    """Raised when rate limited (429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class PageSpeedAuthError(PageSpeedError):
    """Raised when authentication fails (401/403)."""

    pass


class PageSpeedCircuitOpenError(PageSpeedError):
    """Raised when circuit breaker is open."""

    pass


def _audit_value(audits: dict[str, Any], audit_id: str) -> float | None:
    audit = audits.get(audit_id) or {}
    value = audit.get("numericValue")
    return float(value) if value is not None else None


def parse_measurement(url: str, payload: dict[str, Any]) -> PageSpeedMeasurement:
    """Turn a runPagespeed response body into a PageSpeedMeasurement."""
    lighthouse = payload.get("lighthouseResult") or {}
    performance = (lighthouse.get("categories") or {}).get("performance") or {}
    raw_score = performance.get("score")
    audits = lighthouse.get("audits") or {}

    web_vitals: dict[str, float] = {}
    lcp_ms = _audit_value(audits, LCP_AUDIT)
    if lcp_ms is not None:
        web_vitals["lcp"] = round(lcp_ms / 1000, 2)
    cls = _audit_value(audits, CLS_AUDIT)
    if cls is not None:
        web_vitals["cls"] = round(cls, 3)
    fid = _audit_value(audits, FID_AUDIT)
    if fid is None:
        field_metrics = (payload.get("loadingExperience") or {}).get("metrics") or {}
        percentile = (field_metrics.get("FIRST_INPUT_DELAY_MS") or {}).get("percentile")
        fid = float(percentile) if percentile is not None else None
    if fid is not None:
        web_vitals["fid"] = round(fid, 1)

    return PageSpeedMeasurement(
        url=url,
        performance_score=round(raw_score * 100, 1) if raw_score is not None else None,
        web_vitals=web_vitals,
    )


class PageSpeedClient:
    """Async client for the PageSpeed Insights v5 API.

    A single ``measure`` call covers the speed criterion's external tier.
    Lighthouse runs routinely take 20-40s, so the request timeout is long;
    callers impose their own overall deadline on top.
    """

    def __init__(
        self,
        api_key: str | None = None,
        strategy: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()

        self._api_key = api_key or settings.pagespeed_api_key
        self._strategy = strategy or settings.pagespeed_strategy
        self._timeout = timeout or settings.pagespeed_timeout
        self._max_retries = max_retries or settings.pagespeed_max_retries
        self._retry_delay = (
            retry_delay if retry_delay is not None else settings.pagespeed_retry_delay
        )
        self._transport = transport

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.pagespeed_circuit_failure_threshold,
                recovery_timeout=settings.pagespeed_circuit_recovery_timeout,
            ),
            name="pagespeed",
        )

        self._client: httpx.AsyncClient | None = None

    @property
    def available(self) -> bool:
        """PageSpeed works without a key at a lower quota."""
        return True

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=PAGESPEED_API_URL,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("PageSpeed client closed")

    def _params(self, url: str) -> dict[str, str]:
        params = {"url": url, "strategy": self._strategy, "category": "performance"}
        if self._api_key:
            params["key"] = self._api_key
        return params

    async def _backoff(self, attempt: int, reason: str, **extra: Any) -> None:
        delay = self._retry_delay * (2**attempt)
        logger.warning(
            f"PageSpeed request attempt {attempt + 1} {reason}, retrying in {delay}s",
            extra={
                "attempt": attempt + 1,
                "max_retries": self._max_retries,
                "delay_seconds": delay,
                **extra,
            },
        )
        await asyncio.sleep(delay)

    async def measure(self, url: str) -> PageSpeedMeasurement:
        """Run a Lighthouse performance audit for ``url``.

        Raises:
            PageSpeedCircuitOpenError: Circuit breaker is open
            PageSpeedAuthError: Key rejected (401/403), never retried
            PageSpeedRateLimitError: Quota exhausted after retries
            PageSpeedTimeoutError: Every attempt timed out
            PageSpeedError: Any other failure
        """
        if not await self._circuit_breaker.can_execute():
            pagespeed_logger.graceful_fallback("measure", "Circuit breaker open")
            raise PageSpeedCircuitOpenError("Circuit breaker is open")

        start_time = time.monotonic()
        client = await self._get_client()
        last_error: PageSpeedError | None = None

        for attempt in range(self._max_retries):
            attempt_start = time.monotonic()
            pagespeed_logger.api_call_start(
                PAGESPEED_ENDPOINT, target=url, retry_attempt=attempt
            )

            try:
                response = await client.get(PAGESPEED_ENDPOINT, params=self._params(url))
            except httpx.TimeoutException:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                pagespeed_logger.timeout(PAGESPEED_ENDPOINT, self._timeout, target=url)
                await self._circuit_breaker.record_failure()
                last_error = PageSpeedTimeoutError(
                    f"Request timed out after {self._timeout}s"
                )
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "timed out")
                    continue
                break
            except httpx.RequestError as e:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                pagespeed_logger.api_call_error(
                    PAGESPEED_ENDPOINT,
                    duration_ms,
                    None,
                    str(e),
                    type(e).__name__,
                    target=url,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                last_error = PageSpeedError(f"Request failed: {e}")
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "failed", error=str(e))
                    continue
                break

            duration_ms = (time.monotonic() - attempt_start) * 1000

            if response.status_code == 429:
                retry_after = retry_after_seconds(response.headers.get("retry-after"))
                pagespeed_logger.rate_limit(
                    PAGESPEED_ENDPOINT, retry_after=retry_after, target=url
                )
                await self._circuit_breaker.record_failure()
                last_error = PageSpeedRateLimitError(
                    "Rate limit exceeded", retry_after=retry_after
                )
                if attempt < self._max_retries - 1 and retry_after and retry_after <= 60:
                    await asyncio.sleep(retry_after)
                    continue
                break

            if response.status_code in (401, 403):
                pagespeed_logger.auth_failure(PAGESPEED_ENDPOINT, response.status_code)
                await self._circuit_breaker.record_failure()
                raise PageSpeedAuthError(
                    f"Authentication failed ({response.status_code})",
                    status_code=response.status_code,
                )

            if response.status_code >= 500:
                error_msg = f"Server error ({response.status_code})"
                pagespeed_logger.api_call_error(
                    PAGESPEED_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    error_msg,
                    "ServerError",
                    target=url,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                last_error = PageSpeedError(error_msg, status_code=response.status_code)
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "failed", status_code=response.status_code)
                    continue
                break

            if response.status_code >= 400:
                # Lighthouse reports unreachable or invalid URLs as 400
                error_msg = error_message(json_body(response))
                pagespeed_logger.api_call_error(
                    PAGESPEED_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    error_msg,
                    "ClientError",
                    target=url,
                    retry_attempt=attempt,
                )
                raise PageSpeedError(
                    f"Client error ({response.status_code}): {error_msg}",
                    status_code=response.status_code,
                )

            payload = json_body(response)
            try:
                measurement = parse_measurement(url, payload)
            except (AttributeError, TypeError, ValueError) as e:
                pagespeed_logger.api_call_error(
                    PAGESPEED_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    f"Malformed response body: {e}",
                    "InvalidResponse",
                    target=url,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                raise PageSpeedError(
                    "Invalid response from PageSpeed Insights",
                    status_code=response.status_code,
                ) from e
            measurement.duration_ms = (time.monotonic() - start_time) * 1000
            pagespeed_logger.api_call_success(
                PAGESPEED_ENDPOINT,
                duration_ms,
                status_code=response.status_code,
                target=url,
            )
            pagespeed_logger.measurement_complete(
                url, measurement.performance_score, measurement.duration_ms
            )
            await self._circuit_breaker.record_success()
            return measurement

        raise last_error or PageSpeedError("Request failed after all retries")


# Global PageSpeed client instance
pagespeed_client: PageSpeedClient | None = None


async def init_pagespeed() -> PageSpeedClient:
    """Initialize the global PageSpeed client."""
    global pagespeed_client
    if pagespeed_client is None:
        pagespeed_client = PageSpeedClient()
        logger.info(
            "PageSpeed client initialized",
            extra={"has_api_key": bool(pagespeed_client._api_key)},
        )
    return pagespeed_client


async def close_pagespeed() -> None:
    """Close the global PageSpeed client."""
    global pagespeed_client
    if pagespeed_client:
        await pagespeed_client.close()
        pagespeed_client = None


async def get_pagespeed() -> PageSpeedClient:
    """Dependency for getting the PageSpeed client."""
    global pagespeed_client
    if pagespeed_client is None:
        await init_pagespeed()
    return pagespeed_client  # type: ignore[return-value]
