"""Claude/Anthropic LLM integration client for rubric evaluation and insights.

Features:
- Async HTTP client using httpx (direct API calls)
- Circuit breaker for fault tolerance
- Retry logic with exponential backoff
- Handles timeouts, rate limits (429), auth failures (401/403)
- Token usage logging for quota tracking

Failures are returned as an unsuccessful CompletionResult with an
``error_type`` so callers can map them onto their own error taxonomy.

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with endpoint, model, timing
- Log request/response bodies at DEBUG level (truncated)
- Include retry attempt number in logs
- Never log the API key
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.config import get_settings
from app.core.logging import claude_logger, get_logger
from app.integrations.responses import error_message, json_body, retry_after_seconds

logger = get_logger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"
MESSAGES_ENDPOINT = "/v1/messages"

# error_type values on an unsuccessful CompletionResult
ERROR_NOT_CONFIGURED = "not_configured"
ERROR_CIRCUIT_OPEN = "circuit_open"
ERROR_RATE_LIMIT = "rate_limit"
ERROR_QUOTA = "quota_exceeded"
ERROR_AUTH = "auth"
ERROR_SERVER = "server"
ERROR_CLIENT = "client"
ERROR_TIMEOUT = "timeout"
ERROR_TRANSPORT = "transport"
ERROR_INVALID_RESPONSE = "invalid_response"


@dataclass
class CompletionResult:
    """Result of a Claude completion request."""

    success: bool
    text: str | None = None
    stop_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    error: str | None = None
    error_type: str | None = None
    status_code: int | None = None
    duration_ms: float = 0.0
    request_id: str | None = None


def _is_quota_error(status_code: int, message: str) -> bool:
    lowered = message.lower()
    return status_code == 402 or "credit balance" in lowered or "quota" in lowered


class ClaudeClient:
    """Async client for the Anthropic Messages API.

    Provides LLM capabilities with:
    - Circuit breaker for fault tolerance
    - Retry logic with exponential backoff
    - Comprehensive logging
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        max_tokens: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key. Defaults to settings.
            model: Model to use. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            max_retries: Maximum retry attempts. Defaults to settings.
            retry_delay: Base delay between retries. Defaults to settings.
            max_tokens: Maximum response tokens. Defaults to settings.
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()

        self._api_key = api_key or settings.anthropic_api_key
        self._model = model or settings.claude_model
        self._timeout = timeout or settings.claude_timeout
        self._max_retries = max_retries or settings.claude_max_retries
        self._retry_delay = (
            retry_delay if retry_delay is not None else settings.claude_retry_delay
        )
        self._max_tokens = max_tokens or settings.claude_max_tokens
        self._transport = transport

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.claude_circuit_failure_threshold,
                recovery_timeout=settings.claude_circuit_recovery_timeout,
            ),
            name="claude",
        )

        self._client: httpx.AsyncClient | None = None
        self._available = bool(self._api_key)

    @property
    def available(self) -> bool:
        """Check if Claude is configured and available."""
        return self._available

    @property
    def model(self) -> str:
        return self._model

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers: dict[str, str] = {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "anthropic-version": ANTHROPIC_API_VERSION,
            }
            if self._api_key:
                headers["x-api-key"] = self._api_key

            self._client = httpx.AsyncClient(
                base_url=ANTHROPIC_API_URL,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Claude client closed")

    async def _backoff(self, attempt: int, reason: str, **extra: Any) -> None:
        delay = self._retry_delay * (2**attempt)
        logger.warning(
            f"Claude request attempt {attempt + 1} {reason}, retrying in {delay}s",
            extra={
                "attempt": attempt + 1,
                "max_retries": self._max_retries,
                "delay_seconds": delay,
                **extra,
            },
        )
        await asyncio.sleep(delay)

    async def complete(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.0,
    ) -> CompletionResult:
        """Send a completion request to Claude.

        Args:
            user_prompt: The user message/prompt
            system_prompt: Optional system prompt
            max_tokens: Maximum response tokens (overrides default)
            temperature: Sampling temperature (0.0 = deterministic)

        Returns:
            CompletionResult with response text and metadata
        """
        if not self._available:
            return CompletionResult(
                success=False,
                error="Claude not configured (missing API key)",
                error_type=ERROR_NOT_CONFIGURED,
            )

        if not await self._circuit_breaker.can_execute():
            claude_logger.graceful_fallback("complete", "Circuit breaker open")
            return CompletionResult(
                success=False,
                error="Circuit breaker is open",
                error_type=ERROR_CIRCUIT_OPEN,
            )

        start_time = time.monotonic()
        client = await self._get_client()
        request_id: str | None = None
        failure = CompletionResult(
            success=False,
            error="Request failed after all retries",
            error_type=ERROR_TRANSPORT,
        )

        request_body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            request_body["system"] = system_prompt

        for attempt in range(self._max_retries):
            attempt_start = time.monotonic()
            claude_logger.api_call_start(
                MESSAGES_ENDPOINT, target=self._model, retry_attempt=attempt
            )
            claude_logger.request_body(self._model, system_prompt or "", user_prompt)

            try:
                response = await client.post(MESSAGES_ENDPOINT, json=request_body)
            except httpx.TimeoutException:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                claude_logger.timeout(MESSAGES_ENDPOINT, self._timeout, target=self._model)
                await self._circuit_breaker.record_failure()
                failure = CompletionResult(
                    success=False,
                    error=f"Request timed out after {self._timeout}s",
                    error_type=ERROR_TIMEOUT,
                    duration_ms=duration_ms,
                )
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "timed out")
                    continue
                break
            except httpx.RequestError as e:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                claude_logger.api_call_error(
                    MESSAGES_ENDPOINT,
                    duration_ms,
                    None,
                    str(e),
                    type(e).__name__,
                    target=self._model,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                failure = CompletionResult(
                    success=False,
                    error=f"Request failed: {e}",
                    error_type=ERROR_TRANSPORT,
                    duration_ms=duration_ms,
                )
                if attempt < self._max_retries - 1:
                    await self._backoff(attempt, "failed", error=str(e))
                    continue
                break

            duration_ms = (time.monotonic() - attempt_start) * 1000
            request_id = response.headers.get("request-id")

            if response.status_code == 429:
                retry_after = retry_after_seconds(response.headers.get("retry-after"))
                claude_logger.rate_limit(
                    MESSAGES_ENDPOINT, retry_after=retry_after, target=self._model
                )
                await self._circuit_breaker.record_failure()
                failure = CompletionResult(
                    success=False,
                    error="Rate limit exceeded",
                    error_type=ERROR_RATE_LIMIT,
                    status_code=429,
                    request_id=request_id,
                    duration_ms=duration_ms,
                )
                if attempt < self._max_retries - 1 and retry_after and retry_after <= 60:
                    await asyncio.sleep(retry_after)
                    continue
                break

            if response.status_code in (401, 403):
                claude_logger.auth_failure(MESSAGES_ENDPOINT, response.status_code)
                await self._circuit_breaker.record_failure()
                return CompletionResult(
                    success=False,
                    error=f"Authentication failed ({response.status_code})",
                    error_type=ERROR_AUTH,
                    status_code=response.status_code,
                    request_id=request_id,
                    duration_ms=duration_ms,
                )

            if response.status_code >= 500:
                error_msg = f"Server error ({response.status_code})"
                claude_logger.api_call_error(
                    MESSAGES_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    error_msg,
                    "ServerError",
                    target=self._model,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                failure = CompletionResult(
                    success=False,
                    error=error_msg,
                    error_type=ERROR_SERVER,
                    status_code=response.status_code,
                    request_id=request_id,
                    duration_ms=duration_ms,
                )
                if attempt < self._max_retries - 1:
                    await self._backoff(
                        attempt, "failed", status_code=response.status_code
                    )
                    continue
                break

            if response.status_code >= 400:
                error_msg = error_message(json_body(response))
                claude_logger.api_call_error(
                    MESSAGES_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    error_msg,
                    "ClientError",
                    target=self._model,
                    retry_attempt=attempt,
                )
                return CompletionResult(
                    success=False,
                    error=f"Client error ({response.status_code}): {error_msg}",
                    error_type=(
                        ERROR_QUOTA
                        if _is_quota_error(response.status_code, error_msg)
                        else ERROR_CLIENT
                    ),
                    status_code=response.status_code,
                    request_id=request_id,
                    duration_ms=duration_ms,
                )

            response_data = json_body(response)
            total_duration_ms = (time.monotonic() - start_time) * 1000

            try:
                content = response_data.get("content") or []
                text = "".join(
                    block.get("text", "")
                    for block in content
                    if block.get("type", "text") == "text"
                )
                stop_reason = response_data.get("stop_reason")
                usage = response_data.get("usage") or {}
                input_tokens = usage.get("input_tokens")
                output_tokens = usage.get("output_tokens")
            except (AttributeError, TypeError) as e:
                claude_logger.api_call_error(
                    MESSAGES_ENDPOINT,
                    duration_ms,
                    response.status_code,
                    f"Malformed response body: {e}",
                    "InvalidResponse",
                    target=self._model,
                    retry_attempt=attempt,
                )
                await self._circuit_breaker.record_failure()
                return CompletionResult(
                    success=False,
                    error="Invalid response from Claude API",
                    error_type=ERROR_INVALID_RESPONSE,
                    status_code=response.status_code,
                    request_id=request_id,
                    duration_ms=total_duration_ms,
                )

            claude_logger.api_call_success(
                MESSAGES_ENDPOINT,
                duration_ms,
                status_code=response.status_code,
                target=self._model,
                request_id=request_id,
            )
            claude_logger.response_body(
                self._model, text, duration_ms, stop_reason=stop_reason
            )
            if input_tokens and output_tokens:
                claude_logger.token_usage(self._model, input_tokens, output_tokens)

            await self._circuit_breaker.record_success()

            return CompletionResult(
                success=True,
                text=text,
                stop_reason=stop_reason,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                request_id=request_id,
                duration_ms=total_duration_ms,
            )

        failure.duration_ms = (time.monotonic() - start_time) * 1000
        failure.request_id = failure.request_id or request_id
        return failure


# Global Claude client instance
claude_client: ClaudeClient | None = None


async def init_claude() -> ClaudeClient:
    """Initialize the global Claude client.

    Returns:
        Initialized ClaudeClient instance
    """
    global claude_client
    if claude_client is None:
        claude_client = ClaudeClient()
        if claude_client.available:
            logger.info(
                "Claude client initialized",
                extra={"model": claude_client.model},
            )
        else:
            logger.info("Claude not configured (missing API key)")
    return claude_client


async def close_claude() -> None:
    """Close the global Claude client."""
    global claude_client
    if claude_client:
        await claude_client.close()
        claude_client = None


async def get_claude() -> ClaudeClient:
    """Dependency for getting Claude client."""
    global claude_client
    if claude_client is None:
        await init_claude()
    return claude_client  # type: ignore[return-value]
