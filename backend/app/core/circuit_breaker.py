"""Shared circuit breaker for outbound integrations.

After failure_threshold consecutive failures the circuit opens and calls are
rejected. Once recovery_timeout has elapsed one trial call is let through
(half-open); success closes the circuit, failure opens it again.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int
    recovery_timeout: float


class CircuitBreaker:
    """Async circuit breaker guarding one provider (Claude, Crawl4AI, PageSpeed)."""

    def __init__(self, config: CircuitBreakerConfig, name: str = "default") -> None:
        self._config = config
        self._name = name
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    def _transition(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        extra = {
            "circuit_name": self._name,
            "previous_state": previous.value,
            "new_state": new_state.value,
            "failure_count": self._failure_count,
        }
        if new_state == CircuitState.OPEN:
            extra["recovery_timeout"] = self._config.recovery_timeout
            logger.warning("Circuit breaker opened", extra=extra)
        else:
            logger.info("Circuit breaker state change", extra=extra)

    def _recovery_due(self) -> bool:
        if self._opened_at is None:
            return False
        return time.monotonic() - self._opened_at >= self._config.recovery_timeout

    async def can_execute(self) -> bool:
        """Return True when a call may be attempted."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._recovery_due():
                    return False
                self._transition(CircuitState.HALF_OPEN)
            return True

    async def record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._opened_at = None
                self._transition(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                self._opened_at = time.monotonic()
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.OPEN:
                self._opened_at = time.monotonic()
