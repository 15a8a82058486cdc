"""Error taxonomy for the effectiveness pipeline.

Propagation rule: only ValidationError and PersistenceError may fail a run
or request outright. ScrapeError, AIError and ExternalAPIError are caught at
the tier boundary and turned into a fallback plus a failed progress step.
"""

from typing import Any


class EffectivenessError(Exception):
    """Base exception for the effectiveness pipeline."""

    code = "EFFECTIVENESS_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(EffectivenessError):
    """Bad input; the run is never created."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, value: Any, message: str) -> None:
        self.field = field
        self.value = value
        super().__init__(
            f"Validation failed for '{field}': {message}",
            details={"field": field, "value": value},
        )


class ClientNotFoundError(EffectivenessError):
    code = "NOT_FOUND"

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__(f"Client not found: {client_id}")


class RunNotFoundError(EffectivenessError):
    code = "NOT_FOUND"

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class ScrapeError(EffectivenessError):
    """A target page could not be fetched after all attempts."""

    code = "SCRAPE_ERROR"

    def __init__(self, url: str, message: str, attempts: int = 1) -> None:
        self.url = url
        self.attempts = attempts
        super().__init__(message, details={"url": url, "attempts": attempts})


class AIError(EffectivenessError):
    """A model evaluation call failed."""

    code = "AI_ERROR"


class AITimeoutError(AIError):
    code = "AI_TIMEOUT"


class AIRateLimitError(AIError):
    code = "AI_RATE_LIMIT"


class AIQuotaExceededError(AIError):
    code = "AI_QUOTA_EXCEEDED"


class AIResponseError(AIError):
    """The model answered but the payload was not usable."""

    code = "AI_RESPONSE_ERROR"


class ExternalAPIError(EffectivenessError):
    """A measurement provider call failed."""

    code = "EXTERNAL_API_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(
            message, details={"provider": provider, "status_code": status_code}
        )


class PersistenceError(EffectivenessError):
    """A database write or read failed. Fatal for the run."""

    code = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(message, details={"operation": operation})


class InsightsNotAvailableError(EffectivenessError):
    """Insights requested for a run without usable results."""

    code = "INSIGHTS_NOT_AVAILABLE"

    def __init__(self, run_id: str, effective_status: str) -> None:
        self.run_id = run_id
        self.effective_status = effective_status
        super().__init__(
            f"Insights unavailable for run {run_id} (status: {effective_status})",
            details={"run_id": run_id, "effective_status": effective_status},
        )


class InvalidStatusTransitionError(EffectivenessError):
    """A run status write would regress the state machine."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, run_id: str, current: str, requested: str) -> None:
        self.run_id = run_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Run {run_id} cannot move from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class RunSupersededError(EffectivenessError):
    """Raised inside a run's engines once a newer run replaced it."""

    code = "RUN_SUPERSEDED"

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run {run_id} was superseded")
