"""Structured logging configuration.

All logs go to stdout. JSON format in production, plain text in development.

ERROR LOGGING REQUIREMENTS:
- Database connection errors with masked connection string
- Slow queries (>100ms) at WARNING level
- Transaction failures with rollback context
- Outbound API calls (Crawl4AI, Claude, PageSpeed) with timing and retry attempt
- Run lifecycle events (start, transition, finalize) with run_id and client_id
- Tier fallbacks and failed steps at WARNING level
"""

import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from pythonjsonlogger import jsonlogger

from app.core.config import get_settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined]
    """Custom JSON formatter with additional fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def mask_connection_string(conn_str: str) -> str:
    """Mask the password in a user:password@host connection string."""
    if not conn_str:
        return ""
    return re.sub(r"(://[^:]+:)([^@]+)(@)", r"\1****\3", conn_str)


def setup_logging() -> None:
    """Configure root logging to stdout using the configured format."""
    settings = get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    formatter: logging.Formatter
    if settings.log_format == "json":
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


def _truncate_text(text: str, max_length: int = 500) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... (truncated, {len(text)} chars)"


class DatabaseLogger:
    """Logger for database operations with required error logging."""

    def __init__(self) -> None:
        self.logger = get_logger("database")

    def connection_error(self, error: Exception, connection_string: str) -> None:
        """Log database connection error with masked connection string."""
        self.logger.error(
            "Database connection failed",
            extra={
                "connection_string": mask_connection_string(connection_string),
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )

    def slow_query(
        self, query: str, duration_ms: float, table: str | None = None
    ) -> None:
        """Log slow query at WARNING level."""
        self.logger.warning(
            "Slow query detected",
            extra={
                "duration_ms": round(duration_ms, 2),
                "query": query[:500],
                "table": table,
            },
        )

    def transaction_failure(
        self, error: Exception, table: str | None = None, context: str | None = None
    ) -> None:
        """Log transaction failure with rollback context."""
        self.logger.error(
            "Transaction failed, rolling back",
            extra={
                "error_type": type(error).__name__,
                "error_message": str(error),
                "table": table,
                "rollback_context": context,
            },
        )

    def migration_start(self, version: str, description: str) -> None:
        """Log migration start."""
        self.logger.info(
            "Starting database migration",
            extra={"migration_version": version, "description": description},
        )

    def migration_end(self, version: str, success: bool) -> None:
        """Log migration completion."""
        level = logging.INFO if success else logging.ERROR
        self.logger.log(
            level,
            "Database migration completed",
            extra={"migration_version": version, "success": success},
        )


db_logger = DatabaseLogger()


class ExternalAPILogger:
    """Shared logging for outbound HTTP integrations.

    Each integration gets its own named logger so log filters can target
    one provider. 4xx failures log at WARNING, everything else at ERROR.
    """

    service_name = "external"

    def __init__(self) -> None:
        self.logger = get_logger(self.service_name.lower())

    def api_call_start(
        self,
        endpoint: str,
        target: str | None = None,
        retry_attempt: int = 0,
    ) -> None:
        """Log outbound API call start at DEBUG level."""
        self.logger.debug(
            f"{self.service_name} API call: {endpoint}",
            extra={
                "endpoint": endpoint,
                "target": target,
                "retry_attempt": retry_attempt,
            },
        )

    def api_call_success(
        self,
        endpoint: str,
        duration_ms: float,
        status_code: int | None = None,
        target: str | None = None,
        **details: Any,
    ) -> None:
        """Log successful API call at DEBUG level."""
        self.logger.debug(
            f"{self.service_name} API call completed: {endpoint}",
            extra={
                "endpoint": endpoint,
                "target": target,
                "duration_ms": round(duration_ms, 2),
                "status_code": status_code,
                "success": True,
                **details,
            },
        )

    def api_call_error(
        self,
        endpoint: str,
        duration_ms: float,
        status_code: int | None,
        error: str,
        error_type: str,
        target: str | None = None,
        retry_attempt: int = 0,
    ) -> None:
        """Log failed API call at WARNING or ERROR level based on status."""
        level = logging.WARNING if status_code and 400 <= status_code < 500 else logging.ERROR
        self.logger.log(
            level,
            f"{self.service_name} API call failed: {endpoint}",
            extra={
                "endpoint": endpoint,
                "target": target,
                "duration_ms": round(duration_ms, 2),
                "status_code": status_code,
                "error": error,
                "error_type": error_type,
                "retry_attempt": retry_attempt,
                "success": False,
            },
        )

    def timeout(
        self, endpoint: str, timeout_seconds: float, target: str | None = None
    ) -> None:
        """Log request timeout at WARNING level."""
        self.logger.warning(
            f"{self.service_name} request timeout",
            extra={
                "endpoint": endpoint,
                "target": target,
                "timeout_seconds": timeout_seconds,
            },
        )

    def rate_limit(
        self,
        endpoint: str,
        retry_after: float | None = None,
        target: str | None = None,
    ) -> None:
        """Log rate limit (429) at WARNING level."""
        self.logger.warning(
            f"{self.service_name} rate limit hit (429)",
            extra={
                "endpoint": endpoint,
                "target": target,
                "retry_after_seconds": retry_after,
            },
        )

    def auth_failure(self, endpoint: str, status_code: int) -> None:
        """Log authentication failure (401/403) at WARNING level."""
        self.logger.warning(
            f"{self.service_name} authentication failed ({status_code})",
            extra={"endpoint": endpoint, "status_code": status_code},
        )

    def graceful_fallback(self, operation: str, reason: str) -> None:
        """Log graceful fallback when the provider is unavailable."""
        self.logger.info(
            f"{self.service_name} unavailable, using fallback",
            extra={"operation": operation, "reason": reason},
        )


class Crawl4AILogger(ExternalAPILogger):
    """Logger for Crawl4AI page fetches."""

    service_name = "Crawl4AI"

    def crawl_start(self, url: str, options: dict[str, Any] | None = None) -> None:
        """Log crawl operation start at INFO level."""
        self.logger.info(
            "Starting crawl",
            extra={"target_url": url, "options": options or {}},
        )

    def crawl_complete(self, url: str, duration_ms: float, success: bool) -> None:
        """Log crawl operation completion."""
        level = logging.INFO if success else logging.WARNING
        self.logger.log(
            level,
            "Crawl completed" if success else "Crawl failed",
            extra={
                "target_url": url,
                "duration_ms": round(duration_ms, 2),
                "success": success,
            },
        )


class ClaudeLogger(ExternalAPILogger):
    """Logger for Claude completions. Prompts are truncated, keys never logged."""

    service_name = "Claude"

    def request_body(self, model: str, system_prompt: str, user_prompt: str) -> None:
        """Log request body at DEBUG level (truncated)."""
        self.logger.debug(
            "Claude API request body",
            extra={
                "model": model,
                "system_prompt": _truncate_text(system_prompt, 200),
                "user_prompt": _truncate_text(user_prompt, 500),
            },
        )

    def response_body(
        self,
        model: str,
        response_text: str,
        duration_ms: float,
        stop_reason: str | None = None,
    ) -> None:
        """Log response body at DEBUG level (truncated)."""
        self.logger.debug(
            "Claude API response body",
            extra={
                "model": model,
                "response_text": _truncate_text(response_text, 500),
                "duration_ms": round(duration_ms, 2),
                "stop_reason": stop_reason,
            },
        )

    def token_usage(self, model: str, input_tokens: int, output_tokens: int) -> None:
        """Log API quota usage at INFO level."""
        self.logger.info(
            "Claude API token usage",
            extra={
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            },
        )


class PageSpeedLogger(ExternalAPILogger):
    """Logger for PageSpeed Insights measurements."""

    service_name = "PageSpeed"

    def measurement_complete(
        self,
        url: str,
        performance_score: float | None,
        duration_ms: float,
    ) -> None:
        """Log a finished measurement at INFO level."""
        self.logger.info(
            "PageSpeed measurement completed",
            extra={
                "target_url": url,
                "performance_score": performance_score,
                "duration_ms": round(duration_ms, 2),
            },
        )


class EffectivenessLogger:
    """Logger for the effectiveness run lifecycle.

    Every entry carries run_id so one run can be followed end to end.
    """

    def __init__(self) -> None:
        self.logger = get_logger("effectiveness")

    def run_started(self, run_id: str, client_id: str, competitor_count: int) -> None:
        self.logger.info(
            "Effectiveness run started",
            extra={
                "run_id": run_id,
                "client_id": client_id,
                "competitor_count": competitor_count,
            },
        )

    def status_transition(self, run_id: str, previous: str, new: str) -> None:
        self.logger.info(
            "Run status transition",
            extra={"run_id": run_id, "previous_status": previous, "new_status": new},
        )

    def tier_fallback(
        self,
        run_id: str,
        target: str,
        criterion: str,
        tier: int,
        reason: str,
    ) -> None:
        """Log a tier keeping its prior result at WARNING level."""
        self.logger.warning(
            "Tier fell back to prior result",
            extra={
                "run_id": run_id,
                "target": target,
                "criterion": criterion,
                "tier": tier,
                "reason": reason,
            },
        )

    def target_failed(self, run_id: str, target: str, error: str) -> None:
        self.logger.warning(
            "Target produced no scores",
            extra={"run_id": run_id, "target": target, "error": error},
        )

    def run_superseded(self, run_id: str, superseded_by: str | None) -> None:
        self.logger.info(
            "Run superseded",
            extra={"run_id": run_id, "superseded_by": superseded_by},
        )

    def run_finalized(
        self,
        run_id: str,
        status: str,
        overall_score: float | None,
        client_score_count: int,
        duration_ms: float,
    ) -> None:
        level = logging.INFO if status == "completed" else logging.WARNING
        self.logger.log(
            level,
            "Effectiveness run finalized",
            extra={
                "run_id": run_id,
                "status": status,
                "overall_score": overall_score,
                "client_score_count": client_score_count,
                "duration_ms": round(duration_ms, 2),
            },
        )


crawl4ai_logger = Crawl4AILogger()
claude_logger = ClaudeLogger()
pagespeed_logger = PageSpeedLogger()
effectiveness_logger = EffectivenessLogger()
