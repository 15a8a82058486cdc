"""Core utilities and configuration."""

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from app.core.config import Settings, get_settings
from app.core.database import Base, db_manager, get_session, session_scope
from app.core.logging import (
    db_logger,
    effectiveness_logger,
    get_logger,
    setup_logging,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "db_manager",
    "get_session",
    "session_scope",
    # Logging
    "db_logger",
    "effectiveness_logger",
    "get_logger",
    "setup_logging",
]
