"""Application configuration loaded from environment variables.

All configuration is via environment variables (or a local .env file).
No hardcoded URLs, ports, or credentials.
"""

from functools import lru_cache

from pydantic import Field, PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BUZZWORDS = [
    "transformative",
    "revolutionary",
    "AI-driven",
    "cutting-edge",
    "innovative",
    "next-generation",
    "groundbreaking",
    "disruptive",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Website Effectiveness Scoring")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")
    frontend_url: str | None = Field(
        default=None, description="Allowed CORS origin for the dashboard"
    )

    # Server
    port: int = Field(default=8000, description="Port to bind to")
    host: str = Field(default="0.0.0.0", description="Host to bind to")

    # Database
    database_url: PostgresDsn = Field(
        ...,
        description="PostgreSQL connection string",
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size")
    db_max_overflow: int = Field(default=10, description="Max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    db_slow_query_threshold_ms: int = Field(
        default=100, description="Threshold for slow query warnings (ms)"
    )
    db_connect_timeout: int = Field(
        default=60, description="Connection timeout in seconds"
    )
    db_command_timeout: int = Field(
        default=60, description="Command timeout in seconds"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Crawl4AI (page scraping + screenshots)
    crawl4ai_api_url: str | None = Field(
        default=None,
        description="Crawl4AI API base URL (e.g., http://localhost:11235)",
    )
    crawl4ai_api_token: str | None = Field(
        default=None,
        description="Crawl4AI API token for authentication",
    )
    crawl4ai_timeout: float = Field(
        default=90.0, description="Crawl4AI request timeout in seconds"
    )
    crawl4ai_max_retries: int = Field(
        default=3, description="Maximum retry attempts for Crawl4AI requests"
    )
    crawl4ai_retry_delay: float = Field(
        default=1.0, description="Base delay between retries in seconds"
    )
    crawl4ai_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    crawl4ai_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # Claude/Anthropic LLM (tier 2 evaluation + insights)
    anthropic_api_key: str | None = Field(
        default=None,
        description="Anthropic API key for Claude models",
    )
    claude_model: str = Field(
        default="claude-3-haiku-20240307",
        description="Claude model used for criterion evaluation and insights",
    )
    claude_timeout: float = Field(
        default=60.0, description="Claude API request timeout in seconds"
    )
    claude_max_retries: int = Field(
        default=3, description="Maximum retry attempts for Claude API requests"
    )
    claude_retry_delay: float = Field(
        default=1.0, description="Base delay between retries in seconds"
    )
    claude_max_tokens: int = Field(
        default=1024, description="Maximum tokens in Claude response"
    )
    claude_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    claude_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # Google PageSpeed Insights (tier 3 measurement)
    pagespeed_api_key: str | None = Field(
        default=None,
        description="Google PageSpeed Insights API key (optional, raises quota)",
    )
    pagespeed_strategy: str = Field(
        default="desktop", description="PageSpeed strategy: desktop or mobile"
    )
    pagespeed_timeout: float = Field(
        default=55.0, description="PageSpeed request timeout in seconds"
    )
    pagespeed_max_retries: int = Field(
        default=2, description="Maximum retry attempts for PageSpeed requests"
    )
    pagespeed_retry_delay: float = Field(
        default=2.0, description="Base delay between retries in seconds"
    )
    pagespeed_circuit_failure_threshold: int = Field(
        default=3, description="Failures before circuit opens"
    )
    pagespeed_circuit_recovery_timeout: float = Field(
        default=120.0, description="Seconds before attempting recovery"
    )

    # Effectiveness pipeline
    effectiveness_competitor_concurrency: int = Field(
        default=2, description="Competitor engines allowed to run at once"
    )
    effectiveness_scrape_max_attempts: int = Field(
        default=2, description="Scrape attempts per target before flooring scores"
    )
    effectiveness_scrape_retry_delay: float = Field(
        default=2.0, description="Delay between scrape attempts in seconds"
    )
    effectiveness_model_timeout: float = Field(
        default=30.0, description="Timeout for one tier-2 model evaluation (seconds)"
    )
    effectiveness_measurement_timeout: float = Field(
        default=60.0, description="Timeout for one tier-3 measurement call (seconds)"
    )
    effectiveness_insights_timeout: float = Field(
        default=30.0, description="Timeout for automatic insights generation (seconds)"
    )
    effectiveness_auto_insights: bool = Field(
        default=True, description="Generate insights automatically after a run"
    )
    effectiveness_passing_score: float = Field(
        default=6.0, description="Minimum criterion score that counts as passing"
    )
    screenshot_dir: str = Field(
        default="uploads/screenshots",
        description="Directory where captured screenshots are written",
    )

    # Scoring thresholds
    scoring_buzzwords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BUZZWORDS),
        description="Generic marketing terms penalized in hero copy",
    )
    scoring_recent_months: int = Field(
        default=24, description="Window for counting proof as recent"
    )
    scoring_hero_words: int = Field(
        default=22, description="Maximum words in a concise hero headline"
    )
    scoring_cta_dominance: float = Field(
        default=1.15, description="Primary/secondary CTA prominence ratio"
    )
    scoring_proof_distance_px: int = Field(
        default=600, description="Max distance between a claim and its proof"
    )
    scoring_lcp_limit: float = Field(
        default=3.0, description="Acceptable Largest Contentful Paint (seconds)"
    )
    scoring_cls_limit: float = Field(
        default=0.1, description="Acceptable Cumulative Layout Shift"
    )
    scoring_viewport_width: int = Field(default=1440, description="Viewport width")
    scoring_viewport_height: int = Field(default=900, description="Viewport height")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
