"""Integrations layer - External service clients.

Integrations handle communication with external APIs and services.
They abstract the details of external service protocols.
"""

from app.integrations.claude import (
    ClaudeClient,
    CompletionResult,
    close_claude,
    get_claude,
    init_claude,
)
from app.integrations.crawl4ai import (
    Crawl4AIAuthError,
    Crawl4AICircuitOpenError,
    Crawl4AIClient,
    Crawl4AIError,
    Crawl4AIRateLimitError,
    Crawl4AITimeoutError,
    CrawlOptions,
    CrawlResult,
    close_crawl4ai,
    get_crawl4ai,
    init_crawl4ai,
)
from app.integrations.pagespeed import (
    PageSpeedAuthError,
    PageSpeedCircuitOpenError,
    PageSpeedClient,
    PageSpeedError,
    PageSpeedMeasurement,
    PageSpeedRateLimitError,
    PageSpeedTimeoutError,
    close_pagespeed,
    get_pagespeed,
    init_pagespeed,
)

__all__ = [
    # Claude
    "ClaudeClient",
    "CompletionResult",
    "close_claude",
    "get_claude",
    "init_claude",
    # Crawl4AI
    "Crawl4AIAuthError",
    "Crawl4AICircuitOpenError",
    "Crawl4AIClient",
    "Crawl4AIError",
    "Crawl4AIRateLimitError",
    "Crawl4AITimeoutError",
    "CrawlOptions",
    "CrawlResult",
    "close_crawl4ai",
    "get_crawl4ai",
    "init_crawl4ai",
    # PageSpeed
    "PageSpeedAuthError",
    "PageSpeedCircuitOpenError",
    "PageSpeedClient",
    "PageSpeedError",
    "PageSpeedMeasurement",
    "PageSpeedRateLimitError",
    "PageSpeedTimeoutError",
    "close_pagespeed",
    "get_pagespeed",
    "init_pagespeed",
]
