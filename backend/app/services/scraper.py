"""Website scraper: fetches a target page and stores its screenshot.

Wraps the Crawl4AI client with a bounded number of attempts. Without a
Crawl4AI server the client falls back to a plain httpx GET, which yields
HTML and headers but no screenshot. Screenshots arrive base64 encoded and are written under settings.screenshot_dir, then
served by the application under /screenshots.
"""

import asyncio
import base64
import binascii
import re
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4

from app.core.config import get_settings
from app.core.logging import get_logger
from app.integrations.crawl4ai import Crawl4AIClient, CrawlOptions, CrawlResult
from app.services.content_extraction import PageData
from app.services.errors import ScrapeError

logger = get_logger(__name__)

SCREENSHOT_URL_PREFIX = "/screenshots"


def _screenshot_filename(url: str) -> str:
    host = urlparse(url).netloc or url
    slug = re.sub(r"[^a-z0-9]+", "-", host.lower()).strip("-") or "site"
    return f"{slug}-{uuid4().hex[:12]}.png"


class WebsiteScraper:
    """Fetches pages for the tiered engines."""

    def __init__(
        self,
        crawler: Crawl4AIClient,
        screenshot_dir: str | Path | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        settings = get_settings()
        self._crawler = crawler
        self._screenshot_dir = Path(screenshot_dir or settings.screenshot_dir)
        self._max_attempts = max(1, max_attempts or settings.effectiveness_scrape_max_attempts)
        self._retry_delay = (
            retry_delay
            if retry_delay is not None
            else settings.effectiveness_scrape_retry_delay
        )
        self._options = CrawlOptions(
            screenshot=True,
            viewport_width=settings.scoring_viewport_width,
            viewport_height=settings.scoring_viewport_height,
        )

    async def fetch(self, url: str) -> PageData:
        """Fetch ``url`` and return its PageData.

        Raises:
            ScrapeError: Every attempt failed or returned no HTML
        """
        result: CrawlResult | None = None
        for attempt in range(1, self._max_attempts + 1):
            result = await self._crawler.crawl(url, self._options)
            if result.success and result.html:
                break
            logger.warning(
                "Scrape attempt failed",
                extra={
                    "target_url": url,
                    "attempt": attempt,
                    "max_attempts": self._max_attempts,
                    "error": result.error,
                    "status_code": result.status_code,
                },
            )
            if attempt < self._max_attempts:
                await asyncio.sleep(self._retry_delay * attempt)
        else:
            raise ScrapeError(
                url,
                f"Failed to fetch {url}: {result.error if result else 'no response'}",
                attempts=self._max_attempts,
            )

        screenshot_url = None
        if result.screenshot:
            screenshot_url = await self._store_screenshot(url, result.screenshot)

        # Crawl4AI captures one full-page image; it serves both fields
        return PageData(
            url=url,
            html=result.html or "",
            headers=dict(result.headers),
            screenshot_url=screenshot_url,
            full_page_screenshot_url=screenshot_url,
        )

    async def _store_screenshot(self, url: str, encoded: str) -> str | None:
        """Decode and write a screenshot. Storage problems never fail a scrape."""
        try:
            content = base64.b64decode(encoded)
        except (binascii.Error, ValueError) as e:
            logger.warning(
                "Discarding undecodable screenshot",
                extra={"target_url": url, "error": str(e)},
            )
            return None

        filename = _screenshot_filename(url)
        path = self._screenshot_dir / filename
        try:
            await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            logger.error(
                "Failed to store screenshot",
                extra={"target_url": url, "path": str(path), "error": str(e)},
                exc_info=True,
            )
            return None

        logger.debug(
            "Screenshot stored",
            extra={"target_url": url, "path": str(path), "size_bytes": len(content)},
        )
        return f"{SCREENSHOT_URL_PREFIX}/{filename}"

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
