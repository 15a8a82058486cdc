"""Tests for the Crawl4AI client and the scraper built on it."""

import httpx
import pytest

from app.integrations.crawl4ai import Crawl4AIClient
from app.services.errors import ScrapeError
from app.services.scraper import SCREENSHOT_URL_PREFIX, WebsiteScraper

TARGET = "https://acme.example"

CRAWL_BODY = {
    "results": [
        {
            "success": True,
            "html": "<html><body><h1>Acme</h1></body></html>",
            "response_headers": {"cache-control": "max-age=600"},
            "screenshot": "aGVsbG8=",
            "status_code": 200,
        }
    ]
}


def make_client(*responses: httpx.Response) -> tuple[Crawl4AIClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    client = Crawl4AIClient(
        api_url="http://crawl4ai.test",
        max_retries=2,
        retry_delay=0.0,
        transport=httpx.MockTransport(handler),
    )
    return client, requests


class TestCrawl:
    """crawl() never raises; failures come back as unsuccessful results."""

    async def test_success(self) -> None:
        client, requests = make_client(httpx.Response(200, json=CRAWL_BODY))

        result = await client.crawl(TARGET)

        assert result.success is True
        assert result.html.startswith("<html>")
        assert result.headers == {"cache-control": "max-age=600"}
        assert result.screenshot == "aGVsbG8="
        assert requests[0].url.path == "/crawl"
        await client.close()

    async def test_non_json_body_is_failed_result(self) -> None:
        client, _ = make_client(httpx.Response(200, text="<html>Proxy error</html>"))

        result = await client.crawl(TARGET)

        assert result.success is False
        assert "Invalid response" in result.error
        assert result.status_code == 200

    async def test_malformed_result_entry(self) -> None:
        client, _ = make_client(httpx.Response(200, json={"results": ["oops"]}))

        result = await client.crawl(TARGET)

        assert result.success is False
        assert result.error == "Malformed crawl result"

    async def test_http_date_retry_after(self) -> None:
        client, requests = make_client(
            httpx.Response(429, headers={"retry-after": "Wed, 21 Oct 2026 07:28:00 GMT"})
        )

        result = await client.crawl(TARGET)

        assert result.success is False
        assert result.status_code == 429
        assert len(requests) == 1


class TestWebsiteScraper:
    async def test_fetch_stores_screenshot(self, tmp_path) -> None:
        client, _ = make_client(httpx.Response(200, json=CRAWL_BODY))
        scraper = WebsiteScraper(client, screenshot_dir=tmp_path, max_attempts=1)

        page = await scraper.fetch(TARGET)

        assert page.html.startswith("<html>")
        assert page.screenshot_url.startswith(f"{SCREENSHOT_URL_PREFIX}/acme-example-")
        assert len(list(tmp_path.iterdir())) == 1

    async def test_non_json_crawl_raises_scrape_error(self, tmp_path) -> None:
        client, requests = make_client(httpx.Response(200, text="<html>Proxy error</html>"))
        scraper = WebsiteScraper(
            client, screenshot_dir=tmp_path, max_attempts=2, retry_delay=0.0
        )

        with pytest.raises(ScrapeError):
            await scraper.fetch(TARGET)

        assert len(requests) == 2
