"""Page fetchers: turn a URL into rendered content under a timeout.

Two backends share the ``PageFetcher`` protocol:

- ``HttpPageFetcher``: plain httpx requests, cheap, used for JSON APIs and
  server-rendered portals.
- ``PlaywrightPageFetcher``: headless browser rendering for JavaScript-heavy
  portals. Each fetch opens one page in a shared browser context; callers
  bound concurrency, since every page is a heavyweight resource.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from ..exceptions import FetchError, FetchTimeoutError
from ..utils.logging import get_logger
from ..utils.retry import fetch_retry_config, retry_async
from .config import CrawlerConfig
from .models import SourceSnapshot

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Playwright

logger = get_logger(__name__)

HTML_ACCEPT = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"
JSON_ACCEPT = "application/json"


@dataclass(frozen=True)
class FetchOptions:
    """Per-request fetch parameters."""

    timeout_ms: int = 30_000
    user_agent: str | None = None
    accept: str = HTML_ACCEPT
    retry_attempts: int = 0


@dataclass(frozen=True)
class FetchedPage:
    """Rendered content of a URL."""

    url: str
    status_code: int
    content: str
    content_type: str = ""


@runtime_checkable
class PageFetcher(Protocol):
    """Fetch capability consumed by the extraction strategies."""

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage: ...

    async def close(self) -> None: ...


class HttpPageFetcher:
    """httpx-based fetcher.

    Transport errors are retried with exponential backoff; HTTP error
    statuses and timeouts are not.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize the fetcher.

        Args:
            transport: Optional httpx transport (tests inject ``httpx.MockTransport``)
        """
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, transport=self._transport)
        return self._client

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        client = self._get_client()
        headers = {"Accept": options.accept}
        if options.user_agent:
            headers["User-Agent"] = options.user_agent

        timeout = options.timeout_ms / 1000

        async def _get() -> httpx.Response:
            return await client.get(url, headers=headers, timeout=timeout)

        try:
            response = await retry_async(
                _get,
                config=fetch_retry_config(options.retry_attempts),
            )
        except httpx.TimeoutException as e:
            logger.warning("page_fetch_timeout", url=url, timeout_ms=options.timeout_ms)
            raise FetchTimeoutError(
                f"Timed out after {options.timeout_ms}ms", url=url, original_error=e
            ) from e
        except httpx.HTTPError as e:
            logger.warning("page_fetch_failed", url=url, error=str(e))
            raise FetchError(f"Network error: {e}", url=url, original_error=e) from e

        if not response.is_success:
            logger.warning("page_fetch_bad_status", url=url, status=response.status_code)
            raise FetchError(
                f"Unexpected HTTP status {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        logger.debug("page_fetched", url=url, status=response.status_code, size=len(response.text))

        return FetchedPage(
            url=str(response.url),
            status_code=response.status_code,
            content=response.text,
            content_type=response.headers.get("content-type", ""),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class PlaywrightPageFetcher:
    """Headless browser fetcher for JavaScript-rendered portals.

    The browser starts lazily on the first fetch and is shared by all
    fetches until ``close()``.
    """

    def __init__(self, config: CrawlerConfig):
        self.config = config
        self.playwright: Playwright | None = None
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self._start_lock = asyncio.Lock()

    async def __aenter__(self) -> PlaywrightPageFetcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Start the browser once, however many crawls race to fetch first."""
        if self.context is not None:
            return

        async with self._start_lock:
            if self.context is not None:
                return
            await self._launch()

    async def _launch(self) -> None:
        from playwright.async_api import async_playwright

        if self.playwright is None:
            self.playwright = await async_playwright().start()

        launch_options = {
            "headless": self.config.headless,
            "args": ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
        }

        if self.browser is None:
            if self.config.browser_type == "firefox":
                self.browser = await self.playwright.firefox.launch(**launch_options)
            elif self.config.browser_type == "webkit":
                self.browser = await self.playwright.webkit.launch(**launch_options)
            else:
                self.browser = await self.playwright.chromium.launch(**launch_options)

        self.context = await self.browser.new_context(
            user_agent=self.config.user_agent,
            viewport={"width": 1366, "height": 900},
            locale="en-GB",
        )

        logger.info("browser_fetcher_started", browser=self.config.browser_type)

    async def fetch(self, url: str, options: FetchOptions) -> FetchedPage:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        await self.start()
        if not self.context:
            raise RuntimeError("Browser context not started")

        page = await self.context.new_page()
        try:
            if options.user_agent:
                await page.set_extra_http_headers({"User-Agent": options.user_agent})

            response = await page.goto(url, timeout=options.timeout_ms, wait_until="networkidle")

            if not response or not response.ok:
                status = response.status if response else 0
                logger.warning("page_load_failed", url=url, status=status)
                raise FetchError(f"Unexpected HTTP status {status}", url=url, status_code=status)

            content_type = response.headers.get("content-type", "")
            if "json" in options.accept or "json" in content_type:
                content = await response.text()
            else:
                content = await page.content()

            return FetchedPage(
                url=page.url,
                status_code=response.status,
                content=content,
                content_type=content_type,
            )

        except PlaywrightTimeoutError as e:
            logger.warning("page_fetch_timeout", url=url, timeout_ms=options.timeout_ms)
            raise FetchTimeoutError(
                f"Timed out after {options.timeout_ms}ms", url=url, original_error=e
            ) from e
        except PlaywrightError as e:
            logger.warning("page_fetch_failed", url=url, error=str(e))
            raise FetchError(f"Navigation error: {e}", url=url, original_error=e) from e
        finally:
            await page.close()

    async def close(self) -> None:
        """Stop the browser and cleanup resources."""
        if self.context:
            await self.context.close()
            self.context = None

        if self.browser:
            await self.browser.close()
            self.browser = None

        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
            logger.info("browser_fetcher_stopped")


def create_fetcher(config: CrawlerConfig) -> PageFetcher:
    """Build the fetcher selected by ``config.fetcher_backend``."""
    if config.fetcher_backend == "playwright":
        return PlaywrightPageFetcher(config)
    return HttpPageFetcher()


class CrawlSession:
    """Fetch boundary for one crawl attempt of one source.

    Applies the source's timeout, User-Agent and politeness delay, counts
    pages, enforces the ``max_pages`` budget and runs the cancellation check
    before every fetch.
    """

    def __init__(
        self,
        source: SourceSnapshot,
        fetcher: PageFetcher,
        config: CrawlerConfig,
        cancel_check: Callable[[], None] | None = None,
    ):
        self.source = source
        self.fetcher = fetcher
        self.config = config
        self.cancel_check = cancel_check
        self.pages_scraped = 0

    @property
    def max_pages(self) -> int:
        return self.source.crawl_config.max_pages

    @property
    def remaining_pages(self) -> int:
        return max(self.max_pages - self.pages_scraped, 0)

    def options(self, accept: str = HTML_ACCEPT) -> FetchOptions:
        crawl_config = self.source.crawl_config
        retry_attempts = crawl_config.retry_attempts
        return FetchOptions(
            timeout_ms=crawl_config.timeout_ms or self.config.fetch_timeout_ms,
            user_agent=crawl_config.user_agent or self.config.user_agent,
            accept=accept,
            retry_attempts=(
                retry_attempts if retry_attempts is not None else self.config.fetch_retry_attempts
            ),
        )

    async def fetch(self, url: str, accept: str = HTML_ACCEPT) -> FetchedPage:
        """Fetch one page within this crawl's budget.

        Raises:
            CrawlCancelledError: If the job was cancelled since the last fetch
            FetchError: On network failure, timeout or non-2xx status
        """
        if self.cancel_check:
            self.cancel_check()

        if self.remaining_pages <= 0:
            raise FetchError("Page budget exhausted", url=url, context={"max_pages": self.max_pages})

        delay_ms = self.source.crawl_config.delay_ms
        if self.pages_scraped and delay_ms:
            await asyncio.sleep(delay_ms / 1000)

        page = await self.fetcher.fetch(url, self.options(accept))
        self.pages_scraped += 1
        return page
