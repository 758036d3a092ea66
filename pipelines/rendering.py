"""Page rendering and plain HTTP fetching for the crawler.

``PlaywrightRenderer`` drives headless Chromium so client-rendered sites yield
their real content. ``HttpRenderer`` is a plain aiohttp GET for static sites
and environments without a browser. Each crawl worker opens its own session.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiohttp
from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
)

from config.settings import CrawlConfig, DEFAULT_USER_AGENT
from indexer.errors import ConfigurationError, PageFetchError

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """Body and status of a plain HTTP GET."""
    url: str
    status: int
    text: str
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpFetcher:
    """Small aiohttp wrapper used for robots.txt, sitemaps and the HTTP renderer."""

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, timeout: float = 10.0):
        self.user_agent = user_agent
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={'User-Agent': self.user_agent},
            )
        return self.session

    async def fetch(self, url: str) -> FetchResponse:
        """GET ``url``; network errors propagate as aiohttp/asyncio exceptions."""
        session = await self._ensure_session()
        async with session.get(url, allow_redirects=True) as response:
            text = await response.text(errors='replace')
            return FetchResponse(
                url=str(response.url),
                status=response.status,
                text=text,
                content_type=response.headers.get('content-type', ''),
            )

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None


class RenderSession(ABC):
    """One worker's handle on the renderer."""

    @abstractmethod
    async def render(self, url: str) -> str:
        """Return the page markup once content is ready.

        Raises:
            PageFetchError: when no markup can be obtained
        """


class PageRenderer(ABC):
    """Renderer shared by all workers of one crawl."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    def session(self):
        """Async context manager yielding a RenderSession."""

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


class _PlaywrightSession(RenderSession):

    def __init__(self, page: Page, config: CrawlConfig):
        self.page = page
        self.config = config

    async def _wait_for_content(self, url: str):
        timeout_ms = self.config.content_wait_timeout * 1000
        try:
            if self.config.content_wait_selector:
                await self.page.wait_for_selector(self.config.content_wait_selector, timeout=timeout_ms)
            else:
                await self.page.wait_for_load_state('networkidle', timeout=timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning(f"Timeout waiting for page to load: {url}")

    async def render(self, url: str) -> str:
        try:
            response = await self.page.goto(
                url,
                wait_until='domcontentloaded',
                timeout=self.config.navigation_timeout * 1000,
            )
        except Exception as e:
            raise PageFetchError(url, f"navigation failed: {e}") from e

        if response is not None and response.status >= 400:
            raise PageFetchError(url, f"HTTP {response.status}")

        await self._wait_for_content(url)

        try:
            return await self.page.content()
        except Exception as e:
            raise PageFetchError(url, f"could not read page content: {e}") from e


class PlaywrightRenderer(PageRenderer):
    """Headless Chromium renderer.

    Lifecycle:
        - ``start()`` launches the browser (once per crawl)
        - ``session()`` opens an isolated browser context for one worker
        - ``stop()`` closes the browser
    """

    def __init__(self, config: CrawlConfig):
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=True)
        logger.info(
            f"Playwright renderer started (navigation timeout={self.config.navigation_timeout}s, "
            f"content wait={self.config.content_wait_timeout}s)"
        )

    async def stop(self) -> None:
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Playwright renderer stopped")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RenderSession]:
        if not self._browser:
            raise RuntimeError("PlaywrightRenderer not started, call start() first")

        context: BrowserContext = await self._browser.new_context(
            user_agent=self.config.user_agent,
            service_workers='block',
        )
        try:
            page = await context.new_page()
            yield _PlaywrightSession(page, self.config)
        finally:
            await context.close()


class _HttpSession(RenderSession):

    def __init__(self, fetcher: HttpFetcher):
        self.fetcher = fetcher

    async def render(self, url: str) -> str:
        try:
            response = await self.fetcher.fetch(url)
        except Exception as e:
            raise PageFetchError(url, str(e) or type(e).__name__) from e

        if not response.ok:
            raise PageFetchError(url, f"HTTP {response.status}")
        if response.content_type and 'html' not in response.content_type.lower():
            raise PageFetchError(url, f"Non-HTML content type: {response.content_type}")
        return response.text


class HttpRenderer(PageRenderer):
    """No-JavaScript renderer; content readiness waits are no-ops."""

    def __init__(self, config: CrawlConfig):
        self.config = config

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RenderSession]:
        async with HttpFetcher(self.config.user_agent, self.config.navigation_timeout) as fetcher:
            yield _HttpSession(fetcher)


def create_renderer(config: CrawlConfig) -> PageRenderer:
    """Build the renderer named by ``config.renderer``."""
    if config.renderer == 'playwright':
        return PlaywrightRenderer(config)
    if config.renderer == 'http':
        return HttpRenderer(config)
    raise ConfigurationError(f"Unknown renderer '{config.renderer}', expected 'playwright' or 'http'")
