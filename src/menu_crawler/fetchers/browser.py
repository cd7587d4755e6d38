# src/menu_crawler/fetchers/browser.py
from __future__ import annotations

import asyncio
import logging
import random
from typing import Optional

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from menu_crawler.errors import NavigationError

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

# Runs before any page script. Hides the usual headless giveaways.
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['de-DE', 'de', 'en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = window.chrome || { runtime: {} };
"""


def pick_user_agent() -> str:
    return USER_AGENTS[random.randrange(len(USER_AGENTS))]


class BrowserSession:
    """
    Owns the one Chromium process shared by every worker.
    - Launched lazily on first acquire(); concurrent callers wait on a lock
    - Each page gets its own context with a random user agent
    - shutdown() is safe to call any number of times
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        navigation_timeout_seconds: int = 30,
        render_timeout_seconds: int = 10,
    ) -> None:
        self._headless = headless
        self._timeout = navigation_timeout_seconds * 1000  # Playwright uses milliseconds
        self._render_timeout = render_timeout_seconds * 1000
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self._refs = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    @property
    def pages_in_use(self) -> int:
        return self._refs

    async def __aenter__(self) -> "BrowserSession":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    @retry(
        reraise=True,
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(PlaywrightError),
    )
    async def _launch(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self._headless, args=LAUNCH_ARGS)

    async def acquire(self) -> Browser:
        """Return the shared browser, launching it if this is the first call."""
        if self._browser is not None:
            return self._browser
        async with self._lock:
            if self._browser is None:
                self._browser = await self._launch()
                logger.info("Browser launched (headless=%s)", self._headless)
        return self._browser

    async def open_page(self) -> Page:
        browser = await self.acquire()
        user_agent = pick_user_agent()
        context = await browser.new_context(
            viewport={"width": 1920, "height": 1080},
            user_agent=user_agent,
            extra_http_headers={"Accept-Ranges": "none"},
        )
        await context.add_init_script(STEALTH_SCRIPT)
        page = await context.new_page()
        page.set_default_timeout(self._timeout)
        self._refs += 1
        logger.debug("Opened page with user agent %r", user_agent)
        return page

    async def navigate(self, page: Page, url: str) -> None:
        """
        Load `url` and wait for both the load event and network idle.
        Raises NavigationError; the caller fails the job instead of crashing.
        """
        try:
            await page.goto(url, timeout=self._timeout, wait_until="load")
            await page.wait_for_load_state("networkidle", timeout=self._timeout)
        except PlaywrightError as e:
            logger.error("Error navigating to %s: %s", url, e)
            raise NavigationError(url, str(e).splitlines()[0] if str(e) else type(e).__name__) from e

    async def wait_for_body(self, page: Page) -> None:
        try:
            await page.wait_for_selector("body", timeout=self._render_timeout)
        except PlaywrightTimeoutError:
            logger.warning("Page load timeout waiting for <body> on %s", page.url)

    async def close_page(self, page: Optional[Page]) -> None:
        if page is None:
            return
        self._refs = max(0, self._refs - 1)
        try:
            await page.context.close()
        except PlaywrightError as e:
            logger.error("Error closing page: %s", e)

    async def shutdown(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        self._refs = 0
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.error("Error closing browser: %s", e)
        if playwright is not None:
            await playwright.stop()
        if browser is not None:
            logger.info("Browser closed")
