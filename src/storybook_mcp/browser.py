"""Shared headless Chromium session.

One browser process is launched lazily on first use and reused by every
capture; each capture gets its own page, closed when the capture ends.
``close()`` shuts the browser down, and the next ``acquire()`` simply
launches a fresh one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from playwright.async_api import Browser, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)

# Sandboxing and GPU off so Chromium runs inside containers and CI
LAUNCH_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
)


class BrowserSession:
    """Owns zero or one Chromium process.

    Args:
        headless: Run Chromium without a window.
        launch_args: Extra command-line flags for Chromium.
    """

    def __init__(
        self,
        headless: bool = True,
        launch_args: tuple[str, ...] = LAUNCH_ARGS,
    ) -> None:
        self.headless = headless
        self.launch_args = launch_args
        self.launch_count = 0
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def acquire(self) -> Browser:
        """Return the shared browser, launching it if needed."""
        async with self._lock:
            if self._browser is not None:
                if self._browser.is_connected():
                    return self._browser
                logger.warning("Browser disconnected, relaunching")
                await self._teardown()

            logger.info("Launching Chromium browser...")
            playwright = await async_playwright().start()
            try:
                browser = await playwright.chromium.launch(
                    headless=self.headless,
                    args=list(self.launch_args),
                )
            except Exception:
                await playwright.stop()
                raise
            self._playwright = playwright
            self._browser = browser
            self.launch_count += 1
            logger.info("Browser launched successfully")
            return browser

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Open a page scoped to the ``async with`` block."""
        browser = await self.acquire()
        page = await browser.new_page()
        try:
            yield page
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.warning(f"Failed to close page: {e}")

    async def close(self) -> None:
        """Shut the browser down. No-op when nothing is open."""
        async with self._lock:
            if self._browser is None and self._playwright is None:
                return
            await self._teardown()
            logger.info("Browser closed")

    async def _teardown(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if playwright is not None:
                await playwright.stop()
