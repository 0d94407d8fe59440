"""
Bounded pool of headless Chromium browsers.

Each ``page()`` call launches a browser under the pool's semaphore and
closes it on exit, whether the caller succeeded or raised.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Page, async_playwright

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]


class BrowserPool:
    """Hands out Playwright pages, at most ``max_browsers`` at a time."""

    def __init__(self, max_browsers: int = 2, viewport_width: int = 1920, viewport_height: int = 1080):
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self._semaphore = asyncio.Semaphore(max_browsers)

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """
        Launch a browser and yield a fresh page with the pool's viewport.

        Usage:
            async with pool.page() as page:
                await page.goto(url)
        """
        async with self._semaphore:
            async with async_playwright() as playwright:
                browser = await playwright.chromium.launch(headless=True, args=CHROMIUM_ARGS)
                logger.debug("Browser launched")
                try:
                    context = await browser.new_context(viewport=self.viewport)
                    yield await context.new_page()
                finally:
                    await browser.close()
                    logger.debug("Browser closed")


_pool: Optional[BrowserPool] = None


def get_browser_pool() -> BrowserPool:
    """Get or create the process-wide browser pool."""
    global _pool
    if _pool is None:
        from prcast.config import settings
        _pool = BrowserPool(
            max_browsers=settings.max_browsers,
            viewport_width=settings.viewport_width,
            viewport_height=settings.viewport_height,
        )
    return _pool
