"""
In-memory stand-ins for Playwright pages and the browser pool.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    async def count(self) -> int:
        if self.selector in self.page.broken_selectors:
            raise PlaywrightError(f"Invalid selector {self.selector}")
        return 0 if self.selector in self.page.missing_selectors else 1

    async def evaluate(self, expression: str) -> None:
        self.page.scrolled.append(self.selector)


class FakePage:
    """Records navigation, scrolling and screenshots."""

    def __init__(
        self,
        missing_selectors: Optional[List[str]] = None,
        broken_selectors: Optional[List[str]] = None,
        failing_urls: Optional[List[str]] = None,
    ):
        self.missing_selectors = missing_selectors or []
        self.broken_selectors = broken_selectors or []
        self.failing_urls = failing_urls or []
        self.visited: List[str] = []
        self.scrolled: List[str] = []
        self.screenshots: List[str] = []
        self.content: Optional[str] = None
        self.pdf_options: Dict = {}

    async def goto(self, url: str, wait_until: str = "load", timeout: int = 0) -> None:
        if url in self.failing_urls:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.visited.append(url)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def screenshot(self, path: str, full_page: bool = False) -> None:
        Path(path).write_bytes(b"\x89PNG")
        self.screenshots.append(path)

    async def set_content(self, html: str, wait_until: str = "load") -> None:
        self.content = html

    async def pdf(self, path: str, **options) -> None:
        Path(path).write_bytes(b"%PDF-1.4")
        self.pdf_options = options


class FakeBrowserPool:
    def __init__(self, page: Optional[FakePage] = None):
        self.fake_page = page or FakePage()
        self.opened = 0

    @asynccontextmanager
    async def page(self):
        self.opened += 1
        yield self.fake_page
