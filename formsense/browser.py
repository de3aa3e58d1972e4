"""Live browser page prepared for form detection.

The page gets its mutation observer and response listener before the first
navigation so that forms rendered during load are already observed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .network_capture import NetworkCapture
from .playwright_host import PlaywrightChangeFeed, attach_network_capture


@dataclass(slots=True)
class BrowserConfig:
    headless: bool = True
    navigation_timeout_ms: int = 45000
    load_timeout_ms: int = 20000
    viewport_width: int = 1280
    viewport_height: int = 720


class DetectionBrowser:
    """Async context manager owning one page with change and response feeds attached."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        *,
        network: Optional[NetworkCapture] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or BrowserConfig()
        self.logger = logger or logging.getLogger("formsense.browser")
        self.network = network or NetworkCapture(logger=self.logger.getChild("network"))
        self.feed: Optional[PlaywrightChangeFeed] = None
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._detach_network: Optional[Callable[[], None]] = None

    async def __aenter__(self) -> "DetectionBrowser":
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.config.headless)
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height}
        )
        page = await self._context.new_page()
        page.set_default_navigation_timeout(self.config.navigation_timeout_ms)
        self._page = page

        self._detach_network = attach_network_capture(page, self.network)
        self.feed = PlaywrightChangeFeed(page, logger=self.logger.getChild("feed"))
        await self.feed.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def page(self) -> Page:
        if not self._page:
            raise RuntimeError("DetectionBrowser is not started")
        return self._page

    async def open(self, url: str) -> Page:
        """Navigate and wait for load, settling for DOMContentLoaded on timeout."""
        page = self.page
        timeout = self.config.load_timeout_ms
        self.logger.info("Navigating to %s", url)
        try:
            await page.goto(url, wait_until="load", timeout=timeout)
        except PlaywrightTimeoutError:
            self.logger.debug("load timed out for %s, retrying with domcontentloaded", url)
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
            return page
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout)
        except PlaywrightTimeoutError:
            self.logger.debug("network did not go idle on %s", url)
        return page

    async def save_html(self, path: Path) -> Path:
        html = await self.page.content()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
        return path

    async def close(self) -> None:
        if self._detach_network:
            await self.network.drain()
            self._detach_network()
            self._detach_network = None
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self._page = None
        self.feed = None
