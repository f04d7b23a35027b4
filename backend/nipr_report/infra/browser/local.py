from __future__ import annotations

import asyncio
import logging
from typing import Any

from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, Playwright, async_playwright

from nipr_report.domain.errors import LaunchError
from nipr_report.infra.ports.browser import BrowserSession, BrowserSessionFactory

logger = logging.getLogger(__name__)


def launch_hint(message: str) -> str | None:
    if "Executable doesn't exist" in message:
        return "Playwright browsers not installed. Please run: playwright install chromium"
    if "Permission denied" in message:
        return "Browser executable permission denied. Please check file permissions."
    if "Host system is missing dependencies" in message:
        return "System libraries are missing. Please run: playwright install-deps chromium"
    return None


async def _shutdown(*closers) -> None:
    for closer in closers:
        try:
            await closer()
        except PlaywrightError as exc:
            logger.warning("Error during browser shutdown: %s", exc)


class LocalBrowserSession(BrowserSession):
    kind = "local"

    def __init__(self, *, playwright: Playwright, browser: Browser, context: BrowserContext, page: Page, request_id: str):
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._closed = False
        self._close_lock = asyncio.Lock()
        self.session_id = request_id

    @property
    def page(self) -> Any:
        return self._page

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            for label, closer in (
                ("context", self._context.close),
                ("browser", self._browser.close),
                ("playwright", self._playwright.stop),
            ):
                try:
                    await closer()
                except PlaywrightError as exc:
                    logger.warning("Error closing %s for session %s: %s", label, self.session_id, exc)
            logger.info("Closed local browser session %s", self.session_id)


class LocalBrowserFactory(BrowserSessionFactory):
    def __init__(self, *, headless: bool = True):
        self.headless = headless

    async def open(self, *, request_id: str) -> BrowserSession:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=self.headless)
        except PlaywrightError as exc:
            await _shutdown(playwright.stop)
            message = str(exc)
            logger.error("Browser launch failed: %s", message)
            raise LaunchError("Browser launch failed", hint=launch_hint(message)) from exc

        try:
            context = await browser.new_context(accept_downloads=True)
            page = await context.new_page()
        except PlaywrightError as exc:
            logger.error("Browser context setup failed for request %s: %s", request_id, exc)
            await _shutdown(browser.close, playwright.stop)
            raise LaunchError("Browser context could not be created") from exc

        logger.info("Browser launched for request %s (headless=%s)", request_id, self.headless)
        return LocalBrowserSession(
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
            request_id=request_id,
        )
