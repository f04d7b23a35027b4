"""Browserbase-hosted sessions driven over CDP.

Downloads in a hosted browser land on the provider's disk, not ours; the
provider exposes them afterwards as a per-session zip package.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from playwright.async_api import Browser, Error as PlaywrightError, Page, Playwright, async_playwright

from nipr_report.domain.errors import LaunchError
from nipr_report.infra.ports.browser import BrowserSession, BrowserSessionFactory

logger = logging.getLogger(__name__)

_API_BASE = "https://api.browserbase.com/v1"


async def request_release(client: httpx.AsyncClient, *, project_id: str, session_id: str) -> None:
    """Ask the provider to end a session now rather than at its idle timeout."""
    try:
        resp = await client.post(
            f"{_API_BASE}/sessions/{session_id}",
            json={"projectId": project_id, "status": "REQUEST_RELEASE"},
        )
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Could not release Browserbase session %s: %s", session_id, exc)


class BrowserbaseSession(BrowserSession):
    kind = "remote"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        project_id: str,
        session_id: str,
        playwright: Playwright,
        browser: Browser,
        page: Page,
    ):
        self._client = client
        self._project_id = project_id
        self._playwright = playwright
        self._browser = browser
        self._page = page
        self._closed = False
        self._close_lock = asyncio.Lock()
        self._download_done = asyncio.Event()
        self.session_id = session_id

    @property
    def page(self) -> Any:
        return self._page

    @property
    def closed(self) -> bool:
        return self._closed

    def on_download_progress(self, params: dict) -> None:
        if params.get("state") == "completed":
            self._download_done.set()

    async def wait_for_download_signal(self, *, timeout_ms: int) -> bool:
        try:
            await asyncio.wait_for(self._download_done.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return False
        return True

    async def fetch_download_package(self) -> bytes | None:
        resp = await self._client.get(f"{_API_BASE}/sessions/{self.session_id}/downloads")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.content or None

    async def close(self) -> None:
        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                logger.warning("Error closing remote browser %s: %s", self.session_id, exc)
            try:
                await self._playwright.stop()
            except PlaywrightError as exc:
                logger.warning("Error stopping playwright for %s: %s", self.session_id, exc)
            try:
                await request_release(self._client, project_id=self._project_id, session_id=self.session_id)
            finally:
                await self._client.aclose()
            logger.info("Closed remote browser session %s", self.session_id)


class BrowserbaseFactory(BrowserSessionFactory):
    def __init__(
        self,
        *,
        api_key: str,
        project_id: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.project_id = project_id
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def open(self, *, request_id: str) -> BrowserSession:
        client = httpx.AsyncClient(
            headers={"X-BB-API-Key": self.api_key},
            timeout=self.timeout_seconds,
            transport=self.transport,
        )
        try:
            resp = await client.post(
                f"{_API_BASE}/sessions",
                json={"projectId": self.project_id, "userMetadata": {"requestId": request_id}},
            )
            resp.raise_for_status()
            created = resp.json()
        except httpx.HTTPError as exc:
            await client.aclose()
            raise LaunchError(
                "Remote browser session could not be created",
                hint="Check BROWSERBASE_API_KEY, BROWSERBASE_PROJECT_ID and the account's session quota",
            ) from exc

        session_id = created["id"]
        playwright = await async_playwright().start()
        browser: Browser | None = None
        try:
            browser = await playwright.chromium.connect_over_cdp(created["connectUrl"])
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = context.pages[0] if context.pages else await context.new_page()
            cdp = await browser.new_browser_cdp_session()
            await cdp.send(
                "Browser.setDownloadBehavior",
                {"behavior": "allow", "downloadPath": "downloads", "eventsEnabled": True},
            )
        except PlaywrightError as exc:
            logger.error("Attach to remote session %s failed: %s", session_id, exc)
            closers = [browser.close, playwright.stop] if browser is not None else [playwright.stop]
            for closer in closers:
                try:
                    await closer()
                except PlaywrightError as close_exc:
                    logger.warning("Error tearing down remote session %s: %s", session_id, close_exc)
            try:
                await request_release(client, project_id=self.project_id, session_id=session_id)
            finally:
                await client.aclose()
            raise LaunchError(f"Could not attach to remote session {session_id}: {exc}") from exc

        session = BrowserbaseSession(
            client=client,
            project_id=self.project_id,
            session_id=session_id,
            playwright=playwright,
            browser=browser,
            page=page,
        )
        cdp.on("Browser.downloadProgress", session.on_download_progress)
        logger.info("Remote browser session %s attached for request %s", session_id, request_id)
        return session
