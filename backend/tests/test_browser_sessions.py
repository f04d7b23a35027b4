import asyncio
import json

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from nipr_report.domain.errors import LaunchError
from nipr_report.infra.browser import local, remote
from nipr_report.infra.browser.local import LocalBrowserFactory, LocalBrowserSession, launch_hint
from nipr_report.infra.browser.remote import BrowserbaseFactory


class Closable:
    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    async def close(self) -> None:
        self.calls += 1
        if self.fail:
            raise PlaywrightError("Target page, context or browser has been closed")

    async def stop(self) -> None:
        self.calls += 1


def test_local_session_close_is_idempotent():
    context, browser, playwright = Closable(fail=True), Closable(), Closable()
    session = LocalBrowserSession(playwright=playwright, browser=browser, context=context, page=object(), request_id="01REQ")

    async def _run() -> None:
        await session.close()
        await session.close()

    asyncio.run(_run())

    assert session.closed
    assert (context.calls, browser.calls, playwright.calls) == (1, 1, 1)


def test_launch_hint_recognizes_missing_browser():
    message = "browserType.launch: Executable doesn't exist at /ms-playwright/chromium/chrome"

    assert "playwright install chromium" in launch_hint(message)
    assert launch_hint("something else entirely") is None


class BrokenBrowser(Closable):
    contexts: list = []

    async def new_context(self, **kwargs):
        raise PlaywrightError("Target page, context or browser has been closed")


class FakeChromium:
    def __init__(self, browser: BrokenBrowser | None = None, attach_error: str | None = None):
        self.browser = browser
        self.attach_error = attach_error

    async def launch(self, **kwargs) -> BrokenBrowser:
        return self.browser

    async def connect_over_cdp(self, url: str) -> BrokenBrowser:
        if self.attach_error:
            raise PlaywrightError(self.attach_error)
        return self.browser


class FakePlaywright(Closable):
    def __init__(self, chromium: FakeChromium):
        super().__init__()
        self.chromium = chromium


class FakePlaywrightStarter:
    def __init__(self, playwright: FakePlaywright):
        self.playwright = playwright

    async def start(self) -> FakePlaywright:
        return self.playwright


def test_local_factory_shuts_down_browser_when_context_setup_fails(monkeypatch):
    browser = BrokenBrowser()
    playwright = FakePlaywright(FakeChromium(browser=browser))
    monkeypatch.setattr(local, "async_playwright", lambda: FakePlaywrightStarter(playwright))

    with pytest.raises(LaunchError):
        asyncio.run(LocalBrowserFactory().open(request_id="01CTX"))

    assert browser.calls == 1
    assert playwright.calls == 1


def test_remote_factory_releases_session_when_attach_fails(monkeypatch):
    requests: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/v1/sessions":
            return httpx.Response(201, json={"id": "bb_123", "connectUrl": "wss://connect.example.test/bb_123"})
        return httpx.Response(200, json={"id": "bb_123", "status": "COMPLETED"})

    playwright = FakePlaywright(FakeChromium(attach_error="WebSocket error: 502 Bad Gateway"))
    monkeypatch.setattr(remote, "async_playwright", lambda: FakePlaywrightStarter(playwright))
    factory = BrowserbaseFactory(api_key="bb_test_key", project_id="proj_123", transport=httpx.MockTransport(_handler))

    with pytest.raises(LaunchError) as excinfo:
        asyncio.run(factory.open(request_id="01ATTACH"))

    assert "bb_123" in excinfo.value.message
    assert playwright.calls == 1
    assert [request.url.path for request in requests] == ["/v1/sessions", "/v1/sessions/bb_123"]
    assert json.loads(requests[-1].content) == {"projectId": "proj_123", "status": "REQUEST_RELEASE"}
