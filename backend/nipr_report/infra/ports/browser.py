from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal

SessionKind = Literal["local", "remote"]


class BrowserSession(ABC):
    """One live browser driving the third-party site for a single job."""

    kind: SessionKind = "local"
    session_id: str | None = None

    @property
    @abstractmethod
    def page(self) -> Any:
        """The Playwright page the workflow runs on."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the browser. Safe to call more than once."""

    async def wait_for_download_signal(self, *, timeout_ms: int) -> bool:
        """Wait for the provider to report a finished download. Local sessions see the file directly."""
        return True

    async def fetch_download_package(self) -> bytes | None:
        """Return the provider-side download archive, or None while it is not available."""
        raise NotImplementedError("This session type saves downloads locally.")


class BrowserSessionFactory(ABC):
    @abstractmethod
    async def open(self, *, request_id: str) -> BrowserSession:
        """Start a session, raising LaunchError when the engine cannot start."""
