from __future__ import annotations

import asyncio
import io
import logging
import shutil
import time
import zipfile
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from nipr_report.domain.errors import DownloadError, StepTimeoutError
from nipr_report.domain.models import Artifact
from nipr_report.infra.ports.browser import BrowserSession
from nipr_report.infra.ports.storage import StoragePort

logger = logging.getLogger(__name__)

DownloadTrigger = Callable[[], Awaitable[Any]]

REPORT_FILENAME = "report.pdf"
_PACKAGE_FILENAME = "package.zip"


def pick_report_member(names: list[str]) -> str | None:
    """Choose the detail report among the files of a download package."""
    pdfs = [name for name in names if name.lower().endswith(".pdf") and not name.endswith("/")]
    if not pdfs:
        return None
    reports = [name for name in pdfs if "receipt" not in name.lower()]
    candidates = reports or pdfs
    preferred = [name for name in candidates if "detail" in name.lower() or "report" in name.lower()]
    # Most recent download sorts last in the provider's naming scheme.
    return sorted(preferred or candidates)[-1]


class ArtifactRetriever:
    def __init__(
        self,
        *,
        temp_dir: Path,
        storage: StoragePort,
        download_timeout_ms: int = 30_000,
        poll_attempts: int = 15,
        poll_interval_ms: int = 2_000,
    ):
        self.temp_dir = temp_dir
        self.storage = storage
        self.download_timeout_ms = download_timeout_ms
        self.poll_attempts = max(1, poll_attempts)
        self.poll_interval_ms = poll_interval_ms

    def request_dir(self, request_id: str) -> Path:
        return self.temp_dir / request_id

    async def download(self, session: BrowserSession, trigger: DownloadTrigger, *, request_id: str) -> Artifact:
        request_dir = self.request_dir(request_id)
        request_dir.mkdir(parents=True, exist_ok=True)
        dest = request_dir / REPORT_FILENAME

        try:
            if session.kind == "remote":
                await self._download_remote(session, trigger, request_dir, dest)
            else:
                await self._download_local(session.page, trigger, dest)
        except BaseException:
            shutil.rmtree(request_dir, ignore_errors=True)
            raise

        size = dest.stat().st_size
        if size == 0:
            shutil.rmtree(request_dir, ignore_errors=True)
            raise DownloadError("Downloaded report is empty")
        logger.info("Report saved to %s (%.1fKB)", dest, size / 1024)
        return Artifact(path=dest, request_id=request_id, size=size)

    async def _download_local(self, page: Any, trigger: DownloadTrigger, dest: Path) -> None:
        started = time.monotonic()
        try:
            async with page.expect_download(timeout=self.download_timeout_ms) as download_info:
                await trigger()
            download = await download_info.value
        except PlaywrightTimeoutError as exc:
            raise StepTimeoutError("report download", (time.monotonic() - started) * 1000) from exc

        failure = await download.failure()
        if failure:
            raise DownloadError(f"Report download failed: {failure}")
        await download.save_as(dest)

    async def _download_remote(self, session: BrowserSession, trigger: DownloadTrigger, request_dir: Path, dest: Path) -> None:
        started = time.monotonic()
        try:
            await trigger()
        except PlaywrightTimeoutError as exc:
            raise StepTimeoutError("report download", (time.monotonic() - started) * 1000) from exc
        if not await session.wait_for_download_signal(timeout_ms=self.download_timeout_ms):
            logger.warning("No download-complete signal from session %s; polling anyway", session.session_id)

        package_path = request_dir / _PACKAGE_FILENAME
        try:
            for attempt in range(1, self.poll_attempts + 1):
                if await self._try_extract(session, package_path, dest):
                    logger.info("Download package ready after %d attempt(s)", attempt)
                    return
                if attempt < self.poll_attempts:
                    await asyncio.sleep(self.poll_interval_ms / 1000)
        finally:
            package_path.unlink(missing_ok=True)

        total_seconds = self.poll_attempts * self.poll_interval_ms / 1000
        raise DownloadError(
            f"Download package not ready after {self.poll_attempts} attempts ({total_seconds:.0f}s timeout)"
        )

    async def _try_extract(self, session: BrowserSession, package_path: Path, dest: Path) -> bool:
        try:
            payload = await session.fetch_download_package()
        except httpx.HTTPError as exc:
            logger.warning("Download package request failed for session %s: %s", session.session_id, exc)
            return False
        if not payload:
            return False

        package_path.write_bytes(payload)
        try:
            with zipfile.ZipFile(io.BytesIO(payload)) as archive:
                member = pick_report_member(archive.namelist())
                if member is None:
                    return False
                dest.write_bytes(archive.read(member))
        except zipfile.BadZipFile:
            logger.debug("Download package for session %s is not a complete zip yet", session.session_id)
            return False
        return True

    def persist(self, artifact: Artifact, *, job_id: str) -> str:
        key = f"{job_id}/{REPORT_FILENAME}"
        return self.storage.save_file(key, artifact.path)

    def discard(self, artifact: Artifact) -> None:
        try:
            shutil.rmtree(artifact.path.parent)
        except OSError:
            logger.warning("Could not delete temp files for request %s", artifact.request_id, exc_info=True)
