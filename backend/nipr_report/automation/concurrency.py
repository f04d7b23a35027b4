"""Process-wide registry of running automation jobs.

The registry is shared by every job lifecycle in the process, including
worker threads that each run their own event loop, so all mutation happens
under a ``threading.Lock``. Waiting for a slot suspends with ``asyncio.sleep``.

Duplicate policy: registering a job id that is already active raises
``DuplicateJobError`` and leaves the existing entry untouched. A retried job
must unregister (or be cleaned up) before it can register again.

Each entry remembers the event loop it was registered from. Sessions are
bound to that loop, so cleanup from another worker posts the close back to it.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from nipr_report.core.config import get_settings
from nipr_report.domain.errors import CapacityExceededError, DuplicateJobError
from nipr_report.infra.ports.browser import BrowserSession

logger = logging.getLogger(__name__)


@dataclass
class ActiveJob:
    job_id: str
    owner_id: str | None
    session: BrowserSession | None = None
    loop: asyncio.AbstractEventLoop | None = None
    started_at: float = field(default_factory=time.monotonic)
    closing: bool = False

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class ConcurrencyManager:
    def __init__(
        self,
        *,
        max_concurrent: int,
        job_timeout_ms: int,
        poll_interval_seconds: float = 0.25,
        close_timeout_seconds: float = 15.0,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.job_timeout_ms = job_timeout_ms
        self.poll_interval_seconds = poll_interval_seconds
        self.close_timeout_seconds = close_timeout_seconds
        self._lock = threading.Lock()
        self._active: dict[str, ActiveJob] = {}
        self._waiting: deque[int] = deque()
        self._tickets = itertools.count()
        logger.info("Initialized with max_concurrent=%d, timeout=%dms", max_concurrent, job_timeout_ms)

    def can_start_new_job(self) -> bool:
        with self._lock:
            return len(self._active) < self.max_concurrent

    def available_slots(self) -> int:
        with self._lock:
            return max(0, self.max_concurrent - len(self._active))

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def is_job_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    def active_job_ids(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def register_job(self, job_id: str, session: BrowserSession | None, owner_id: str | None) -> ActiveJob:
        with self._lock:
            entry = self._register_locked(job_id, session, owner_id)
        logger.info("Registered job %s. Active: %d/%d", job_id, self.active_count(), self.max_concurrent)
        return entry

    def _register_locked(self, job_id: str, session: BrowserSession | None, owner_id: str | None) -> ActiveJob:
        if job_id in self._active:
            raise DuplicateJobError(f"Job {job_id} is already running")
        if len(self._active) >= self.max_concurrent:
            raise CapacityExceededError(
                f"All {self.max_concurrent} browser slots are busy; job {job_id} cannot start"
            )
        entry = ActiveJob(job_id=job_id, owner_id=owner_id, session=session, loop=_running_loop())
        self._active[job_id] = entry
        return entry

    def attach_session(self, job_id: str, session: BrowserSession) -> None:
        with self._lock:
            entry = self._active.get(job_id)
            if entry is None:
                raise KeyError(f"Job {job_id} is not registered")
            entry.session = session
            entry.loop = _running_loop() or entry.loop

    def unregister_job(self, job_id: str) -> ActiveJob | None:
        with self._lock:
            entry = self._active.pop(job_id, None)
            remaining = len(self._active)
        if entry is None:
            logger.warning("Attempted to unregister unknown job %s", job_id)
            return None
        logger.info("Unregistered job %s. Active: %d/%d", job_id, remaining, self.max_concurrent)
        return entry

    async def acquire(self, job_id: str, owner_id: str | None, *, timeout_ms: int) -> ActiveJob:
        """Wait in arrival order for a free slot, then register without a session.

        Raises CapacityExceededError if no slot frees up within ``timeout_ms``.
        """
        deadline = time.monotonic() + timeout_ms / 1000
        with self._lock:
            if job_id in self._active:
                raise DuplicateJobError(f"Job {job_id} is already running")
            ticket = next(self._tickets)
            self._waiting.append(ticket)

        try:
            while True:
                with self._lock:
                    if self._waiting[0] == ticket and len(self._active) < self.max_concurrent:
                        self._waiting.popleft()
                        entry = self._register_locked(job_id, None, owner_id)
                        logger.info(
                            "Admitted job %s. Active: %d/%d", job_id, len(self._active), self.max_concurrent
                        )
                        return entry
                if time.monotonic() >= deadline:
                    raise CapacityExceededError(
                        f"No browser slot became free within {timeout_ms / 1000:.0f}s "
                        f"(limit {self.max_concurrent})"
                    )
                await asyncio.sleep(self.poll_interval_seconds)
        except BaseException:
            with self._lock:
                if ticket in self._waiting:
                    self._waiting.remove(ticket)
            raise

    async def cleanup_stuck_jobs(self) -> int:
        """Close and drop jobs that have run longer than the job timeout.

        A slot is only freed once its session has been closed on the event
        loop that owns it. Jobs whose close cannot complete stay registered
        and are retried on the next sweep.
        """
        with self._lock:
            stuck = [
                job
                for job in self._active.values()
                if not job.closing and job.elapsed_ms() > self.job_timeout_ms
            ]
            for job in stuck:
                job.closing = True

        cleaned = 0
        for job in stuck:
            logger.warning("Cleaning up stuck job %s (elapsed: %ds)", job.job_id, job.elapsed_ms() // 1000)
            if await self._close_on_owner_loop(job):
                self._drop(job)
                cleaned += 1

        if stuck:
            logger.info("Cleaned up %d stuck job(s). Active: %d/%d", cleaned, self.active_count(), self.max_concurrent)
        return cleaned

    async def force_cleanup_job(self, job_id: str) -> bool:
        with self._lock:
            job = self._active.get(job_id)
            if job is None or job.closing:
                return False
            job.closing = True
        logger.info("Force cleaning up job %s", job_id)
        if not await self._close_on_owner_loop(job):
            return False
        self._drop(job)
        return True

    def _drop(self, job: ActiveJob) -> None:
        with self._lock:
            if self._active.get(job.job_id) is job:
                del self._active[job.job_id]

    async def _close_on_owner_loop(self, job: ActiveJob) -> bool:
        """Close ``job.session`` on its owning loop; False leaves the slot held."""
        if job.session is None:
            return True

        owner = job.loop
        try:
            if owner is None or owner is _running_loop():
                await job.session.close()
            elif owner.is_closed():
                # The owning worker has exited and its connection went with it.
                logger.info("Owning loop for job %s is closed; nothing left to close", job.job_id)
            else:
                future = asyncio.run_coroutine_threadsafe(job.session.close(), owner)
                await asyncio.wait_for(asyncio.wrap_future(future), timeout=self.close_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Session close for job %s did not finish within %.0fs; keeping its slot",
                job.job_id,
                self.close_timeout_seconds,
            )
            with self._lock:
                job.closing = False
            return False
        except Exception:
            logger.exception("Error closing session for job %s", job.job_id)
        return True

    def status(self) -> dict[str, Any]:
        with self._lock:
            jobs = list(self._active.values())
            waiting = len(self._waiting)
        return {
            "activeCount": len(jobs),
            "maxConcurrent": self.max_concurrent,
            "availableSlots": max(0, self.max_concurrent - len(jobs)),
            "waitingCount": waiting,
            "activeJobs": [
                {"jobId": job.job_id, "userId": job.owner_id, "elapsedMs": job.elapsed_ms()} for job in jobs
            ],
        }


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@lru_cache(maxsize=1)
def get_concurrency_manager() -> ConcurrencyManager:
    settings = get_settings()
    return ConcurrencyManager(
        max_concurrent=settings.max_concurrent_browsers,
        job_timeout_ms=settings.job_timeout_ms,
    )
