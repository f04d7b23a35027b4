from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from nipr_report.domain.progress import ProgressStep
from nipr_report.utils.ids import is_tracked_job_id

logger = logging.getLogger(__name__)


class ProgressStorePort(Protocol):
    def update_progress(self, *, job_id: str, percent: float, message: str) -> bool:
        ...


class ProgressReporter:
    """Best-effort checkpoint writer.

    ``advance`` never raises and never waits on the database: each write runs
    in a worker thread as its own task, and failures only reach the log.
    """

    def __init__(self, store: ProgressStorePort):
        self.store = store
        self._last_percent: dict[str, int] = {}
        self._pending: dict[str, set[asyncio.Task]] = {}
        self._tail: dict[str, asyncio.Task] = {}

    def last_step_percent(self, job_id: str) -> int | None:
        return self._last_percent.get(job_id)

    def advance(self, job_id: str | None, step: ProgressStep) -> None:
        if not is_tracked_job_id(job_id):
            return

        last = self._last_percent.get(job_id)
        if last is not None and step.percent < last:
            logger.warning("Ignoring out-of-order step %s for job %s (at %d%%)", step.name, job_id, last)
            return
        self._last_percent[job_id] = step.percent
        logger.info("[%s] %d%% %s", job_id, step.percent, step.message)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; progress for job %s not persisted", job_id)
            return
        tasks = self._pending.setdefault(job_id, set())
        # Writes for one job are chained so they land in step order.
        previous = self._tail.get(job_id)
        if previous is not None and previous.done():
            previous = None
        task = loop.create_task(self._persist(job_id, step, previous))
        self._tail[job_id] = task
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def _persist(self, job_id: str, step: ProgressStep, previous: asyncio.Task | None) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        try:
            updated = await asyncio.to_thread(
                self.store.update_progress,
                job_id=job_id,
                percent=float(step.percent),
                message=step.message,
            )
        except Exception:
            logger.exception("Failed to persist progress %s for job %s", step.name, job_id)
            return
        if not updated:
            logger.debug("Progress %s for job %s was not applied", step.name, job_id)

    async def flush(self, job_id: str | None) -> None:
        """Wait for outstanding writes so a terminal status cannot be overtaken."""
        if job_id is None:
            return
        tasks = list(self._pending.get(job_id, ()))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def forget(self, job_id: str | None) -> None:
        if job_id is None:
            return
        self._last_percent.pop(job_id, None)
        self._pending.pop(job_id, None)
        self._tail.pop(job_id, None)
