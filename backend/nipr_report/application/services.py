from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Protocol

from nipr_report.automation.concurrency import ConcurrencyManager
from nipr_report.automation.pipeline import ReportRetrievalPipeline
from nipr_report.domain.errors import AnalysisError, InputValidationError
from nipr_report.domain.models import JobData, JobRecord, LookupInput
from nipr_report.infra.ports.analyzer import DocumentAnalyzerPort
from nipr_report.utils.ids import new_request_id

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class JobSubmissionStorePort(Protocol):
    def create_job(self, *, user_id: str | None, lookup: LookupInput) -> JobRecord:
        ...

    def queue_position(self, job_id: str) -> int | None:
        ...


class JobQueueStorePort(Protocol):
    def acquire_job(self) -> JobData | None:
        ...

    def release_stale_locks(self, *, max_age_ms: int) -> int:
        ...


class JobApplicationService:
    def __init__(self, *, store: JobSubmissionStorePort):
        self.store = store

    def submit(
        self,
        *,
        user_id: str | None,
        last_name: str | None,
        license_number: str | None,
        ssn_last4: str | None,
        dob: str | None,
    ) -> dict[str, Any]:
        """Validate the lookup fields and queue a job. Raises InputValidationError."""
        lookup = LookupInput.build(
            last_name=last_name,
            license_number=license_number,
            ssn_last4=ssn_last4,
            dob=dob,
        )
        record = self.store.create_job(user_id=user_id, lookup=lookup)
        position = self.store.queue_position(record.job_id)
        logger.info("Queued job %s at position %s", record.job_id, position)
        return {
            "jobId": record.job_id,
            "status": record.status,
            "position": position,
            "message": record.message,
        }


class QueueProcessingService:
    def __init__(
        self,
        *,
        store: JobQueueStorePort,
        pipeline: ReportRetrievalPipeline,
        manager: ConcurrencyManager,
        stale_lock_ms: int,
    ):
        self.store = store
        self.pipeline = pipeline
        self.manager = manager
        self.stale_lock_ms = stale_lock_ms

    async def process_next(self) -> dict[str, Any]:
        cleaned = await self.manager.cleanup_stuck_jobs()
        released = await asyncio.to_thread(self.store.release_stale_locks, max_age_ms=self.stale_lock_ms)
        if released:
            logger.warning("Released %d stale job lock(s)", released)

        summary: dict[str, Any] = {"processed": False, "cleanedJobs": cleaned, "releasedLocks": released}
        if not self.manager.can_start_new_job():
            summary["reason"] = "All browser slots are busy"
            return summary

        job = await asyncio.to_thread(self.store.acquire_job)
        if job is None:
            summary["reason"] = "No queued jobs"
            return summary

        logger.info("Processing job %s", job.job_id)
        result = await self.pipeline.execute(job)
        summary.update(
            processed=True,
            jobId=job.job_id,
            success=result.success,
            message=result.message,
            error=result.error,
            errorCode=result.error_code,
        )
        return summary

    def process_next_blocking(self) -> dict[str, Any]:
        """Entry point for worker threads, each with its own event loop."""
        try:
            return asyncio.run(self.process_next())
        except Exception:
            logger.exception("Queue processing run crashed")
            raise


class ReportUploadService:
    """Analyze a detail report the user already downloaded, without automation."""

    def __init__(self, *, analyzer: DocumentAnalyzerPort, temp_dir: Path, max_bytes: int = MAX_UPLOAD_BYTES):
        self.analyzer = analyzer
        self.temp_dir = temp_dir
        self.max_bytes = max_bytes

    def validate(self, *, filename: str | None, payload: bytes) -> None:
        if not filename or not payload:
            raise InputValidationError("No file provided")
        if not filename.lower().endswith(".pdf"):
            raise InputValidationError("Only PDF files are accepted")
        if len(payload) > self.max_bytes:
            raise InputValidationError(f"File size exceeds {self.max_bytes // (1024 * 1024)}MB limit")

    async def analyze_upload(self, *, filename: str | None, payload: bytes) -> dict[str, Any]:
        self.validate(filename=filename, payload=payload)
        logger.info("Received upload %s (%.1fKB)", filename, len(payload) / 1024)

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        temp_path = self.temp_dir / f"upload_{new_request_id()}.pdf"
        started = time.monotonic()
        try:
            temp_path.write_bytes(payload)
            result = await self.analyzer.analyze(temp_path)
        finally:
            temp_path.unlink(missing_ok=True)
        duration = time.monotonic() - started

        if not result.success:
            raise AnalysisError("The report could not be analyzed")
        logger.info("Upload %s analyzed in %.1fs: %d carriers", filename, duration, len(result.unique_carriers))

        return {
            "success": True,
            "message": "Successfully analyzed producer detail report",
            "analysis": {
                "carriers": result.unique_carriers,
                "uniqueStates": result.unique_states,
                "licensedStates": {
                    "resident": result.resident_states,
                    "nonResident": result.non_resident_states,
                },
                "analyzedAt": result.analyzed_at,
            },
            "metrics": {
                "durationSeconds": round(duration, 1),
                "carriersFound": len(result.unique_carriers),
                "residentStates": len(result.resident_states),
                "nonResidentStates": len(result.non_resident_states),
            },
        }
