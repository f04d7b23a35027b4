from __future__ import annotations

import logging
import os
import threading

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from nipr_report.api.v1.dependencies import (
    provide_job_service,
    provide_queue_service,
    provide_store,
    provide_upload_service,
)
from nipr_report.api.v1.schemas.job import (
    JobCreateRequest,
    JobCreateResponse,
    JobDetailResponse,
    JobEventItem,
    JobEventListResponse,
)
from nipr_report.api.v1.schemas.queue import QueueProcessResponse, QueueStatusResponse
from nipr_report.api.v1.schemas.report import ReportAnalysisResponse
from nipr_report.application.services import JobApplicationService, QueueProcessingService, ReportUploadService
from nipr_report.automation.concurrency import get_concurrency_manager
from nipr_report.domain.errors import AnalysisError, InputValidationError
from nipr_report.infra.db.store import DatabaseStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["v1"])


def _start_worker(service: QueueProcessingService) -> None:
    threading.Thread(target=service.process_next_blocking, daemon=True).start()


@router.post("/jobs", response_model=JobCreateResponse)
async def create_job(
    payload: JobCreateRequest,
    service: JobApplicationService = Depends(provide_job_service),
):
    try:
        data = service.submit(
            user_id=payload.userId,
            last_name=payload.lastName,
            license_number=payload.licenseNumber,
            ssn_last4=payload.ssnLast4,
            dob=payload.dob,
        )
    except InputValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc

    if os.getenv("NIPR_AUTO_PROCESS", "1") != "0":
        queue_service = await provide_queue_service()
        _start_worker(queue_service)

    return JobCreateResponse(**data)


@router.get("/jobs/{jobId}", response_model=JobDetailResponse)
async def get_job(jobId: str, store: DatabaseStore = Depends(provide_store)):
    row = store.get_job(jobId)
    if row is None:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobDetailResponse(
        jobId=row.job_id,
        status=row.status,
        progress=row.progress,
        message=row.message,
        errorMessage=row.error_message,
        queuePosition=store.queue_position(jobId) if row.status == "queued" else None,
        files=row.result_files,
        carriers=row.result_carriers,
        licensedStates=row.licensed_states,
        createdAt=row.created_at,
        startedAt=row.started_at,
        completedAt=row.completed_at,
    )


@router.get("/jobs/{jobId}/events", response_model=JobEventListResponse)
async def get_job_events(jobId: str, store: DatabaseStore = Depends(provide_store)):
    if store.get_job(jobId) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    items = [
        JobEventItem(
            status=item.status,
            progress=item.progress,
            message=item.message,
            createdAt=item.created_at,
        )
        for item in store.list_job_events(jobId)
    ]
    return JobEventListResponse(jobId=jobId, events=items)


@router.post("/queue/process", response_model=QueueProcessResponse)
async def process_queue(service: QueueProcessingService = Depends(provide_queue_service)):
    if os.getenv("NIPR_SYNC_PROCESSING") == "1":
        return QueueProcessResponse(**await service.process_next())

    _start_worker(service)
    return QueueProcessResponse(processed=False, started=True, reason="Processing started in background")


@router.get("/queue/status", response_model=QueueStatusResponse)
async def queue_status(store: DatabaseStore = Depends(provide_store)):
    stats = store.queue_stats()
    return QueueStatusResponse(**stats, concurrency=get_concurrency_manager().status())


@router.post("/reports/analyze", response_model=ReportAnalysisResponse)
async def analyze_report(
    file: UploadFile = File(...),
    service: ReportUploadService = Depends(provide_upload_service),
):
    payload = await file.read()
    try:
        data = await service.analyze_upload(filename=file.filename, payload=payload)
    except InputValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except AnalysisError as exc:
        logger.warning("Uploaded report %s could not be analyzed: %s", file.filename, exc.message)
        raise HTTPException(
            status_code=422,
            detail="Failed to analyze PDF. Please ensure it is a valid producer detail report.",
        ) from exc

    return ReportAnalysisResponse(**data)
