from pydantic import BaseModel


class QueueProcessResponse(BaseModel):
    processed: bool
    started: bool = False
    jobId: str | None = None
    success: bool | None = None
    message: str | None = None
    error: str | None = None
    errorCode: str | None = None
    reason: str | None = None
    cleanedJobs: int = 0
    releasedLocks: int = 0


class ActiveJobItem(BaseModel):
    jobId: str
    userId: str | None = None
    elapsedMs: int


class ConcurrencyStatus(BaseModel):
    activeCount: int
    maxConcurrent: int
    availableSlots: int
    waitingCount: int
    activeJobs: list[ActiveJobItem]


class QueueStatusResponse(BaseModel):
    queued: int
    running: int
    complete: int
    failed: int
    concurrency: ConcurrencyStatus
