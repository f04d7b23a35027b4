from pydantic import BaseModel


class JobCreateRequest(BaseModel):
    lastName: str | None = None
    licenseNumber: str | None = None
    ssnLast4: str | None = None
    dob: str | None = None
    userId: str | None = None


class JobCreateResponse(BaseModel):
    jobId: str
    status: str
    position: int | None = None
    message: str | None = None


class JobDetailResponse(BaseModel):
    jobId: str
    status: str
    progress: float = 0.0
    message: str | None = None
    errorMessage: str | None = None
    queuePosition: int | None = None
    files: list[str] = []
    carriers: list[str] = []
    licensedStates: list[str] = []
    createdAt: str | None = None
    startedAt: str | None = None
    completedAt: str | None = None


class JobEventItem(BaseModel):
    status: str
    progress: float = 0.0
    message: str | None = None
    createdAt: str


class JobEventListResponse(BaseModel):
    jobId: str
    events: list[JobEventItem]
