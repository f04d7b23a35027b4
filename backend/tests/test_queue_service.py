import asyncio

import pytest

from nipr_report.application.services import JobApplicationService, QueueProcessingService, ReportUploadService
from nipr_report.automation.concurrency import ConcurrencyManager
from nipr_report.domain.errors import InputValidationError
from nipr_report.domain.models import AutomationResult, JobData, JobRecord
from tests.fakes import FakeSession, StubAnalyzer


class QueueStore:
    def __init__(self, jobs: list[JobData]):
        self.jobs = list(jobs)
        self.created: list = []
        self.released_with: list[int] = []

    def create_job(self, *, user_id, lookup) -> JobRecord:
        self.created.append((user_id, lookup))
        return JobRecord(job_id="job_new", user_id=user_id, status="queued", message="Waiting in queue...")

    def queue_position(self, job_id: str) -> int | None:
        return 3

    def acquire_job(self) -> JobData | None:
        return self.jobs.pop(0) if self.jobs else None

    def release_stale_locks(self, *, max_age_ms: int) -> int:
        self.released_with.append(max_age_ms)
        return 0


class RecordingPipeline:
    def __init__(self):
        self.executed: list[JobData] = []

    async def execute(self, job: JobData) -> AutomationResult:
        self.executed.append(job)
        return AutomationResult(success=True, message="Report retrieved successfully", files=["/x/report.pdf"])


def _job() -> JobData:
    return JobData(job_id="job_q1", job_user_id="user_1", last_name="Agent", license_number="1", ssn_last4="1234", dob="01/02/1980")


def test_submit_validates_and_queues():
    store = QueueStore([])
    service = JobApplicationService(store=store)

    data = service.submit(user_id="user_1", last_name="Agent", license_number="1234567", ssn_last4="6789", dob="01/02/1980")

    assert data == {"jobId": "job_new", "status": "queued", "position": 3, "message": "Waiting in queue..."}
    with pytest.raises(InputValidationError):
        service.submit(user_id=None, last_name="Agent", license_number=None, ssn_last4="6789", dob="01/02/1980")
    assert len(store.created) == 1


def test_process_next_runs_the_oldest_job():
    store = QueueStore([_job()])
    pipeline = RecordingPipeline()
    manager = ConcurrencyManager(max_concurrent=2, job_timeout_ms=60_000)
    service = QueueProcessingService(store=store, pipeline=pipeline, manager=manager, stale_lock_ms=600_000)

    summary = service.process_next_blocking()

    assert summary["processed"] is True
    assert summary["jobId"] == "job_q1"
    assert summary["success"] is True
    assert store.released_with == [600_000]
    assert [job.job_id for job in pipeline.executed] == ["job_q1"]


def test_process_next_with_empty_queue():
    service = QueueProcessingService(
        store=QueueStore([]),
        pipeline=RecordingPipeline(),
        manager=ConcurrencyManager(max_concurrent=2, job_timeout_ms=60_000),
        stale_lock_ms=600_000,
    )

    summary = service.process_next_blocking()

    assert summary["processed"] is False
    assert summary["reason"] == "No queued jobs"


def test_process_next_leaves_queue_alone_when_slots_are_full():
    store = QueueStore([_job()])
    manager = ConcurrencyManager(max_concurrent=1, job_timeout_ms=60_000)
    manager.register_job("job_busy", FakeSession(), owner_id=None)
    service = QueueProcessingService(store=store, pipeline=RecordingPipeline(), manager=manager, stale_lock_ms=600_000)

    summary = service.process_next_blocking()

    assert summary["processed"] is False
    assert summary["reason"] == "All browser slots are busy"
    assert len(store.jobs) == 1


def test_upload_service_enforces_size_limit(tmp_path):
    analyzer = StubAnalyzer()
    service = ReportUploadService(analyzer=analyzer, temp_dir=tmp_path, max_bytes=1024 * 1024)

    with pytest.raises(InputValidationError, match="1MB limit"):
        asyncio.run(service.analyze_upload(filename="big.pdf", payload=b"x" * (1024 * 1024 + 1)))
    with pytest.raises(InputValidationError, match="No file provided"):
        asyncio.run(service.analyze_upload(filename="empty.pdf", payload=b""))

    assert analyzer.paths == []
    assert list(tmp_path.iterdir()) == []
