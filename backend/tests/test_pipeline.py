import asyncio
import io
import zipfile
from pathlib import Path

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from nipr_report.automation.concurrency import ConcurrencyManager
from nipr_report.automation.drivers.base import WorkflowDriver
from nipr_report.automation.pipeline import ReportRetrievalPipeline
from nipr_report.automation.progress import ProgressReporter
from nipr_report.automation.retriever import ArtifactRetriever
from nipr_report.core.config import load_purchase_config
from nipr_report.domain.errors import AnalysisError, LaunchError
from nipr_report.domain.models import JobData
from nipr_report.infra.storage.local import LocalFileStorage
from tests.fakes import (
    FakeDownload,
    FakeElement,
    FakePage,
    FakeRemoteSession,
    FakeSession,
    FakeSessionFactory,
    RecordingStore,
    StubAnalyzer,
)

PDF_BYTES = b"%PDF-1.4\n% detail report\n"


def _zip_with_report() -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("PDB_Detail_Report.pdf", PDF_BYTES)
    return buf.getvalue()


class ScriptedDriver(WorkflowDriver):
    """Runs the real step sequence with page interactions stubbed out."""

    strategy = "scripted"
    calls: list[str] = []

    async def open_entry(self) -> None:
        self.calls.append("open_entry")

    async def submit_lookup(self, lookup) -> None:
        self.calls.append("submit_lookup")

    async def submit_identity(self, lookup) -> None:
        self.calls.append("submit_identity")

    async def select_report(self) -> None:
        self.calls.append("select_report")

    async def fill_billing(self, billing) -> None:
        self.calls.append("fill_billing")

    async def submit_payment(self, payment) -> None:
        self.calls.append("submit_payment")

    async def download_trigger(self):
        self.calls.append("download_trigger")

        async def _trigger() -> None:
            return None

        return _trigger


def _job(job_id: str | None = "job_test") -> JobData:
    return JobData(
        job_id=job_id,
        job_user_id="user_1",
        last_name="Agent",
        license_number="1234567",
        ssn_last4="6789",
        dob="01/02/1980",
    )


def _pipeline(
    tmp_path: Path,
    *,
    session_factory: FakeSessionFactory,
    store: RecordingStore,
    manager: ConcurrencyManager | None = None,
    analyzer: StubAnalyzer | None = None,
    poll_attempts: int = 3,
    admission_timeout_ms: int = 1_000,
    driver_factory: type[WorkflowDriver] | None = None,
) -> ReportRetrievalPipeline:
    ScriptedDriver.calls = []
    retriever = ArtifactRetriever(
        temp_dir=tmp_path / "tmp",
        storage=LocalFileStorage(tmp_path / "out"),
        download_timeout_ms=100,
        poll_attempts=poll_attempts,
        poll_interval_ms=0,
    )
    return ReportRetrievalPipeline(
        store=store,
        manager=manager or ConcurrencyManager(max_concurrent=2, job_timeout_ms=60_000, poll_interval_seconds=0.01),
        session_factory=session_factory,
        driver_factory=driver_factory or ScriptedDriver,
        retriever=retriever,
        purchase=load_purchase_config(),
        analyzer=analyzer,
        progress=ProgressReporter(store),
        entry_url="https://pdb.example.test/user-menu",
        step_timeout_ms=100,
        payment_settle_ms=0,
        admission_timeout_ms=admission_timeout_ms,
    )


def test_happy_path_completes_with_one_file_and_analysis(tmp_path: Path):
    store = RecordingStore()
    session = FakeRemoteSession([_zip_with_report()])
    manager = ConcurrencyManager(max_concurrent=2, job_timeout_ms=60_000)
    analyzer = StubAnalyzer()
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store, manager=manager, analyzer=analyzer)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is True
    assert result.files == ["/nipr-downloads/job_test/report.pdf"]
    assert result.analysis is not None
    assert result.analysis.unique_carriers == ["Acme Life Insurance Company"]
    assert (tmp_path / "out" / "job_test" / "report.pdf").read_bytes() == PDF_BYTES

    percents = [percent for _, percent, _ in store.progress]
    assert percents == sorted(percents)
    assert percents[-1] == 100.0
    assert len(store.completed) == 1
    assert store.completed[0]["carriers"] == ["Acme Life Insurance Company"]
    assert store.completed[0]["states"] == ["TX", "OK"]
    assert store.failed == []

    assert session.close_calls >= 1
    assert session.closed
    assert manager.active_count() == 0
    assert list((tmp_path / "tmp").iterdir()) == []


def test_lookup_rejection_fails_with_site_message(tmp_path: Path):
    store = RecordingStore()
    page = FakePage(containers={".alert-danger": [FakeElement("No record found for license number")]})
    session = FakeRemoteSession([_zip_with_report()], page=page)
    manager = ConcurrencyManager(max_concurrent=2, job_timeout_ms=60_000)
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store, manager=manager)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is False
    assert result.error == "No record found for license number"
    assert result.error_code == "LOOKUP_REJECTED"
    assert result.files == []
    assert store.failed == [("job_test", "No record found for license number")]
    assert store.completed == []

    assert "submit_identity" not in ScriptedDriver.calls
    assert "download_trigger" not in ScriptedDriver.calls
    assert session.fetches == 0
    assert session.closed
    assert manager.active_count() == 0

    percents = [percent for _, percent, _ in store.progress]
    assert percents == sorted(percents)
    assert percents[-1] == 20.0


def test_download_timeout_names_the_bound_and_leaves_no_archive(tmp_path: Path):
    store = RecordingStore()
    session = FakeRemoteSession([None])
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store, poll_attempts=2)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is False
    assert result.error_code == "DOWNLOAD_FAILED"
    assert "2 attempts" in result.error
    assert session.fetches == 2
    assert len(store.failed) == 1
    assert not list((tmp_path / "tmp").rglob("package.zip"))
    assert not (tmp_path / "out" / "job_test").exists()


def test_job_beyond_capacity_is_rejected_without_touching_running_jobs(tmp_path: Path):
    store = RecordingStore()
    running_session = FakeSession()
    manager = ConcurrencyManager(max_concurrent=1, job_timeout_ms=60_000, poll_interval_seconds=0.01)
    manager.register_job("job_running", running_session, owner_id="user_2")
    factory = FakeSessionFactory(FakeSession())
    pipeline = _pipeline(tmp_path, session_factory=factory, store=store, manager=manager, admission_timeout_ms=50)

    result = asyncio.run(pipeline.execute(_job("job_waiting")))

    assert result.success is False
    assert result.error_code == "CAPACITY_EXCEEDED"
    assert factory.opened == 0
    assert manager.active_job_ids() == ["job_running"]
    assert running_session.close_calls == 0
    assert store.failed and store.failed[0][0] == "job_waiting"


def test_duplicate_job_does_not_fail_the_running_record(tmp_path: Path):
    store = RecordingStore()
    manager = ConcurrencyManager(max_concurrent=2, job_timeout_ms=60_000)
    manager.register_job("job_test", FakeSession(), owner_id=None)
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(FakeSession()), store=store, manager=manager)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.error_code == "DUPLICATE_JOB"
    assert store.failed == []
    assert manager.is_job_active("job_test")


def test_launch_failure_is_reported_with_hint(tmp_path: Path):
    store = RecordingStore()
    error = LaunchError("Browser launch failed", hint="Please run: playwright install chromium")
    manager = ConcurrencyManager(max_concurrent=1, job_timeout_ms=60_000)
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(error=error), store=store, manager=manager)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.error_code == "LAUNCH_FAILED"
    assert "playwright install chromium" in result.error
    assert manager.active_count() == 0


def test_invalid_input_fails_before_admission(tmp_path: Path):
    store = RecordingStore()
    factory = FakeSessionFactory(FakeSession())
    pipeline = _pipeline(tmp_path, session_factory=factory, store=store)
    job = JobData(job_id="job_bad", job_user_id=None, last_name="Agent", license_number="12AB", ssn_last4="6789", dob="01/02/1980")

    result = asyncio.run(pipeline.execute(job))

    assert result.error_code == "INVALID_INPUT"
    assert factory.opened == 0
    assert store.failed == [("job_bad", "License number (NPN) must be numeric")]


def test_analysis_failure_is_not_fatal(tmp_path: Path):
    store = RecordingStore()
    session = FakeRemoteSession([_zip_with_report()])
    analyzer = StubAnalyzer(error=AnalysisError("No text could be extracted from the report"))
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store, analyzer=analyzer)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is True
    assert result.analysis is not None and result.analysis.success is False
    assert store.completed[0]["carriers"] == []


def test_adhoc_runs_skip_persistence(tmp_path: Path):
    store = RecordingStore()
    session = FakeRemoteSession([_zip_with_report()])
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store)

    result = asyncio.run(pipeline.execute(_job(job_id=None)))

    assert result.success is True
    assert result.files[0].startswith("/nipr-downloads/adhoc_")
    assert store.progress == []
    assert store.completed == []


def test_session_close_is_idempotent_across_failure_paths(tmp_path: Path):
    store = RecordingStore()
    page = FakePage(containers={".alert-danger": [FakeElement("The information does not match our records")]})
    session = CountingRemoteSession(page=page)
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store)

    result = asyncio.run(pipeline.execute(_job()))
    asyncio.run(session.close())

    assert result.success is False
    assert session.close_calls >= 2
    assert session.real_closes == 1


class CountingRemoteSession(FakeRemoteSession):
    """Mimics the adapters: repeated close calls release resources once."""

    def __init__(self, page=None):
        super().__init__([None], page=page)
        self.real_closes = 0

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        self.real_closes += 1


class BillingTimesOutDriver(ScriptedDriver):
    async def fill_billing(self, billing) -> None:
        self.calls.append("fill_billing")
        raise PlaywrightTimeoutError("Timeout 100ms exceeded.")


class IdentityRejectedDriver(ScriptedDriver):
    async def submit_identity(self, lookup) -> None:
        self.calls.append("submit_identity")
        self.page.containers[".alert-danger"] = [FakeElement("The information does not match our records")]


def test_playwright_timeout_becomes_step_timeout_with_step_name(tmp_path: Path):
    store = RecordingStore()
    session = FakeRemoteSession([_zip_with_report()])
    manager = ConcurrencyManager(max_concurrent=1, job_timeout_ms=60_000)
    pipeline = _pipeline(
        tmp_path,
        session_factory=FakeSessionFactory(session),
        store=store,
        manager=manager,
        driver_factory=BillingTimesOutDriver,
    )

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is False
    assert result.error_code == "STEP_TIMEOUT"
    assert "billing form" in result.error
    assert result.error.startswith("Timed out after ")
    assert "submit_payment" not in ScriptedDriver.calls
    assert store.failed == [("job_test", result.error)]
    assert [percent for _, percent, _ in store.progress][-1] == 55.0
    assert session.closed
    assert manager.active_count() == 0


def test_identity_rejection_stops_before_report_selection(tmp_path: Path):
    store = RecordingStore()
    session = FakeRemoteSession([_zip_with_report()])
    manager = ConcurrencyManager(max_concurrent=1, job_timeout_ms=60_000)
    pipeline = _pipeline(
        tmp_path,
        session_factory=FakeSessionFactory(session),
        store=store,
        manager=manager,
        driver_factory=IdentityRejectedDriver,
    )

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is False
    assert result.error_code == "VERIFICATION_REJECTED"
    assert result.error == "The information does not match our records"
    assert ScriptedDriver.calls == ["open_entry", "submit_lookup", "submit_identity"]
    assert store.failed == [("job_test", "The information does not match our records")]
    assert [percent for _, percent, _ in store.progress][-1] == 30.0
    assert session.fetches == 0
    assert session.closed
    assert manager.active_count() == 0


def test_local_session_downloads_through_the_browser(tmp_path: Path):
    store = RecordingStore()
    page = FakePage()
    page.download = FakeDownload(PDF_BYTES)
    session = FakeSession(page=page)
    pipeline = _pipeline(tmp_path, session_factory=FakeSessionFactory(session), store=store)

    result = asyncio.run(pipeline.execute(_job()))

    assert result.success is True
    assert result.files == ["/nipr-downloads/job_test/report.pdf"]
    assert (tmp_path / "out" / "job_test" / "report.pdf").read_bytes() == PDF_BYTES
    assert ("expect_download", 100) in page.actions
    assert session.closed
    assert list((tmp_path / "tmp").iterdir()) == []
