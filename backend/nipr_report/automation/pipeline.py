"""End-to-end retrieval of one producer detail report.

``ReportRetrievalPipeline.execute`` is the failure boundary: whatever happens
inside, the browser session is closed, the concurrency slot is released and
the job ends in exactly one terminal state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from nipr_report.automation.concurrency import ConcurrencyManager
from nipr_report.automation.drivers import DriverFactory
from nipr_report.automation.error_detector import ErrorDetector
from nipr_report.automation.progress import ProgressReporter, ProgressStorePort
from nipr_report.automation.retriever import ArtifactRetriever
from nipr_report.domain.errors import AnalysisError, AutomationError, DuplicateJobError
from nipr_report.domain.models import AnalysisResult, Artifact, AutomationResult, JobData, PurchaseConfig
from nipr_report.domain.progress import ProgressStep
from nipr_report.infra.ports.analyzer import DocumentAnalyzerPort
from nipr_report.infra.ports.browser import BrowserSession, BrowserSessionFactory
from nipr_report.utils.ids import is_tracked_job_id, new_request_id, new_synthetic_job_id

logger = logging.getLogger(__name__)

GENERIC_ERROR_CODE = "AUTOMATION_ERROR"


class JobOutcomeStore(ProgressStorePort, Protocol):
    def complete_job(self, *, job_id: str, files: list[str], carriers: list[str], states: list[str], message: str) -> bool:
        ...

    def fail_job(self, *, job_id: str, error_message: str) -> bool:
        ...


class ReportRetrievalPipeline:
    def __init__(
        self,
        *,
        store: JobOutcomeStore,
        manager: ConcurrencyManager,
        session_factory: BrowserSessionFactory,
        driver_factory: DriverFactory,
        retriever: ArtifactRetriever,
        purchase: PurchaseConfig,
        analyzer: DocumentAnalyzerPort | None = None,
        progress: ProgressReporter | None = None,
        detector: ErrorDetector | None = None,
        entry_url: str,
        step_timeout_ms: int = 30_000,
        payment_settle_ms: int = 3_000,
        admission_timeout_ms: int = 120_000,
    ):
        self.store = store
        self.manager = manager
        self.session_factory = session_factory
        self.driver_factory = driver_factory
        self.retriever = retriever
        self.purchase = purchase
        self.analyzer = analyzer
        self.progress = progress or ProgressReporter(store)
        self.detector = detector or ErrorDetector()
        self.entry_url = entry_url
        self.step_timeout_ms = step_timeout_ms
        self.payment_settle_ms = payment_settle_ms
        self.admission_timeout_ms = admission_timeout_ms

    async def execute(self, job: JobData) -> AutomationResult:
        job_key = job.job_id or new_synthetic_job_id()
        request_id = new_request_id()
        session: BrowserSession | None = None
        artifact: Artifact | None = None
        registered = False
        logger.info("[%s] Starting report retrieval (request %s)", job_key, request_id)

        self.progress.advance(job_key, ProgressStep.STARTING)
        try:
            lookup = job.lookup()
            await self.manager.acquire(job_key, job.job_user_id, timeout_ms=self.admission_timeout_ms)
            registered = True

            self.progress.advance(job_key, ProgressStep.LAUNCHING_BROWSER)
            session = await self.session_factory.open(request_id=request_id)
            self.manager.attach_session(job_key, session)

            driver = self.driver_factory(
                session=session,
                purchase=self.purchase,
                detector=self.detector,
                retriever=self.retriever,
                request_id=request_id,
                entry_url=self.entry_url,
                step_timeout_ms=self.step_timeout_ms,
                payment_settle_ms=self.payment_settle_ms,
            )
            artifact = await driver.run(lookup, lambda step: self.progress.advance(job_key, step))

            # The browser is not needed for analysis; free it early.
            await self._close_session(session, job_key)

            analysis = await self._analyze(job_key, artifact)

            self.progress.advance(job_key, ProgressStep.SAVING_RESULTS)
            url = await asyncio.to_thread(self.retriever.persist, artifact, job_id=job_key)
            files = [url]

            message = "Report retrieved successfully"
            if analysis is not None and analysis.success:
                message = f"{message}; found {len(analysis.unique_carriers)} carriers"

            self.progress.advance(job_key, ProgressStep.COMPLETE)
            await self.progress.flush(job_key)
            if is_tracked_job_id(job_key):
                await asyncio.to_thread(
                    self.store.complete_job,
                    job_id=job_key,
                    files=files,
                    carriers=analysis.unique_carriers if analysis else [],
                    states=analysis.unique_states if analysis else [],
                    message=message,
                )
            logger.info("[%s] Completed: %s", job_key, message)
            return AutomationResult(success=True, message=message, files=files, analysis=analysis)
        except AutomationError as exc:
            logger.error("[%s] Failed (%s): %s", job_key, exc.code, exc.message)
            # A duplicate belongs to a run that is still in flight; leave its record alone.
            persist = not isinstance(exc, DuplicateJobError)
            return await self._fail(job_key, exc.message, exc.code, session=session, persist=persist)
        except Exception as exc:
            logger.exception("[%s] Unexpected automation failure", job_key)
            return await self._fail(job_key, str(exc) or type(exc).__name__, GENERIC_ERROR_CODE, session=session)
        finally:
            if session is not None:
                await self._close_session(session, job_key)
            if registered:
                self.manager.unregister_job(job_key)
            if artifact is not None:
                self.retriever.discard(artifact)
            self.progress.forget(job_key)

    async def _analyze(self, job_key: str, artifact: Artifact) -> AnalysisResult | None:
        if self.analyzer is None:
            return None
        self.progress.advance(job_key, ProgressStep.ANALYZING)
        try:
            return await self.analyzer.analyze(artifact.path)
        except AnalysisError as exc:
            logger.warning("[%s] Report analysis failed: %s", job_key, exc.message)
        except Exception:
            logger.exception("[%s] Report analysis crashed", job_key)
        return AnalysisResult(success=False)

    async def _fail(
        self,
        job_key: str,
        message: str,
        code: str,
        *,
        session: BrowserSession | None,
        persist: bool = True,
    ) -> AutomationResult:
        if session is not None:
            await self._close_session(session, job_key)
        await self.progress.flush(job_key)
        if persist and is_tracked_job_id(job_key):
            try:
                await asyncio.to_thread(self.store.fail_job, job_id=job_key, error_message=message)
            except Exception:
                logger.exception("[%s] Could not persist failed status", job_key)
        return AutomationResult(success=False, message="Report retrieval failed", error=message, error_code=code)

    @staticmethod
    async def _close_session(session: BrowserSession, job_key: str) -> None:
        try:
            await session.close()
        except Exception:
            logger.exception("[%s] Error closing browser session", job_key)
