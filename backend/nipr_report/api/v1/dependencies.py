from __future__ import annotations

from functools import lru_cache

from nipr_report.application.services import JobApplicationService, QueueProcessingService, ReportUploadService
from nipr_report.automation.action_executor import SemanticActionExecutor
from nipr_report.automation.analyzer import ReportAnalyzer
from nipr_report.automation.concurrency import get_concurrency_manager
from nipr_report.automation.drivers import driver_factory
from nipr_report.automation.pipeline import ReportRetrievalPipeline
from nipr_report.automation.progress import ProgressReporter
from nipr_report.automation.retriever import ArtifactRetriever
from nipr_report.core.config import get_settings, load_purchase_config
from nipr_report.domain.errors import ConfigurationError
from nipr_report.infra.browser.local import LocalBrowserFactory
from nipr_report.infra.browser.remote import BrowserbaseFactory
from nipr_report.infra.db.store import DatabaseStore
from nipr_report.infra.llm.gemini import GeminiLLM
from nipr_report.infra.llm.mock import MockLLM
from nipr_report.infra.ports.browser import BrowserSessionFactory
from nipr_report.infra.ports.llm import LLMPort
from nipr_report.infra.storage.local import LocalFileStorage


@lru_cache(maxsize=1)
def get_store() -> DatabaseStore:
    return DatabaseStore()


@lru_cache(maxsize=1)
def get_storage() -> LocalFileStorage:
    settings = get_settings()
    return LocalFileStorage(base_dir=settings.output_dir)


@lru_cache(maxsize=1)
def get_llm() -> LLMPort:
    settings = get_settings()
    if settings.llm_backend == "gemini" and settings.gemini_api_key:
        return GeminiLLM(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    return MockLLM()


@lru_cache(maxsize=1)
def get_report_analyzer() -> ReportAnalyzer:
    settings = get_settings()
    return ReportAnalyzer(get_llm(), model=settings.gemini_model)


@lru_cache(maxsize=1)
def get_browser_factory() -> BrowserSessionFactory:
    settings = get_settings()
    if settings.session_backend == "browserbase":
        if not (settings.browserbase_api_key and settings.browserbase_project_id):
            raise ConfigurationError(
                "BROWSERBASE_API_KEY and BROWSERBASE_PROJECT_ID are required when NIPR_SESSION_BACKEND=browserbase"
            )
        return BrowserbaseFactory(
            api_key=settings.browserbase_api_key,
            project_id=settings.browserbase_project_id,
        )
    return LocalBrowserFactory(headless=settings.headless)


@lru_cache(maxsize=1)
def get_progress_reporter() -> ProgressReporter:
    return ProgressReporter(get_store())


@lru_cache(maxsize=1)
def get_pipeline() -> ReportRetrievalPipeline:
    settings = get_settings()
    llm = get_llm()
    executor = SemanticActionExecutor(llm, model=settings.gemini_model) if settings.driver_strategy == "semantic" else None
    retriever = ArtifactRetriever(
        temp_dir=settings.temp_dir,
        storage=get_storage(),
        download_timeout_ms=settings.step_timeout_ms,
        poll_attempts=settings.download_poll_attempts,
        poll_interval_ms=settings.download_poll_interval_ms,
    )
    return ReportRetrievalPipeline(
        store=get_store(),
        manager=get_concurrency_manager(),
        session_factory=get_browser_factory(),
        driver_factory=driver_factory(settings.driver_strategy, executor=executor),
        retriever=retriever,
        purchase=load_purchase_config(),
        analyzer=get_report_analyzer() if settings.analyze_reports else None,
        progress=get_progress_reporter(),
        entry_url=settings.entry_url,
        step_timeout_ms=settings.step_timeout_ms,
        payment_settle_ms=settings.payment_settle_ms,
        admission_timeout_ms=settings.admission_timeout_ms,
    )


def get_job_service() -> JobApplicationService:
    return JobApplicationService(store=get_store())


def get_queue_service() -> QueueProcessingService:
    settings = get_settings()
    return QueueProcessingService(
        store=get_store(),
        pipeline=get_pipeline(),
        manager=get_concurrency_manager(),
        stale_lock_ms=settings.job_timeout_ms,
    )

def get_upload_service() -> ReportUploadService:
    settings = get_settings()
    return ReportUploadService(analyzer=get_report_analyzer(), temp_dir=settings.temp_dir)


async def provide_store() -> DatabaseStore:
    return get_store()


async def provide_job_service() -> JobApplicationService:
    return get_job_service()


async def provide_queue_service() -> QueueProcessingService:
    return get_queue_service()


async def provide_upload_service() -> ReportUploadService:
    return get_upload_service()
