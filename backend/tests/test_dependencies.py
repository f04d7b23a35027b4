from nipr_report.api.v1 import dependencies
from nipr_report.automation.drivers.deterministic import DeterministicDriver
from nipr_report.core.config import get_settings
from nipr_report.infra.browser.local import LocalBrowserFactory
from nipr_report.infra.browser.remote import BrowserbaseFactory
from nipr_report.infra.llm.mock import MockLLM


def _clear_caches() -> None:
    get_settings.cache_clear()
    dependencies.get_store.cache_clear()
    dependencies.get_storage.cache_clear()
    dependencies.get_llm.cache_clear()
    dependencies.get_report_analyzer.cache_clear()
    dependencies.get_browser_factory.cache_clear()
    dependencies.get_progress_reporter.cache_clear()
    dependencies.get_pipeline.cache_clear()


def test_default_composition_is_local_and_deterministic():
    _clear_caches()
    try:
        pipeline = dependencies.get_pipeline()

        assert isinstance(dependencies.get_llm(), MockLLM)
        assert isinstance(pipeline.session_factory, LocalBrowserFactory)
        assert pipeline.driver_factory is DeterministicDriver
        assert pipeline.analyzer is not None
        assert pipeline.retriever.poll_attempts == 15
    finally:
        _clear_caches()


def test_browserbase_backend_is_selected_by_configuration(monkeypatch):
    monkeypatch.setenv("NIPR_SESSION_BACKEND", "browserbase")
    monkeypatch.setenv("BROWSERBASE_API_KEY", "bb_test_key")
    monkeypatch.setenv("BROWSERBASE_PROJECT_ID", "proj_123")
    monkeypatch.setenv("NIPR_ANALYZE_REPORTS", "0")
    _clear_caches()
    try:
        pipeline = dependencies.get_pipeline()

        assert isinstance(pipeline.session_factory, BrowserbaseFactory)
        assert pipeline.analyzer is None
    finally:
        _clear_caches()
