from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from nipr_report.domain.errors import ConfigurationError
from nipr_report.domain.models import BillingInfo, PaymentInfo, PurchaseConfig

_BILLING_ENV = {
    "first_name": "NIPR_BILLING_FIRST_NAME",
    "last_name": "NIPR_BILLING_LAST_NAME",
    "address": "NIPR_BILLING_ADDRESS",
    "city": "NIPR_BILLING_CITY",
    "state": "NIPR_BILLING_STATE",
    "zip": "NIPR_BILLING_ZIP",
    "phone": "NIPR_BILLING_PHONE",
}
_PAYMENT_ENV = {
    "card_number": "NIPR_CARD_NUMBER",
    "expiry": "NIPR_CARD_EXPIRY",
    "cvc": "NIPR_CARD_CVC",
}


def _load_dotenv() -> None:
    if os.getenv("NIPR_SKIP_DOTENV") == "1":
        return

    env_path = Path(__file__).resolve().parents[2] / ".env"
    if not env_path.exists():
        return

    from dotenv import load_dotenv

    load_dotenv(env_path, override=False)


def _parse_non_negative_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    raw = value.strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    env: str
    app_name: str
    cors_origins: list[str]
    database_url: str | None
    output_dir: Path
    temp_dir: Path
    session_backend: str
    headless: bool
    entry_url: str
    browserbase_api_key: str | None
    browserbase_project_id: str | None
    driver_strategy: str
    max_concurrent_browsers: int
    job_timeout_ms: int
    admission_timeout_ms: int
    step_timeout_ms: int
    payment_settle_ms: int
    download_poll_attempts: int
    download_poll_interval_ms: int
    llm_backend: str
    gemini_api_key: str | None
    gemini_model: str
    llm_timeout_seconds: int
    llm_max_retries: int
    analyze_reports: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()

    cors = os.getenv("NIPR_CORS_ORIGINS", "http://localhost:3000")

    return Settings(
        env=os.getenv("NIPR_ENV", "development"),
        app_name="NIPR Report API",
        cors_origins=_split_csv(cors),
        database_url=os.getenv("DATABASE_URL") or None,
        output_dir=Path(os.getenv("NIPR_OUTPUT_DIR", "backend/nipr-downloads")),
        temp_dir=Path(os.getenv("NIPR_TEMP_DIR", "backend/tmp")),
        session_backend=os.getenv("NIPR_SESSION_BACKEND", "local").strip().lower() or "local",
        headless=_parse_bool(os.getenv("NIPR_HEADLESS"), default=True),
        entry_url=os.getenv("NIPR_ENTRY_URL", "https://pdb.nipr.com/my-nipr/frontend/user-menu"),
        browserbase_api_key=os.getenv("BROWSERBASE_API_KEY") or None,
        browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID") or None,
        driver_strategy=os.getenv("NIPR_DRIVER_STRATEGY", "deterministic").strip().lower() or "deterministic",
        max_concurrent_browsers=_parse_non_negative_int(os.getenv("NIPR_MAX_CONCURRENT_BROWSERS"), default=2) or 2,
        job_timeout_ms=_parse_non_negative_int(os.getenv("NIPR_JOB_TIMEOUT_MS"), default=600_000) or 600_000,
        admission_timeout_ms=_parse_non_negative_int(os.getenv("NIPR_ADMISSION_TIMEOUT_MS"), default=120_000),
        step_timeout_ms=_parse_non_negative_int(os.getenv("NIPR_STEP_TIMEOUT_MS"), default=30_000) or 30_000,
        payment_settle_ms=_parse_non_negative_int(os.getenv("NIPR_PAYMENT_SETTLE_MS"), default=3_000),
        download_poll_attempts=_parse_non_negative_int(os.getenv("NIPR_DOWNLOAD_POLL_ATTEMPTS"), default=15) or 15,
        download_poll_interval_ms=_parse_non_negative_int(
            os.getenv("NIPR_DOWNLOAD_POLL_INTERVAL_MS"), default=2_000
        ),
        llm_backend=os.getenv("NIPR_LLM_BACKEND", "mock").strip().lower() or "mock",
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        llm_timeout_seconds=_parse_non_negative_int(os.getenv("NIPR_LLM_TIMEOUT_SECONDS"), default=90) or 90,
        llm_max_retries=_parse_non_negative_int(os.getenv("NIPR_LLM_MAX_RETRIES"), default=1),
        analyze_reports=_parse_bool(os.getenv("NIPR_ANALYZE_REPORTS"), default=True),
    )


@lru_cache(maxsize=1)
def load_purchase_config() -> PurchaseConfig:
    """Read billing and card details once; every field is required."""
    _load_dotenv()

    missing = [name for name in (*_BILLING_ENV.values(), *_PAYMENT_ENV.values()) if not os.getenv(name)]
    if missing:
        raise ConfigurationError(f"Missing required NIPR environment variables: {', '.join(missing)}")

    billing = BillingInfo(**{field: os.environ[name] for field, name in _BILLING_ENV.items()})
    payment = PaymentInfo(**{field: os.environ[name] for field, name in _PAYMENT_ENV.items()})
    return PurchaseConfig(billing=billing, payment=payment)


def validate_startup_config(settings: Settings) -> None:
    """Fail fast on configuration that would make every job fail."""
    load_purchase_config()

    if settings.session_backend not in {"local", "browserbase"}:
        raise ConfigurationError(f"Unknown NIPR_SESSION_BACKEND '{settings.session_backend}'")
    if settings.session_backend == "browserbase" and not (
        settings.browserbase_api_key and settings.browserbase_project_id
    ):
        raise ConfigurationError(
            "BROWSERBASE_API_KEY and BROWSERBASE_PROJECT_ID are required when NIPR_SESSION_BACKEND=browserbase"
        )
    if settings.driver_strategy == "semantic" and not (settings.llm_backend == "gemini" and settings.gemini_api_key):
        raise ConfigurationError("NIPR_DRIVER_STRATEGY=semantic requires NIPR_LLM_BACKEND=gemini and GEMINI_API_KEY")
