import os
import sys
from pathlib import Path


# Keep tests deterministic and local-only.
os.environ["NIPR_SKIP_DOTENV"] = "1"
os.environ["NIPR_SESSION_BACKEND"] = "local"
os.environ["NIPR_DRIVER_STRATEGY"] = "deterministic"
os.environ["NIPR_LLM_BACKEND"] = "mock"
os.environ["NIPR_LLM_TIMEOUT_SECONDS"] = "5"
os.environ["NIPR_LLM_MAX_RETRIES"] = "0"
os.environ["GEMINI_API_KEY"] = ""
os.environ["NIPR_SYNC_PROCESSING"] = "1"
os.environ["NIPR_AUTO_PROCESS"] = "0"

os.environ["NIPR_BILLING_FIRST_NAME"] = "Jane"
os.environ["NIPR_BILLING_LAST_NAME"] = "Agent"
os.environ["NIPR_BILLING_ADDRESS"] = "100 Main St"
os.environ["NIPR_BILLING_CITY"] = "Austin"
os.environ["NIPR_BILLING_STATE"] = "TX"
os.environ["NIPR_BILLING_ZIP"] = "78701"
os.environ["NIPR_BILLING_PHONE"] = "(512) 555-0147"
os.environ["NIPR_CARD_NUMBER"] = "4242424242424242"
os.environ["NIPR_CARD_EXPIRY"] = "12/30"
os.environ["NIPR_CARD_CVC"] = "123"

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ["NIPR_OUTPUT_DIR"] = str(BACKEND_ROOT / "test_nipr_downloads")
os.environ["NIPR_TEMP_DIR"] = str(BACKEND_ROOT / "test_nipr_tmp")

TEST_DB_PATH = BACKEND_ROOT / "test_nipr_jobs.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()
