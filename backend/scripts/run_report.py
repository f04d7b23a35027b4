from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from nipr_report.api.v1.dependencies import get_llm, get_pipeline  # noqa: E402
from nipr_report.automation.analyzer import ReportAnalyzer  # noqa: E402
from nipr_report.core.config import get_settings, validate_startup_config  # noqa: E402
from nipr_report.core.logging import configure_logging  # noqa: E402
from nipr_report.domain.errors import AutomationError  # noqa: E402
from nipr_report.domain.models import JobData  # noqa: E402


def _analyze_only(path: Path) -> dict:
    settings = get_settings()
    analyzer = ReportAnalyzer(get_llm(), model=settings.gemini_model)
    result = asyncio.run(analyzer.analyze(path))
    return result.to_dict()


def main() -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Retrieve one PDB detail report outside the job queue. "
            "Progress is logged but not persisted."
        )
    )
    parser.add_argument("--last-name", help="Producer legal last name")
    parser.add_argument("--npn", help="National Producer Number")
    parser.add_argument("--ssn-last4", help="Last 4 digits of SSN")
    parser.add_argument("--dob", help="Date of birth, MM/DD/YYYY")
    parser.add_argument(
        "--analyze",
        type=Path,
        default=None,
        help="Skip the browser and only analyze an existing report PDF",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Optional path to save the JSON result",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        if args.analyze is not None:
            report_path = args.analyze.expanduser().resolve()
            if not report_path.is_file():
                print(f"Report file not found: {report_path}", file=sys.stderr)
                return 2
            result = _analyze_only(report_path)
        else:
            validate_startup_config(get_settings())
            job = JobData(
                job_id=None,
                job_user_id=None,
                last_name=args.last_name or "",
                license_number=args.npn or "",
                ssn_last4=args.ssn_last4 or "",
                dob=args.dob or "",
            )
            result = asyncio.run(get_pipeline().execute(job)).to_dict()
    except AutomationError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1

    rendered = json.dumps(result, ensure_ascii=False, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered, encoding="utf-8")
    print(rendered)
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
