import asyncio
from pathlib import Path

import fitz
import pytest

from nipr_report.automation.analyzer import ReportAnalyzer, extract_state_abbreviations
from nipr_report.domain.errors import AnalysisError
from nipr_report.infra.llm.mock import MockLLM
from tests.fakes import ScriptedLLM


def _write_pdf(path: Path, text: str) -> Path:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    doc.save(path)
    doc.close()
    return path


def test_extract_state_abbreviations_deduplicates_in_order():
    resident = ["Texas (TX)"]
    non_resident = ["Oklahoma (OK)", "Texas (TX)", "Somewhere without code", "Ohio (OH)"]

    assert extract_state_abbreviations(resident, non_resident) == ["TX", "OK", "OH"]


def test_analyze_report_returns_carriers_and_states(tmp_path: Path):
    pdf = _write_pdf(tmp_path / "report.pdf", "ACME LIFE INSURANCE COMPANY appointed in Texas")
    llm = ScriptedLLM(
        [
            {
                "unique_carriers": ["Acme Life Insurance Company", "acme life insurance company", ""],
                "licensedStates": {"resident": ["Texas (TX)"], "nonResident": ["Ohio (OH)"]},
            }
        ]
    )

    result = asyncio.run(ReportAnalyzer(llm).analyze(pdf))

    assert result.success is True
    assert result.unique_carriers == ["Acme Life Insurance Company"]
    assert result.unique_states == ["TX", "OH"]
    assert result.resident_states == ["Texas (TX)"]
    assert "ACME LIFE INSURANCE COMPANY" in llm.prompts[0]


def test_analyze_with_mock_llm_yields_empty_findings(tmp_path: Path):
    pdf = _write_pdf(tmp_path / "report.pdf", "Producer detail report")

    result = asyncio.run(ReportAnalyzer(MockLLM()).analyze(pdf))

    assert result.success is True
    assert result.unique_carriers == []
    assert result.unique_states == []


def test_analyze_rejects_missing_or_unreadable_files(tmp_path: Path):
    analyzer = ReportAnalyzer(MockLLM())

    with pytest.raises(AnalysisError):
        asyncio.run(analyzer.analyze(tmp_path / "missing.pdf"))

    broken = tmp_path / "broken.pdf"
    broken.write_bytes(b"this is not a pdf")
    with pytest.raises(AnalysisError):
        asyncio.run(analyzer.analyze(broken))
