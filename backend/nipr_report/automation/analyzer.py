from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

import fitz

from nipr_report.domain.errors import AnalysisError
from nipr_report.domain.models import AnalysisResult
from nipr_report.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

_STATE_ABBREVIATION = re.compile(r"\(([A-Z]{2})\)\s*$")

_ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["unique_carriers", "licensedStates"],
    "properties": {
        "unique_carriers": {"type": "array", "items": {"type": "string"}},
        "licensedStates": {
            "type": "object",
            "required": ["resident", "nonResident"],
            "properties": {
                "resident": {"type": "array", "items": {"type": "string"}},
                "nonResident": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
}

_SYSTEM_PROMPT = (
    "You analyze insurance producer database (PDB) detail reports. "
    "Return strict JSON only that matches the provided schema."
)

_GUIDELINES = """Extract:
1. ALL unique insurance company / carrier names found in the document.
2. Licensed states, split into resident and non-resident.

Guidelines:
- Remove duplicate company names; only include unique carriers.
- Normalize company names to title case (e.g. "AMERICAN GENERAL LIFE INSURANCE COMPANY" -> "American General Life Insurance Company").
- Include all carriers regardless of appointment status.
- Write every state as full name plus abbreviation, e.g. "California (CA)".
- Use an empty array when a field has no data."""


def extract_state_abbreviations(resident: list[str], non_resident: list[str]) -> list[str]:
    """Collect the unique two-letter codes from "State Name (XX)" entries, in order."""
    seen: list[str] = []
    for entry in [*resident, *non_resident]:
        match = _STATE_ABBREVIATION.search(str(entry))
        if match and match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]


def _dedupe(items: list[str]) -> list[str]:
    out: list[str] = []
    lowered: set[str] = set()
    for item in items:
        key = item.lower()
        if key in lowered:
            continue
        lowered.add(key)
        out.append(item)
    return out


def extract_pdf_text(path: Path) -> str:
    with fitz.open(path) as doc:
        page_texts = [page.get_text("text") for page in doc]
    return "\n\n".join(text.strip() for text in page_texts if text and text.strip())


class ReportAnalyzer:
    """Document Analyzer backed by PyMuPDF text extraction and the LLM port."""

    def __init__(self, llm: LLMPort, *, model: str | None = None, max_chars: int = 200_000):
        self.llm = llm
        self.model = model
        self.max_chars = max_chars

    async def analyze(self, path: Path) -> AnalysisResult:
        if not path.exists() or path.stat().st_size == 0:
            raise AnalysisError(f"Report file missing or empty: {path.name}")

        try:
            text = await asyncio.to_thread(extract_pdf_text, path)
        except (RuntimeError, ValueError) as exc:
            raise AnalysisError(f"Could not read report PDF: {exc}") from exc
        if not text:
            raise AnalysisError("No text could be extracted from the report")
        logger.info("Extracted %d characters from %s", len(text), path.name)

        prompt = f"{_GUIDELINES}\n\nDocument content:\n{text[: self.max_chars]}"
        try:
            data = await self.llm.generate_structured(
                prompt=prompt,
                schema=_ANALYSIS_SCHEMA,
                system_prompt=_SYSTEM_PROMPT,
                model=self.model,
            )
        except RuntimeError as exc:
            raise AnalysisError(f"Report analysis failed: {exc}") from exc

        states = data.get("licensedStates") if isinstance(data.get("licensedStates"), dict) else {}
        resident = _dedupe(_string_list(states.get("resident")))
        non_resident = _dedupe(_string_list(states.get("nonResident")))
        carriers = _dedupe(_string_list(data.get("unique_carriers")))
        logger.info("Analysis found %d carriers and %d licensed states", len(carriers), len(resident) + len(non_resident))

        return AnalysisResult(
            success=True,
            unique_carriers=carriers,
            unique_states=extract_state_abbreviations(resident, non_resident),
            resident_states=resident,
            non_resident_states=non_resident,
        )
