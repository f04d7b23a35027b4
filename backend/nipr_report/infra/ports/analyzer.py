from __future__ import annotations

from pathlib import Path
from typing import Protocol

from nipr_report.domain.models import AnalysisResult


class DocumentAnalyzerPort(Protocol):
    async def analyze(self, path: Path) -> AnalysisResult:
        ...
