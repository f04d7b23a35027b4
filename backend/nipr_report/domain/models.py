from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from nipr_report.domain.errors import InputValidationError

JobStatus = Literal["queued", "running", "complete", "failed"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "failed"})

_SSN_LAST4 = re.compile(r"^\d{4}$")
_DOB = re.compile(r"^\d{2}/\d{2}/\d{4}$")
_NUMERIC = re.compile(r"^\d+$")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LookupInput:
    last_name: str
    license_number: str
    ssn_last4: str
    dob: str

    @classmethod
    def build(cls, *, last_name: str | None, license_number: str | None, ssn_last4: str | None, dob: str | None) -> LookupInput:
        values = {
            "last_name": (last_name or "").strip(),
            "license_number": (license_number or "").strip(),
            "ssn_last4": (ssn_last4 or "").strip(),
            "dob": (dob or "").strip(),
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise InputValidationError(f"Missing required fields: {', '.join(missing)}")
        if not _SSN_LAST4.match(values["ssn_last4"]):
            raise InputValidationError("SSN must be exactly 4 digits")
        if not _DOB.match(values["dob"]):
            raise InputValidationError("DOB must be in MM/DD/YYYY format")
        if not _NUMERIC.match(values["license_number"]):
            raise InputValidationError("License number (NPN) must be numeric")
        return cls(**values)


@dataclass(frozen=True)
class JobData:
    """One queued request as handed to the pipeline."""

    job_id: str | None
    job_user_id: str | None
    last_name: str
    license_number: str
    ssn_last4: str
    dob: str

    def lookup(self) -> LookupInput:
        return LookupInput.build(
            last_name=self.last_name,
            license_number=self.license_number,
            ssn_last4=self.ssn_last4,
            dob=self.dob,
        )


@dataclass(frozen=True)
class BillingInfo:
    first_name: str
    last_name: str
    address: str
    city: str
    state: str
    zip: str
    phone: str

    def phone_parts(self) -> tuple[str, str, str]:
        digits = re.sub(r"\D", "", self.phone)
        return digits[0:3], digits[3:6], digits[6:10]


@dataclass(frozen=True)
class PaymentInfo:
    card_number: str
    expiry: str
    cvc: str

    def __repr__(self) -> str:
        return f"PaymentInfo(card_number='****{self.card_number[-4:]}', expiry='**/**', cvc='***')"


@dataclass(frozen=True)
class PurchaseConfig:
    billing: BillingInfo
    payment: PaymentInfo


@dataclass
class Artifact:
    path: Path
    request_id: str
    content_type: str = "application/pdf"
    size: int = 0


@dataclass
class AnalysisResult:
    success: bool
    unique_carriers: list[str] = field(default_factory=list)
    unique_states: list[str] = field(default_factory=list)
    resident_states: list[str] = field(default_factory=list)
    non_resident_states: list[str] = field(default_factory=list)
    analyzed_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "unique_carriers": list(self.unique_carriers),
            "unique_states": list(self.unique_states),
            "licensed_states": {
                "resident": list(self.resident_states),
                "non_resident": list(self.non_resident_states),
            },
            "analyzed_at": self.analyzed_at,
        }


@dataclass
class AutomationResult:
    success: bool
    message: str
    files: list[str] = field(default_factory=list)
    analysis: AnalysisResult | None = None
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "message": self.message,
                "files": list(self.files),
                "analysis": self.analysis.to_dict() if self.analysis else None,
            }
        return {
            "success": False,
            "message": self.message,
            "files": [],
            "error": self.error,
            "errorCode": self.error_code,
        }


@dataclass
class JobRecord:
    job_id: str
    user_id: str | None
    status: JobStatus
    progress: float = 0.0
    message: str | None = None
    error_message: str | None = None
    result_files: list[str] = field(default_factory=list)
    result_carriers: list[str] = field(default_factory=list)
    licensed_states: list[str] = field(default_factory=list)
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class JobEventRecord:
    job_id: str
    status: JobStatus
    progress: float = 0.0
    message: str | None = None
    created_at: str = field(default_factory=_utcnow_iso)
