"""Failure taxonomy for the report retrieval pipeline."""

from __future__ import annotations


class AutomationError(Exception):
    code = "AUTOMATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(AutomationError):
    code = "CONFIG_MISSING"


class InputValidationError(AutomationError):
    code = "INVALID_INPUT"


class LaunchError(AutomationError):
    """The browser engine or remote session could not be started."""

    code = "LAUNCH_FAILED"

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(f"{message} ({hint})" if hint else message)
        self.hint = hint


class LookupRejectedError(AutomationError):
    code = "LOOKUP_REJECTED"


class VerificationRejectedError(AutomationError):
    code = "VERIFICATION_REJECTED"


class StepTimeoutError(AutomationError):
    code = "STEP_TIMEOUT"

    def __init__(self, step: str, elapsed_ms: float, detail: str | None = None):
        message = f"Timed out after {elapsed_ms / 1000:.1f}s waiting for {step}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.step = step
        self.elapsed_ms = elapsed_ms


class DownloadError(AutomationError):
    code = "DOWNLOAD_FAILED"


class AnalysisError(AutomationError):
    code = "ANALYSIS_FAILED"


class CapacityExceededError(AutomationError):
    code = "CAPACITY_EXCEEDED"


class DuplicateJobError(AutomationError):
    code = "DUPLICATE_JOB"
