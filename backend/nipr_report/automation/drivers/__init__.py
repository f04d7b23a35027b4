from __future__ import annotations

from functools import partial
from typing import Callable

from nipr_report.automation.action_executor import SemanticActionExecutor
from nipr_report.automation.drivers.base import WorkflowDriver
from nipr_report.automation.drivers.deterministic import DeterministicDriver
from nipr_report.automation.drivers.semantic import SemanticDriver
from nipr_report.domain.errors import ConfigurationError

DriverFactory = Callable[..., WorkflowDriver]

DRIVER_STRATEGIES = ("deterministic", "semantic")


def driver_factory(strategy: str, *, executor: SemanticActionExecutor | None = None) -> DriverFactory:
    """Return a constructor taking the per-job driver arguments for ``strategy``."""
    if strategy == "deterministic":
        return DeterministicDriver
    if strategy == "semantic":
        if executor is None:
            raise ConfigurationError("Semantic driver strategy requires an LLM-backed action executor")
        return partial(SemanticDriver, executor=executor)
    raise ConfigurationError(f"Unsupported driver strategy: {strategy}")


__all__ = ["DRIVER_STRATEGIES", "DriverFactory", "WorkflowDriver", "driver_factory"]
