from __future__ import annotations

from typing import Any

from nipr_report.infra.ports.llm import LLMPort


class MockLLM(LLMPort):
    """Offline stand-in: fills every required key of the schema with an empty value."""

    provider_name = "mock"
    model_name = "mock-llm-v1"

    _EMPTY = {"array": list, "object": dict, "string": str, "number": float, "integer": int, "boolean": bool}

    async def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        out: dict[str, Any] = {}
        properties = schema.get("properties") or {}
        for key in schema.get("required") or []:
            type_name = (properties.get(key) or {}).get("type")
            if isinstance(type_name, list):
                out[key] = None
                continue
            out[key] = self._EMPTY.get(str(type_name), dict)()
        out["provider"] = self.provider_name
        out["model"] = model or self.model_name
        return out
