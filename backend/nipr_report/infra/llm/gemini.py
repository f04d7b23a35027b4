from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib import parse

import httpx

from nipr_report.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

_GOOGLE_AI_BASE = "https://generativelanguage.googleapis.com/v1beta"
_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
_TYPE_MAP = {
    "object": "OBJECT",
    "array": "ARRAY",
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
}


def _to_gemini_response_schema(node: object) -> dict:
    if not isinstance(node, dict):
        return {}

    out: dict[str, object] = {}
    type_value = node.get("type")
    if isinstance(type_value, list):
        non_null = [item for item in type_value if isinstance(item, str) and item.lower() != "null"]
        if len(non_null) != len(type_value):
            out["nullable"] = True
        type_value = non_null[0] if non_null else None
    if isinstance(type_value, str) and type_value.lower() in _TYPE_MAP:
        out["type"] = _TYPE_MAP[type_value.lower()]

    for key in ("description", "format", "enum"):
        if key in node:
            out[key] = node[key]
    if isinstance(node.get("required"), list):
        out["required"] = [item for item in node["required"] if isinstance(item, str)]

    properties = node.get("properties")
    if isinstance(properties, dict):
        out["properties"] = {key: _to_gemini_response_schema(value) for key, value in properties.items()}
    if isinstance(node.get("items"), dict):
        out["items"] = _to_gemini_response_schema(node["items"])
    return out


class GeminiLLM(LLMPort):
    provider_name = "gemini"

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        timeout_seconds: int = 90,
        max_retries: int = 1,
        max_prompt_chars: int = 200_000,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout_seconds = max(3, int(timeout_seconds))
        self.max_retries = max(0, int(max_retries))
        self.max_prompt_chars = max_prompt_chars

    async def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        model_name = model or self.model_name
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt[: self.max_prompt_chars]}]}],
            "systemInstruction": {"parts": [{"text": (system_prompt or "Return strict JSON only.")[:6000]}]},
            "generationConfig": {
                "temperature": 0,
                "responseMimeType": "application/json",
                "responseSchema": _to_gemini_response_schema(schema),
            },
        }
        url = f"{_GOOGLE_AI_BASE}/models/{parse.quote(model_name)}:generateContent"
        body = await self._post_with_retries(url, payload)
        data = self._parse_candidate_json(body)
        data.setdefault("provider", self.provider_name)
        data.setdefault("model", model_name)
        return data

    async def _post_with_retries(self, url: str, payload: dict) -> dict:
        attempts = self.max_retries + 1
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            for attempt in range(attempts):
                try:
                    resp = await client.post(url, params={"key": self.api_key}, json=payload)
                except httpx.TimeoutException as exc:
                    if attempt < self.max_retries:
                        await asyncio.sleep(min(6.0, 1.2 * (attempt + 1)))
                        continue
                    raise RuntimeError(
                        f"Gemini API timeout after {attempts} attempts (timeout={self.timeout_seconds}s)."
                    ) from exc
                except httpx.HTTPError as exc:
                    raise RuntimeError(f"Gemini API connection error: {exc}") from exc

                if resp.status_code in _RETRYABLE_STATUS and attempt < self.max_retries:
                    logger.warning("Gemini returned %s, retrying (attempt %d/%d)", resp.status_code, attempt + 1, attempts)
                    await asyncio.sleep(min(6.0, 1.2 * (attempt + 1)))
                    continue
                if resp.status_code >= 400:
                    raise RuntimeError(f"Gemini API error ({resp.status_code}): {resp.text[:500]}")
                return resp.json()

        raise RuntimeError(f"Gemini API failed after {attempts} attempts")

    @staticmethod
    def _parse_candidate_json(body: dict) -> dict[str, Any]:
        candidates = body.get("candidates") or []
        if not candidates:
            raise RuntimeError("Gemini response has no candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            raise RuntimeError("Gemini response has no content parts")

        text = parts[0].get("text")
        if not isinstance(text, str) or not text.strip():
            raise RuntimeError("Gemini response part does not contain JSON text")

        data = json.loads(text)
        if not isinstance(data, dict):
            raise RuntimeError("Gemini structured output is not a JSON object")
        return data
