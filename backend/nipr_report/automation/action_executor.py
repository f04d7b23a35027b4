from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Literal

from nipr_report.domain.errors import StepTimeoutError
from nipr_report.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

Action = Literal["click", "fill", "check", "select"]

INDEX_ATTRIBUTE = "data-nipr-idx"
_MIN_CONFIDENCE = 0.5
_RETRY_PAUSE_SECONDS = 1.0

_SNAPSHOT_JS = """
(attr) => {
  const nodes = document.querySelectorAll(
    'a, button, input, select, textarea, label, [role="button"], [role="radio"], [role="checkbox"]'
  );
  const out = [];
  let idx = 0;
  for (const el of nodes) {
    if (el.getClientRects().length === 0) continue;
    el.setAttribute(attr, String(idx));
    let label = '';
    if (el.id) {
      const lbl = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
      if (lbl) label = lbl.innerText;
    }
    if (!label && el.closest('label')) label = el.closest('label').innerText;
    out.push({
      index: idx,
      tag: el.tagName.toLowerCase(),
      type: el.getAttribute('type') || '',
      name: el.getAttribute('name') || '',
      id: el.id || '',
      label: (label || el.getAttribute('aria-label') || el.getAttribute('placeholder') || '').trim().slice(0, 120),
      text: (el.innerText || el.value || '').trim().slice(0, 120),
    });
    idx += 1;
  }
  return out;
}
"""

_SELECTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["elementIndex", "confidence"],
    "properties": {
        "elementIndex": {"type": ["integer", "null"], "description": "index of the matching element, null if none"},
        "confidence": {"type": "number"},
    },
}

_SYSTEM_PROMPT = (
    "You operate a web form. Given an instruction and a JSON list of the visible interactive "
    "elements on the page, choose the single element the instruction refers to. "
    "Return elementIndex null when no element clearly matches. Return strict JSON only."
)


class SemanticActionExecutor:
    """Resolves natural-language instructions to page elements through the LLM.

    Only the instruction and element descriptions are sent to the model;
    values typed into fields stay local.
    """

    def __init__(self, llm: LLMPort, *, model: str | None = None):
        self.llm = llm
        self.model = model

    async def snapshot(self, page: Any) -> list[dict[str, Any]]:
        elements = await page.evaluate(_SNAPSHOT_JS, INDEX_ATTRIBUTE)
        return list(elements or [])

    async def resolve(self, page: Any, instruction: str, action: Action) -> int | None:
        elements = await self.snapshot(page)
        if not elements:
            return None

        prompt = (
            f"Instruction: {instruction}\n"
            f"Intended action: {action}\n"
            f"Elements:\n{json.dumps(elements, ensure_ascii=False)}"
        )
        data = await self.llm.generate_structured(
            prompt=prompt,
            schema=_SELECTION_SCHEMA,
            system_prompt=_SYSTEM_PROMPT,
            model=self.model,
        )
        index = data.get("elementIndex")
        confidence = float(data.get("confidence") or 0.0)
        if not isinstance(index, int) or not 0 <= index < len(elements):
            return None
        if confidence < _MIN_CONFIDENCE:
            logger.debug("Low-confidence match %.2f for '%s'", confidence, instruction)
            return None
        return index

    async def act(
        self,
        page: Any,
        instruction: str,
        *,
        action: Action = "click",
        value: str | None = None,
        timeout_ms: int,
    ) -> None:
        started = time.monotonic()
        deadline = started + timeout_ms / 1000

        while True:
            index = await self.resolve(page, instruction, action)
            if index is not None:
                target = page.locator(f"[{INDEX_ATTRIBUTE}='{index}']").first
                remaining_ms = max(1_000, int((deadline - time.monotonic()) * 1000))
                await self._perform(target, action, value, remaining_ms)
                logger.info("Performed %s: %s", action, instruction)
                return

            if time.monotonic() >= deadline:
                raise StepTimeoutError(
                    instruction,
                    (time.monotonic() - started) * 1000,
                    detail="no matching element on page",
                )
            await asyncio.sleep(_RETRY_PAUSE_SECONDS)

    @staticmethod
    async def _perform(target: Any, action: Action, value: str | None, timeout_ms: int) -> None:
        if action == "click":
            await target.click(timeout=timeout_ms)
        elif action == "check":
            await target.check(timeout=timeout_ms)
        elif action == "fill":
            await target.fill(value or "", timeout=timeout_ms)
        elif action == "select":
            await target.select_option(value, timeout=timeout_ms)
        else:
            raise ValueError(f"Unsupported action: {action}")
