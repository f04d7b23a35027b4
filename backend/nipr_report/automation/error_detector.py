"""Detection of validation failures on the producer database pages.

The site's markup is not ours and changes without notice, so detection is
layered: known error containers first, then a scan of the rendered text for
failure phrases. An allow-list keeps benign notices that happen to use alert
styling from being reported as errors.
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# Most specific first; the first visible non-benign match wins.
ERROR_CONTAINER_SELECTORS: tuple[str, ...] = (
    ".alert-danger",
    ".alert-error",
    ".error-message",
    ".errorMessage",
    ".validation-summary-errors",
    ".field-validation-error",
    ".invalid-feedback",
    ".has-error .help-block",
    "[role='alert']",
    ".alert",
    ".error",
    "[class*='error']",
)

ERROR_PHRASES: tuple[str, ...] = (
    "not found",
    "invalid",
    "does not match",
    "no record",
    "no matching",
    "verification failed",
    "incorrect",
    "unable to locate",
    "unable to verify",
    "could not be verified",
)

INFORMATIONAL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bplease note\b",
        r"\bfor your information\b",
        r"\bnotice to [\w\s]+ (residents|producers|licensees)\b",
        r"\b(florida|new york|california|texas|louisiana)\b.{0,40}\b(notice|requirement|regulation)s?\b",
        r"\bprocessing fee\b",
        r"\bnon-?refundable\b",
        r"\byour session will expire\b",
        r"\bthis site uses cookies\b",
    )
)

LOADING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"^\s*loading\b", r"\bplease wait\b", r"\bprocessing your request\b", r"^\s*searching\b")
)

_MIN_ERROR_LENGTH = 5

_NEAREST_BLOCK_JS = """
(phrase) => {
  const needle = phrase.toLowerCase();
  const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT);
  let node;
  while ((node = walker.nextNode())) {
    if (!node.textContent.toLowerCase().includes(needle)) continue;
    let el = node.parentElement;
    while (el && el !== document.body && getComputedStyle(el).display === 'inline') {
      el = el.parentElement;
    }
    if (!el || el.getClientRects().length === 0) continue;
    return el.innerText.trim();
  }
  return null;
}
"""


def _normalize(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def is_informational(text: str) -> bool:
    return any(pattern.search(text) for pattern in INFORMATIONAL_PATTERNS)


def is_loading(text: str) -> bool:
    return any(pattern.search(text) for pattern in LOADING_PATTERNS)


def classify_container_text(text: str | None) -> str | None:
    """Return the error message carried by an error container, or None if benign."""
    normalized = _normalize(text)
    if len(normalized) <= _MIN_ERROR_LENGTH:
        return None
    if is_informational(normalized) or is_loading(normalized):
        return None
    return normalized


def find_error_phrase(text: str | None) -> str | None:
    lowered = _normalize(text).lower()
    for phrase in ERROR_PHRASES:
        if phrase in lowered:
            return phrase
    return None


def _line_containing(text: str, phrase: str) -> str | None:
    for line in text.splitlines():
        if phrase in line.lower():
            return _normalize(line)
    return None


class ErrorDetector:
    async def inspect(self, page: Any) -> str | None:
        message = await self._scan_containers(page)
        if message:
            logger.info("Error container matched: %s", message)
            return message

        message = await self._scan_text(page)
        if message:
            logger.info("Error phrase matched: %s", message)
        return message

    async def _scan_containers(self, page: Any) -> str | None:
        for selector in ERROR_CONTAINER_SELECTORS:
            for element in await page.locator(selector).all():
                if not await element.is_visible():
                    continue
                message = classify_container_text(await element.inner_text())
                if message:
                    return message
        return None

    async def _scan_text(self, page: Any) -> str | None:
        body = await page.inner_text("body")
        lowered = body.lower()
        for phrase in ERROR_PHRASES:
            if phrase not in lowered:
                continue
            block = _normalize(await page.evaluate(_NEAREST_BLOCK_JS, phrase)) or _line_containing(body, phrase)
            if block and not is_informational(block):
                return block
        return None
