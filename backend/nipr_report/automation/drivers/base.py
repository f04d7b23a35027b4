"""Fixed order-flow against the producer database.

``WorkflowDriver.run`` owns the sequence, the progress checkpoints and the
rejection checks. Strategies only say how each phase touches the page.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, TypeVar

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from nipr_report.automation.error_detector import ErrorDetector
from nipr_report.automation.retriever import ArtifactRetriever, DownloadTrigger
from nipr_report.domain.errors import AutomationError, LookupRejectedError, StepTimeoutError, VerificationRejectedError
from nipr_report.domain.models import Artifact, BillingInfo, LookupInput, PaymentInfo, PurchaseConfig
from nipr_report.domain.progress import ProgressStep
from nipr_report.infra.ports.browser import BrowserSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressStep], None]
T = TypeVar("T")

# Structural locators shared by every strategy. Phone sub-fields sit side by
# side with near-identical labels and the card inputs live in cross-origin
# iframes, so neither is ever resolved semantically.
STATE_SELECT = "//select[@id='state']"
PHONE_AREA_CODE = "//input[@id='phone_areaCode']"
PHONE_PREFIX = "//input[@id='phone_prefix']"
PHONE_NUMBER = "//input[@id='phone_number']"
CARD_NUMBER_FRAME = "iframe[title='Secure card number input frame']"
CARD_EXPIRY_FRAME = "iframe[title='Secure expiration date input frame']"
CARD_CVC_FRAME = "iframe[title='Secure CVC input frame']"

_SETTLE_TIMEOUT_MS = 10_000


class WorkflowDriver(ABC):
    strategy = "base"

    def __init__(
        self,
        *,
        session: BrowserSession,
        purchase: PurchaseConfig,
        detector: ErrorDetector,
        retriever: ArtifactRetriever,
        request_id: str,
        entry_url: str,
        step_timeout_ms: int = 30_000,
        payment_settle_ms: int = 3_000,
    ):
        self.session = session
        self.purchase = purchase
        self.detector = detector
        self.retriever = retriever
        self.request_id = request_id
        self.entry_url = entry_url
        self.step_timeout_ms = step_timeout_ms
        self.payment_settle_ms = payment_settle_ms

    @property
    def page(self) -> Any:
        return self.session.page

    async def run(self, lookup: LookupInput, progress: ProgressCallback) -> Artifact:
        logger.info("[%s] Running %s workflow", self.request_id, self.strategy)

        progress(ProgressStep.OPENING_SITE)
        await self._step("entry page", self.open_entry)

        progress(ProgressStep.LOOKUP)
        await self._step("license lookup form", lambda: self.submit_lookup(lookup))
        await self._raise_if_rejected(LookupRejectedError)

        progress(ProgressStep.IDENTITY_VERIFICATION)
        await self._step("identity verification form", lambda: self.submit_identity(lookup))
        await self._raise_if_rejected(VerificationRejectedError)

        progress(ProgressStep.REPORT_SELECTION)
        await self._step("report selection", self.select_report)

        progress(ProgressStep.BILLING)
        await self._step("billing form", lambda: self.fill_billing(self.purchase.billing))

        progress(ProgressStep.PAYMENT)
        await self._step("payment form", lambda: self.submit_payment(self.purchase.payment))

        progress(ProgressStep.PAYMENT_PROCESSING)
        await asyncio.sleep(self.payment_settle_ms / 1000)

        progress(ProgressStep.DOWNLOADING)
        trigger = await self._step("detail report download button", self.download_trigger)
        return await self.retriever.download(self.session, trigger, request_id=self.request_id)

    async def _step(self, name: str, action: Callable[[], Awaitable[T]]) -> T:
        started = time.monotonic()
        try:
            return await action()
        except PlaywrightTimeoutError as exc:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.error("[%s] Step '%s' timed out after %.0fms", self.request_id, name, elapsed_ms)
            raise StepTimeoutError(name, elapsed_ms) from exc

    async def _raise_if_rejected(self, error_type: type[AutomationError]) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=_SETTLE_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.debug("[%s] Page still busy after %dms, inspecting anyway", self.request_id, _SETTLE_TIMEOUT_MS)

        message = await self.detector.inspect(self.page)
        if message:
            logger.warning("[%s] Site rejected submission: %s", self.request_id, message)
            raise error_type(message)

    async def visible(self, selector: str) -> Any:
        locator = self.page.locator(selector).first
        await locator.wait_for(state="visible", timeout=self.step_timeout_ms)
        return locator

    async def fill_phone(self, billing: BillingInfo) -> None:
        area, prefix, number = billing.phone_parts()
        await (await self.visible(PHONE_AREA_CODE)).fill(area)
        await (await self.visible(PHONE_PREFIX)).fill(prefix)
        await (await self.visible(PHONE_NUMBER)).fill(number)

    async def select_state(self, billing: BillingInfo) -> None:
        await (await self.visible(STATE_SELECT)).select_option(billing.state)

    async def fill_card(self, payment: PaymentInfo) -> None:
        for frame_selector, input_selector, value in (
            (CARD_NUMBER_FRAME, "input[name='cardnumber']", payment.card_number),
            (CARD_EXPIRY_FRAME, "input[name='exp-date']", payment.expiry),
            (CARD_CVC_FRAME, "input[name='cvc']", payment.cvc),
        ):
            field = self.page.frame_locator(frame_selector).locator(input_selector)
            await field.wait_for(state="visible", timeout=self.step_timeout_ms)
            await field.fill(value)

    @abstractmethod
    async def open_entry(self) -> None:
        """Load the entry page and dismiss the initial menu."""

    @abstractmethod
    async def submit_lookup(self, lookup: LookupInput) -> None:
        """Choose lookup by license number, accept terms, submit last name + license number."""

    @abstractmethod
    async def submit_identity(self, lookup: LookupInput) -> None:
        """Submit SSN suffix and date of birth."""

    @abstractmethod
    async def select_report(self) -> None:
        """Start the order, pick the detail report and pass the confirmation screens."""

    @abstractmethod
    async def fill_billing(self, billing: BillingInfo) -> None:
        ...

    @abstractmethod
    async def submit_payment(self, payment: PaymentInfo) -> None:
        ...

    @abstractmethod
    async def download_trigger(self) -> DownloadTrigger:
        """Wait for the detail download control and return a callable that activates it."""
