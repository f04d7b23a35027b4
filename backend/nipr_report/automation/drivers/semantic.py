from __future__ import annotations

import logging

from nipr_report.automation.action_executor import Action, SemanticActionExecutor
from nipr_report.automation.drivers.base import WorkflowDriver
from nipr_report.automation.retriever import DownloadTrigger
from nipr_report.domain.models import BillingInfo, LookupInput, PaymentInfo

logger = logging.getLogger(__name__)


class SemanticDriver(WorkflowDriver):
    """Locates elements from plain-language instructions.

    Phone sub-fields, the state dropdown and the card iframes still use the
    structural locators from the base class.
    """

    strategy = "semantic"

    def __init__(self, *, executor: SemanticActionExecutor, **kwargs):
        super().__init__(**kwargs)
        self.executor = executor

    async def _do(self, instruction: str, action: Action = "click", value: str | None = None) -> None:
        await self.executor.act(self.page, instruction, action=action, value=value, timeout_ms=self.step_timeout_ms)

    async def open_entry(self) -> None:
        await self.page.goto(self.entry_url, timeout=self.step_timeout_ms)
        await self._do("the first link-style button in the user menu that starts a lookup")

    async def submit_lookup(self, lookup: LookupInput) -> None:
        await self._do("the radio option to look up by NPN (National Producer Number)", "check")
        await self._do("the checkbox accepting the use agreement", "check")
        await self._do("the Last Name text field", "fill", lookup.last_name)
        await self._do("the NPN text field", "fill", lookup.license_number)
        await self._do("the Submit button of the lookup form")

    async def submit_identity(self, lookup: LookupInput) -> None:
        await self._do("the field for the last 4 digits of the Social Security Number", "fill", lookup.ssn_last4)
        await self._do("the Date of Birth field", "fill", lookup.dob)
        await self._do("the Submit button of the verification form")

    async def select_report(self) -> None:
        await self._do("the button that starts a new report order")
        await self._do("the 'PDB Detail Report' option")
        await self._do("the Submit button of the report selection form")
        await self._do("the primary button that continues the order")
        await self._do("the checkbox confirming the user accepts the terms", "check")
        await self._do("the Submit button of the confirmation form")
        await self._do("the 'Submit and Pay' button")

    async def fill_billing(self, billing: BillingInfo) -> None:
        await self._do("the payment method option for paying by credit card")
        await self._do("the billing First Name field", "fill", billing.first_name)
        await self._do("the billing Last Name field", "fill", billing.last_name)
        await self._do("the billing street address line 1 field", "fill", billing.address)
        await self._do("the billing City field", "fill", billing.city)
        await self.select_state(billing)
        await self._do("the billing ZIP code field", "fill", billing.zip)
        await self.fill_phone(billing)
        await self._do("the Next button of the billing form")

    async def submit_payment(self, payment: PaymentInfo) -> None:
        await self._do("the checkbox accepting the payment user agreement", "check")
        await self.fill_card(payment)
        await self._do("the button that submits the payment")
        logger.info("[%s] Payment submitted", self.request_id)

    async def download_trigger(self) -> DownloadTrigger:
        async def trigger() -> None:
            await self._do("the 'View Detail' button that downloads the detail report")

        return trigger
