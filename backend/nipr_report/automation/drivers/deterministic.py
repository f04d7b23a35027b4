from __future__ import annotations

import logging

from nipr_report.automation.drivers.base import WorkflowDriver
from nipr_report.automation.retriever import DownloadTrigger
from nipr_report.domain.models import BillingInfo, LookupInput, PaymentInfo

logger = logging.getLogger(__name__)

ENTRY_MENU_BUTTON = "//button[contains(@class, 'btn-link')]"
LOOKUP_BY_NPN = "//input[@type='radio' and @value='NPN']"
USE_AGREEMENT = "//input[@name='useAgreementAccepted']"
LAST_NAME = "//input[@name='lastName']"
NPN = "//input[@name='npn']"
WIZARD_SUBMIT = "//li/button[@type='submit']"
SSN = "//input[@name='ssn']"
DOB = "//input[@name='dob']"
START_FLOW = "//button[@to='/start-flow']"
DETAIL_REPORT_OPTION = "//label[text()='PDB Detail Report']"
PRIMARY_BUTTON = "//button[contains(@class, 'btn-primary')]"
USER_ACCEPTED = "//input[contains(@name, 'userAccepted')]"
SUBMIT_AND_PAY = "//li[contains(@class, 'next')]/button[contains(@class, 'btn-default')]"
PAY_BY_CARD = "//label[contains(@class, 'payment')]"
BILLING_FIRST_NAME = "//input[@id='firstName']"
BILLING_LAST_NAME = "//input[@id='lastName']"
BILLING_ADDRESS = "//input[@id='viewAddress.addressLine1']"
BILLING_CITY = "//input[@id='viewAddress.city']"
BILLING_ZIP = "//input[@id='viewAddress.zip']"
BILLING_NEXT = "//button[@id='bNext']"
PAYMENT_AGREEMENT = "//input[@id='userAgreement']"
PAYMENT_SUBMIT = "//button[@id='next']"
VIEW_DETAIL = "//span[text()='View Detail']/ancestor::button"


class DeterministicDriver(WorkflowDriver):
    """Addresses every element by fixed XPath from the site's current markup."""

    strategy = "deterministic"

    async def _click(self, selector: str) -> None:
        await (await self.visible(selector)).click()

    async def _check(self, selector: str) -> None:
        await (await self.visible(selector)).check()

    async def _fill(self, selector: str, value: str) -> None:
        await (await self.visible(selector)).fill(value)

    async def open_entry(self) -> None:
        await self.page.goto(self.entry_url, timeout=self.step_timeout_ms)
        await self._click(ENTRY_MENU_BUTTON)

    async def submit_lookup(self, lookup: LookupInput) -> None:
        await self._check(LOOKUP_BY_NPN)
        await self._check(USE_AGREEMENT)
        await self._fill(LAST_NAME, lookup.last_name)
        await self._fill(NPN, lookup.license_number)
        await self._click(WIZARD_SUBMIT)

    async def submit_identity(self, lookup: LookupInput) -> None:
        await self._fill(SSN, lookup.ssn_last4)
        await self._fill(DOB, lookup.dob)
        await self._click(WIZARD_SUBMIT)

    async def select_report(self) -> None:
        await self._click(START_FLOW)
        await self._click(DETAIL_REPORT_OPTION)
        await self._click(WIZARD_SUBMIT)
        await self._click(PRIMARY_BUTTON)
        await self._check(USER_ACCEPTED)
        await self._click(WIZARD_SUBMIT)
        await self._click(SUBMIT_AND_PAY)

    async def fill_billing(self, billing: BillingInfo) -> None:
        await self._click(PAY_BY_CARD)
        await self._fill(BILLING_FIRST_NAME, billing.first_name)
        await self._fill(BILLING_LAST_NAME, billing.last_name)
        await self._fill(BILLING_ADDRESS, billing.address)
        await self._fill(BILLING_CITY, billing.city)
        await self.select_state(billing)
        await self._fill(BILLING_ZIP, billing.zip)
        await self.fill_phone(billing)
        await self._click(BILLING_NEXT)

    async def submit_payment(self, payment: PaymentInfo) -> None:
        await self._check(PAYMENT_AGREEMENT)
        await self.fill_card(payment)
        await self._click(PAYMENT_SUBMIT)
        logger.info("[%s] Payment submitted", self.request_id)

    async def download_trigger(self) -> DownloadTrigger:
        button = await self.visible(VIEW_DETAIL)
        return button.click
