from __future__ import annotations

import enum


class ProgressStep(enum.Enum):
    """Checkpoints of the retrieval workflow, in execution order."""

    STARTING = (0, "Starting automation...")
    LAUNCHING_BROWSER = (5, "Launching browser session...")
    OPENING_SITE = (10, "Opening producer database...")
    LOOKUP = (20, "Looking up producer record...")
    IDENTITY_VERIFICATION = (30, "Verifying identity...")
    REPORT_SELECTION = (45, "Selecting detail report...")
    BILLING = (55, "Entering billing details...")
    PAYMENT = (65, "Submitting payment...")
    PAYMENT_PROCESSING = (75, "Processing payment...")
    DOWNLOADING = (85, "Downloading report...")
    ANALYZING = (92, "Analyzing report...")
    SAVING_RESULTS = (97, "Saving results...")
    COMPLETE = (100, "Report retrieved successfully")

    def __init__(self, percent: int, message: str):
        self.percent = percent
        self.message = message
