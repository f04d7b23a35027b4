"""Identifier helpers using ULID."""

import uuid

from ulid import ULID

SYNTHETIC_JOB_PREFIX = "adhoc_"


def new_request_id() -> str:
    """Time-ordered id for one automation attempt, e.g. ``01J5K…``.

    ULIDs carry a millisecond timestamp plus 80 random bits, so two jobs
    started in the same millisecond still get distinct temp directories.
    """
    return str(ULID())


def new_public_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:16]}"


def new_synthetic_job_id() -> str:
    return new_public_id(SYNTHETIC_JOB_PREFIX)


def is_tracked_job_id(job_id: str | None) -> bool:
    return bool(job_id) and not str(job_id).startswith(SYNTHETIC_JOB_PREFIX)
