from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from nipr_report.domain.models import JobData, JobEventRecord, JobRecord, LookupInput, TERMINAL_STATUSES
from nipr_report.infra.db.models import JobEventRow, JobRow
from nipr_report.infra.db.session import get_session_factory
from nipr_report.utils.ids import new_public_id


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DatabaseStore:
    """Persistence layer backed by SQLAlchemy."""

    def __init__(self, *, claim_attempts: int = 5):
        self._session_factory = get_session_factory()
        self._claim_attempts = max(1, claim_attempts)

    @staticmethod
    def _to_job_record(row: JobRow) -> JobRecord:
        return JobRecord(
            job_id=row.public_id,
            user_id=row.user_id,
            status=row.status,  # type: ignore[arg-type]
            progress=row.progress,
            message=row.progress_message,
            error_message=row.error_message,
            result_files=list(row.result_files or []),
            result_carriers=list(row.result_carriers or []),
            licensed_states=list(row.licensed_states or []),
            created_at=_iso(row.created_at),
            started_at=_iso(row.started_at),
            completed_at=_iso(row.completed_at),
        )

    @staticmethod
    def _to_job_event_record(job_public_id: str, row: JobEventRow) -> JobEventRecord:
        created_at = _iso(row.created_at) or datetime.now(timezone.utc).isoformat()
        return JobEventRecord(
            job_id=job_public_id,
            status=row.status,  # type: ignore[arg-type]
            progress=row.progress,
            message=row.message,
            created_at=created_at,
        )

    @staticmethod
    def _append_job_event(*, db, job_row: JobRow) -> None:
        db.add(
            JobEventRow(
                job_id=job_row.id,
                status=job_row.status,
                progress=job_row.progress,
                message=job_row.progress_message,
            )
        )

    @staticmethod
    def _find(db, job_id: str) -> JobRow | None:
        return db.execute(select(JobRow).where(JobRow.public_id == job_id)).scalar_one_or_none()

    def create_job(self, *, user_id: str | None, lookup: LookupInput) -> JobRecord:
        with self._session_factory() as db:
            row = JobRow(
                public_id=new_public_id("job_"),
                user_id=user_id,
                status="queued",
                progress=0.0,
                progress_message="Waiting in queue...",
                last_name=lookup.last_name,
                license_number=lookup.license_number,
                ssn_last4=lookup.ssn_last4,
                dob=lookup.dob,
                result_files=[],
                result_carriers=[],
                licensed_states=[],
            )
            db.add(row)
            db.flush()
            self._append_job_event(db=db, job_row=row)
            db.commit()
            return self._to_job_record(row)

    def acquire_job(self) -> JobData | None:
        """Claim the oldest queued job and mark it running.

        The claim is a conditional UPDATE so that only one worker wins a row
        even where ``FOR UPDATE SKIP LOCKED`` is not enforced (SQLite).
        """
        for _ in range(self._claim_attempts):
            with self._session_factory() as db:
                candidate_id = db.execute(
                    select(JobRow.id)
                    .where(JobRow.status == "queued")
                    .order_by(JobRow.created_at.asc(), JobRow.id.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).scalar()
                if candidate_id is None:
                    return None

                claimed = db.execute(
                    update(JobRow)
                    .where(JobRow.id == candidate_id, JobRow.status == "queued")
                    .values(
                        status="running",
                        started_at=datetime.now(timezone.utc),
                        progress_message="Starting automation...",
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    # Another worker took this row first.
                    db.rollback()
                    continue

                row = db.execute(select(JobRow).where(JobRow.id == candidate_id)).scalar_one()
                self._append_job_event(db=db, job_row=row)
                db.commit()

                return JobData(
                    job_id=row.public_id,
                    job_user_id=row.user_id,
                    last_name=row.last_name,
                    license_number=row.license_number,
                    ssn_last4=row.ssn_last4,
                    dob=row.dob,
                )
        return None

    def release_stale_locks(self, *, max_age_ms: int) -> int:
        """Fail running jobs whose worker never reported a terminal state."""
        cutoff = datetime.now(timezone.utc) - timedelta(milliseconds=max_age_ms)
        with self._session_factory() as db:
            rows = (
                db.execute(select(JobRow).where(JobRow.status == "running", JobRow.started_at < cutoff))
                .scalars()
                .all()
            )
            for row in rows:
                row.status = "failed"
                row.error_message = f"Job exceeded {max_age_ms // 1000}s without completing"
                row.completed_at = datetime.now(timezone.utc)
                self._append_job_event(db=db, job_row=row)
            db.commit()
            return len(rows)

    def update_progress(self, *, job_id: str, percent: float, message: str) -> bool:
        with self._session_factory() as db:
            row = self._find(db, job_id)
            if row is None or row.status in TERMINAL_STATUSES:
                return False
            if percent < (row.progress or 0.0):
                return False

            if row.status == "queued":
                row.status = "running"
                row.started_at = datetime.now(timezone.utc)
            row.progress = percent
            row.progress_message = message
            self._append_job_event(db=db, job_row=row)
            db.commit()
            return True

    def complete_job(
        self,
        *,
        job_id: str,
        files: list[str],
        carriers: list[str],
        states: list[str],
        message: str,
    ) -> bool:
        with self._session_factory() as db:
            row = self._find(db, job_id)
            if row is None or row.status in TERMINAL_STATUSES:
                return False

            row.status = "complete"
            row.progress = 100.0
            row.progress_message = message
            row.error_message = None
            row.result_files = list(files)
            row.result_carriers = list(carriers)
            row.licensed_states = list(states)
            row.completed_at = datetime.now(timezone.utc)
            self._append_job_event(db=db, job_row=row)
            db.commit()
            return True

    def fail_job(self, *, job_id: str, error_message: str) -> bool:
        with self._session_factory() as db:
            row = self._find(db, job_id)
            if row is None or row.status in TERMINAL_STATUSES:
                return False

            # Progress stays at the last checkpoint reached.
            row.status = "failed"
            row.error_message = error_message[:1000]
            row.completed_at = datetime.now(timezone.utc)
            self._append_job_event(db=db, job_row=row)
            db.commit()
            return True

    def get_job(self, job_id: str) -> JobRecord | None:
        with self._session_factory() as db:
            row = self._find(db, job_id)
            if row is None:
                return None
            return self._to_job_record(row)

    def list_job_events(self, job_id: str) -> list[JobEventRecord]:
        with self._session_factory() as db:
            row = self._find(db, job_id)
            if row is None:
                return []

            event_rows = (
                db.execute(
                    select(JobEventRow)
                    .where(JobEventRow.job_id == row.id)
                    .order_by(JobEventRow.created_at.asc(), JobEventRow.id.asc())
                )
                .scalars()
                .all()
            )
            return [self._to_job_event_record(row.public_id, item) for item in event_rows]

    def queue_position(self, job_id: str) -> int | None:
        with self._session_factory() as db:
            row = self._find(db, job_id)
            if row is None or row.status != "queued":
                return None

            ahead = db.execute(
                select(func.count(JobRow.id)).where(
                    JobRow.status == "queued",
                    (JobRow.created_at < row.created_at)
                    | ((JobRow.created_at == row.created_at) & (JobRow.id < row.id)),
                )
            ).scalar_one()
            return int(ahead) + 1

    def has_pending(self) -> bool:
        with self._session_factory() as db:
            return db.execute(select(JobRow.id).where(JobRow.status == "queued").limit(1)).first() is not None

    def queue_stats(self) -> dict[str, int]:
        with self._session_factory() as db:
            rows = db.execute(select(JobRow.status, func.count(JobRow.id)).group_by(JobRow.status)).all()
        stats = {"queued": 0, "running": 0, "complete": 0, "failed": 0}
        for status, count in rows:
            stats[status] = int(count)
        return stats
