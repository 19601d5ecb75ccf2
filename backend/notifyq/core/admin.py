from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List

from pydantic import BaseModel
from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased, sessionmaker

from ..models import COMPLETED, FAILED, JOB_STATUSES, PENDING, NotificationJob
from .clock import local_day_bounds, utcnow
from .errors import DuplicateLiveJob, InvalidJobState, JobNotFound
from .job_store import JobRecord

log = logging.getLogger(__name__)


class JobStats(BaseModel):
    window_start: datetime
    total_jobs: int
    pending: int
    processing: int
    completed: int
    failed: int
    last_24h: int


class JobAdmin:
    """Read-only listing and statistics, plus the manual retry of failed jobs."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        timezone: str = "UTC",
    ):
        self.session_factory = session_factory
        self._clock = clock
        self._timezone = timezone

    def recent_jobs(self, limit: int = 20, status: str | None = None) -> List[JobRecord]:
        if status is not None and status not in JOB_STATUSES:
            raise ValueError(f"status must be one of {JOB_STATUSES}")

        with self.session_factory() as db:
            q = db.query(NotificationJob)
            if status is not None:
                q = q.filter(NotificationJob.status == status)
            rows = q.order_by(NotificationJob.created_at.desc(), NotificationJob.id.desc()).limit(limit).all()
            return [JobRecord.model_validate(r) for r in rows]

    def stats(self, window: timedelta = timedelta(days=7), now: datetime | None = None) -> JobStats:
        now = now or self._clock()
        window_start = now - window
        day_ago = now - timedelta(hours=24)

        with self.session_factory() as db:
            by_status = dict(
                db.execute(
                    select(NotificationJob.status, func.count(NotificationJob.id))
                    .where(NotificationJob.created_at >= window_start)
                    .group_by(NotificationJob.status)
                ).all()
            )
            last_24h = db.scalar(
                select(func.count(NotificationJob.id)).where(NotificationJob.created_at >= day_ago)
            )

        counts = {status: by_status.get(status, 0) for status in JOB_STATUSES}
        return JobStats(
            window_start=window_start,
            total_jobs=sum(counts.values()),
            last_24h=last_24h or 0,
            **counts,
        )

    def retry(self, job_id: int, now: datetime | None = None) -> JobRecord:
        """
        Move a failed job back to pending with a fresh attempt budget.

        Refused while the same key already has a completed job on the failed
        job's local calendar day, so the retry cannot notify that day twice.
        """
        now = now or self._clock()

        with self.session_factory() as db:
            job = db.get(NotificationJob, job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found")
            day_start, day_end = local_day_bounds(job.created_at, self._timezone)

            sibling = aliased(NotificationJob)
            notified_that_day = exists().where(
                sibling.type == NotificationJob.type,
                sibling.business_key == NotificationJob.business_key,
                sibling.id != NotificationJob.id,
                sibling.status == COMPLETED,
                sibling.created_at >= day_start,
                sibling.created_at < day_end,
            )
            stmt = (
                update(NotificationJob)
                .where(
                    NotificationJob.id == job_id,
                    NotificationJob.status == FAILED,
                    ~notified_that_day,
                )
                .values(
                    status=PENDING,
                    attempts=0,
                    error=None,
                    scheduled_for=now,
                    processed_at=None,
                    locked_at=None,
                    locked_by=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            try:
                result = db.execute(stmt)
                count = result.rowcount or 0
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateLiveJob(
                    f"job {job_id} cannot be retried while another live job exists for its key"
                ) from exc

            db.refresh(job)
            if not count:
                if job.status != FAILED:
                    raise InvalidJobState(f"job {job_id} is {job.status}; only failed jobs can be retried")
                raise InvalidJobState(
                    f"job {job_id} cannot be retried: key {job.business_key!r} was already notified that day"
                )
            record = JobRecord.model_validate(job)

        log.info("job queued for retry", extra={"event": "job_retry_manual", "job_id": job_id})
        return record
