"""
Durable job store backed by the ``notification_jobs`` table.

Every state change is a single conditional UPDATE (or DELETE) so that several
cycles, threads or deployed instances can share the table without a
read-then-write race. The claim step in particular both selects and marks the
batch in one statement; the rows a caller owns are then read back by the
claim token it wrote into ``locked_by``.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping

from pydantic import BaseModel, ConfigDict
from sqlalchemy import and_, case, delete, exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased, sessionmaker

from ..models import (
    COMPLETED,
    FAILED,
    LIVE_STATUSES,
    PENDING,
    PROCESSING,
    TERMINAL_STATUSES,
    NotificationJob,
)
from .clock import to_naive_utc, utcnow
from .errors import DuplicateLiveJob, JobNotFound, ValidationError
from .job_types import JobTypeRegistry

log = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class JobRecord(BaseModel):
    """Detached snapshot of a job row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    business_key: str | None = None
    schema_version: int
    payload: dict
    status: str
    attempts: int
    max_attempts: int
    error: str | None = None
    locked_at: datetime | None = None
    locked_by: str | None = None
    created_at: datetime
    updated_at: datetime
    scheduled_for: datetime
    processed_at: datetime | None = None


def _truncate(message: str) -> str:
    return message if len(message) <= MAX_ERROR_LENGTH else message[: MAX_ERROR_LENGTH - 3] + "..."


class JobStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        registry: JobTypeRegistry,
        *,
        default_max_attempts: int = 3,
        retry_backoff_seconds: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        self.session_factory = session_factory
        self.registry = registry
        self.default_max_attempts = default_max_attempts
        self.retry_backoff = timedelta(seconds=retry_backoff_seconds)
        self._clock = clock

    # ---------- Creation ----------

    def _build_job(
        self,
        job_type: str,
        payload: Mapping[str, Any] | BaseModel,
        scheduled_for: datetime | None,
        max_attempts: int | None,
    ) -> NotificationJob:
        definition = self.registry.get(job_type)
        model = self.registry.validate(job_type, payload)

        max_attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")

        now = self._clock()
        return NotificationJob(
            type=job_type,
            business_key=definition.business_key(model),
            schema_version=definition.schema_version,
            payload_json=json.dumps(model.model_dump(mode="json")),
            status=PENDING,
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
            scheduled_for=to_naive_utc(scheduled_for) if scheduled_for else now,
        )

    def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any] | BaseModel,
        scheduled_for: datetime | None = None,
        max_attempts: int | None = None,
    ) -> int:
        """Queue a job. Raises ValidationError before touching the database."""
        job = self._build_job(job_type, payload, scheduled_for, max_attempts)

        with self.session_factory() as db:
            db.add(job)
            try:
                db.flush()
                job_id = job.id
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateLiveJob(
                    f"a live {job_type} job already exists for key {job.business_key!r}"
                ) from exc

        log.info(
            "job queued",
            extra={"event": "job_queued", "job_id": job_id, "job_type": job_type},
        )
        return job_id

    def enqueue_unless_blocked(
        self,
        job_type: str,
        payload: Mapping[str, Any] | BaseModel,
        day_start: datetime,
        day_end: datetime,
        scheduled_for: datetime | None = None,
    ) -> int | None:
        """
        Queue a job unless its business key already has a live job, or a
        completed job created within [day_start, day_end). Returns the new id
        or None when skipped.
        """
        job = self._build_job(job_type, payload, scheduled_for, None)
        if job.business_key is None:
            raise ValidationError(f"job type {job_type!r} has no business key to deduplicate on")

        blocking = exists().where(
            NotificationJob.type == job_type,
            NotificationJob.business_key == job.business_key,
            or_(
                NotificationJob.status.in_(LIVE_STATUSES),
                and_(
                    NotificationJob.status == COMPLETED,
                    NotificationJob.created_at >= day_start,
                    NotificationJob.created_at < day_end,
                ),
            ),
        )

        with self.session_factory() as db:
            if db.scalar(select(blocking)):
                return None
            db.add(job)
            try:
                db.flush()
                job_id = job.id
                db.commit()
            except IntegrityError:
                # another producer inserted the live job first
                db.rollback()
                return None

        log.info(
            "job queued",
            extra={"event": "job_queued", "job_id": job_id, "job_type": job_type},
        )
        return job_id

    # ---------- Claim / outcome ----------

    def claim_due_batch(self, job_type: str, limit: int, now: datetime | None = None) -> List[JobRecord]:
        now = now or self._clock()
        token = uuid.uuid4().hex

        candidate = aliased(NotificationJob)
        due_ids = (
            select(candidate.id)
            .where(
                candidate.type == job_type,
                candidate.status == PENDING,
                candidate.attempts < candidate.max_attempts,
                candidate.scheduled_for <= now,
            )
            .order_by(candidate.scheduled_for.asc(), candidate.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(NotificationJob)
            .where(
                NotificationJob.id.in_(due_ids),
                NotificationJob.status == PENDING,
                NotificationJob.attempts < NotificationJob.max_attempts,
                NotificationJob.scheduled_for <= now,
            )
            .values(
                status=PROCESSING,
                attempts=NotificationJob.attempts + 1,
                locked_at=now,
                locked_by=token,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        with self.session_factory() as db:
            result = db.execute(stmt)
            count = result.rowcount or 0
            db.commit()
            if not count:
                return []

            rows = (
                db.query(NotificationJob)
                .filter(NotificationJob.locked_by == token, NotificationJob.status == PROCESSING)
                .order_by(NotificationJob.scheduled_for.asc(), NotificationJob.id.asc())
                .all()
            )
            claimed = [JobRecord.model_validate(row) for row in rows]

        for job in claimed:
            log.info(
                "job claimed (attempt %s/%s)",
                job.attempts,
                job.max_attempts,
                extra={"event": "job_claimed", "job_id": job.id, "job_type": job.type},
            )
        return claimed

    def mark_completed(
        self,
        job_id: int,
        claim_token: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        now = now or self._clock()
        conditions = [NotificationJob.id == job_id, NotificationJob.status == PROCESSING]
        if claim_token is not None:
            conditions.append(NotificationJob.locked_by == claim_token)

        stmt = (
            update(NotificationJob)
            .where(*conditions)
            .values(
                status=COMPLETED,
                processed_at=now,
                error=None,
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as db:
            result = db.execute(stmt)
            count = result.rowcount or 0
            db.commit()

        if not count:
            log.warning(
                "job not completed: not processing under this claim",
                extra={"event": "job_complete_skipped", "job_id": job_id},
            )
            return False

        log.info("job completed", extra={"event": "job_completed", "job_id": job_id})
        return True

    def mark_retry_or_fail(
        self,
        job_id: int,
        error_message: str,
        claim_token: str | None = None,
        now: datetime | None = None,
    ) -> str | None:
        """Return the job to pending, or fail it once attempts are exhausted.

        Returns the resulting status, or None if the job was not processing
        under ``claim_token``.
        """
        now = now or self._clock()
        exhausted = NotificationJob.attempts >= NotificationJob.max_attempts

        values = {
            "status": case((exhausted, FAILED), else_=PENDING),
            "error": _truncate(error_message or "Delivery failed"),
            "locked_at": None,
            "locked_by": None,
            "updated_at": now,
        }
        if self.retry_backoff:
            values["scheduled_for"] = case(
                (exhausted, NotificationJob.scheduled_for),
                else_=now + self.retry_backoff,
            )

        conditions = [NotificationJob.id == job_id, NotificationJob.status == PROCESSING]
        if claim_token is not None:
            conditions.append(NotificationJob.locked_by == claim_token)

        stmt = (
            update(NotificationJob)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as db:
            result = db.execute(stmt)
            count = result.rowcount or 0
            db.commit()
            if not count:
                log.warning(
                    "job outcome dropped: not processing under this claim",
                    extra={"event": "job_fail_skipped", "job_id": job_id},
                )
                return None
            job = db.get(NotificationJob, job_id)
            status, attempts, max_attempts = job.status, job.attempts, job.max_attempts

        if status == FAILED:
            log.error(
                "job failed permanently after %s attempts: %s",
                attempts,
                error_message,
                extra={"event": "job_failed", "job_id": job_id},
            )
        else:
            log.warning(
                "job reset for retry (%s/%s): %s",
                attempts,
                max_attempts,
                error_message,
                extra={"event": "job_retry_scheduled", "job_id": job_id},
            )
        return status

    # ---------- Sweeps ----------

    def reclaim_stuck(self, older_than: timedelta, now: datetime | None = None) -> int:
        """
        Return jobs left in processing by an interrupted worker to pending.
        The attempt taken by the interrupted claim is given back.
        """
        now = now or self._clock()
        cutoff = now - older_than

        stmt = (
            update(NotificationJob)
            .where(
                NotificationJob.status == PROCESSING,
                or_(NotificationJob.locked_at.is_(None), NotificationJob.locked_at < cutoff),
            )
            .values(
                status=PENDING,
                attempts=case(
                    (NotificationJob.attempts > 0, NotificationJob.attempts - 1),
                    else_=0,
                ),
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as db:
            result = db.execute(stmt)
            count = result.rowcount or 0
            db.commit()

        if count:
            log.warning("reclaimed %s stuck jobs", count, extra={"event": "jobs_reclaimed"})
        return count

    def purge_terminal(self, older_than: timedelta, now: datetime | None = None) -> int:
        now = now or self._clock()
        cutoff = now - older_than

        stmt = (
            delete(NotificationJob)
            .where(
                NotificationJob.status.in_(TERMINAL_STATUSES),
                NotificationJob.created_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as db:
            result = db.execute(stmt)
            count = result.rowcount or 0
            db.commit()
        return count

    # ---------- Reads ----------

    def get(self, job_id: int) -> JobRecord:
        with self.session_factory() as db:
            job = db.get(NotificationJob, job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found")
            return JobRecord.model_validate(job)
