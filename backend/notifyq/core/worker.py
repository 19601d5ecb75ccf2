from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

from ..models import COMPLETED, FAILED, PENDING
from .job_store import JobRecord, JobStore
from .job_types import DeliveryContext, JobTypeRegistry
from .transport import DeliveryResult, NotificationTransport

log = logging.getLogger(__name__)


@dataclass
class WorkerReport:
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


class Worker:
    """
    Claims due jobs for every registered type and delivers them one by one.

    Delivery failures and handler exceptions are recorded on the job; errors
    from the store itself propagate so the caller's cycle aborts.
    """

    def __init__(
        self,
        store: JobStore,
        registry: JobTypeRegistry,
        transport: NotificationTransport,
        recipients: Callable[[], Sequence[str]],
        *,
        batch_size: int = 25,
    ):
        self._store = store
        self._registry = registry
        self._transport = transport
        self._recipients = recipients
        self.batch_size = batch_size

    def run_once(self, now: datetime | None = None) -> WorkerReport:
        report = WorkerReport()

        for job_type in self._registry.names():
            jobs = self._store.claim_due_batch(job_type, self.batch_size, now=now)
            report.claimed += len(jobs)
            for job in jobs:
                outcome = self.process(job)
                if outcome == COMPLETED:
                    report.completed += 1
                elif outcome == FAILED:
                    report.failed += 1
                elif outcome == PENDING:
                    report.retried += 1

        log.info(
            "worker run: %s claimed, %s completed, %s retried, %s failed",
            report.claimed,
            report.completed,
            report.retried,
            report.failed,
            extra={"event": "worker_run"},
        )
        return report

    def deliver(self, job: JobRecord) -> DeliveryResult:
        # recipient lookup hits the store; its errors propagate
        recipients = list(self._recipients())
        try:
            definition = self._registry.get(job.type)
            payload = self._registry.validate(job.type, job.payload)
            ctx = DeliveryContext(transport=self._transport, recipients=recipients)
            result = definition.handler(payload, ctx)
        except Exception as exc:
            log.warning(
                "delivery raised %s",
                exc.__class__.__name__,
                extra={"event": "delivery_error", "job_id": job.id, "job_type": job.type},
                exc_info=True,
            )
            return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

        if result is None:
            return DeliveryResult(success=False, error="handler returned no result")
        return result

    def process(self, job: JobRecord) -> str | None:
        """Deliver one claimed job and record the outcome. Returns the new status."""
        result = self.deliver(job)

        if result.success:
            if self._store.mark_completed(job.id, claim_token=job.locked_by):
                return COMPLETED
            return None

        return self._store.mark_retry_or_fail(
            job.id,
            result.error or "Delivery failed",
            claim_token=job.locked_by,
        )
