from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List

from .clock import local_day_bounds, local_today, utcnow
from .errors import ValidationError
from .job_store import JobStore
from .job_types import DOCUMENT_EXPIRY
from .sources import CandidateSource

log = logging.getLogger(__name__)


@dataclass
class ProducerReport:
    candidates: int = 0
    queued: int = 0
    skipped: int = 0
    invalid: int = 0
    queued_ids: List[int] = field(default_factory=list)


class Producer:
    """
    Turns candidates nearing a deadline into queued jobs, at most once per
    business key per local calendar day. A key that still has a pending or
    processing job is skipped as well, so repeated runs before the worker
    drains the queue do not stack up duplicates.
    """

    def __init__(
        self,
        store: JobStore,
        source: CandidateSource,
        *,
        job_type: str = DOCUMENT_EXPIRY,
        lookahead_days: int = 14,
        candidate_limit: int = 20,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        definition = store.registry.get(job_type)
        if definition.from_candidate is None:
            raise ValueError(f"job type {job_type!r} cannot be produced from candidates")
        self._store = store
        self._source = source
        self._job_type = definition
        self.lookahead_days = lookahead_days
        self.candidate_limit = candidate_limit
        self._timezone = timezone
        self._clock = clock

    def run(self, now: datetime | None = None) -> ProducerReport:
        now = now or self._clock()
        today = local_today(now, self._timezone)
        day_start, day_end = local_day_bounds(now, self._timezone)
        report = ProducerReport()

        candidates = self._source.list_candidates(self.lookahead_days)
        report.candidates = len(candidates)

        for candidate in candidates:
            if report.queued >= self.candidate_limit:
                break

            try:
                payload = self._job_type.from_candidate(candidate, today)
                job_id = self._store.enqueue_unless_blocked(
                    self._job_type.name,
                    payload,
                    day_start,
                    day_end,
                    scheduled_for=now,
                )
            except ValidationError as exc:
                report.invalid += 1
                log.warning(
                    "skipping invalid candidate %s: %s",
                    candidate.business_key,
                    exc,
                    extra={"event": "candidate_invalid", "job_type": self._job_type.name},
                )
                continue

            if job_id is None:
                report.skipped += 1
                continue

            report.queued += 1
            report.queued_ids.append(job_id)

        log.info(
            "producer run: %s candidates, %s queued, %s skipped, %s invalid",
            report.candidates,
            report.queued,
            report.skipped,
            report.invalid,
            extra={"event": "producer_run", "job_type": self._job_type.name},
        )
        return report
