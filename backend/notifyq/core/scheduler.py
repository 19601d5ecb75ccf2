from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

log = logging.getLogger(__name__)

CYCLE_JOB_ID = "notification-cycle"
CLEANUP_JOB_ID = "notification-cleanup"
STARTUP_JOB_ID = "notification-cycle-startup"


class NotificationScheduler:
    """
    Owns the periodic triggers; no business logic of its own.

    - all cycle cron expressions feed one job, so cycles never overlap
    - cleanup runs on its own, much rarer, cron
    - optionally one cycle runs right after start()

    start() is idempotent and stop() drops every trigger.
    """

    def __init__(
        self,
        cycle: Callable[[], Any],
        cleanup: Callable[[], Any],
        *,
        cycle_crons: Sequence[str],
        cleanup_cron: str,
        timezone: str = "UTC",
        run_on_startup: bool = True,
    ):
        if not cycle_crons:
            raise ValueError("at least one cycle cron expression is required")
        self._cycle = cycle
        self._cleanup = cleanup
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self.run_on_startup = run_on_startup

        # parse eagerly so bad config fails at construction
        self._cycle_triggers = [CronTrigger.from_crontab(expr, timezone=self._tz) for expr in cycle_crons]
        self._cleanup_trigger = CronTrigger.from_crontab(cleanup_cron, timezone=self._tz)

        self._scheduler: BackgroundScheduler | None = None
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> bool:
        """Start the timers. Returns False if they were already running."""
        with self._state_lock:
            if self._scheduler is not None:
                log.info("scheduler already running, skipping start", extra={"event": "scheduler_start_skipped"})
                return False

            if len(self._cycle_triggers) == 1:
                cycle_trigger = self._cycle_triggers[0]
            else:
                cycle_trigger = OrTrigger(self._cycle_triggers)

            scheduler = BackgroundScheduler(timezone=self._tz)
            scheduler.add_job(
                self.run_cycle_now,
                trigger=cycle_trigger,
                id=CYCLE_JOB_ID,
                replace_existing=True,
                max_instances=1,  # prevent overlapping runs
                coalesce=True,  # merge missed runs if the process was down
            )
            scheduler.add_job(
                self.run_cleanup_now,
                trigger=self._cleanup_trigger,
                id=CLEANUP_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            if self.run_on_startup:
                scheduler.add_job(
                    self.run_cycle_now,
                    trigger=DateTrigger(run_date=datetime.now(self._tz), timezone=self._tz),
                    id=STARTUP_JOB_ID,
                    replace_existing=True,
                    misfire_grace_time=60,
                )

            scheduler.start()
            self._scheduler = scheduler

        log.info(
            "scheduler started (timezone %s)",
            self._timezone,
            extra={"event": "scheduler_started"},
        )
        return True

    def stop(self, wait: bool = False) -> bool:
        """Cancel all timers. Returns False if nothing was running."""
        with self._state_lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return False

        scheduler.shutdown(wait=wait)
        log.info("scheduler stopped", extra={"event": "scheduler_stopped"})
        return True

    def describe(self) -> List[Dict[str, Any]]:
        scheduler = self._scheduler
        if scheduler is None:
            return []
        return [
            {"id": job.id, "next_run_time": job.next_run_time}
            for job in scheduler.get_jobs()
        ]

    def run_cycle_now(self) -> Any:
        if not self._cycle_lock.acquire(blocking=False):
            log.warning("previous cycle still running, skipping tick", extra={"event": "cycle_skipped"})
            return None
        try:
            return self._cycle()
        except Exception:
            log.exception("notification cycle aborted", extra={"event": "cycle_aborted"})
            return None
        finally:
            self._cycle_lock.release()

    def run_cleanup_now(self) -> Any:
        try:
            return self._cleanup()
        except Exception:
            log.exception("cleanup aborted", extra={"event": "cleanup_aborted"})
            return None
