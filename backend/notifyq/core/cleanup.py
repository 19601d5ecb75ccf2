import logging
from datetime import datetime, timedelta

from .job_store import JobStore

log = logging.getLogger(__name__)


class Cleanup:
    """Deletes completed and failed jobs older than the retention window.

    Pending and processing jobs are never deleted, whatever their age;
    stuck processing jobs are handled by ``JobStore.reclaim_stuck``.
    """

    def __init__(self, store: JobStore, retention_days: int = 30):
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        self._store = store
        self.retention = timedelta(days=retention_days)

    def run(self, now: datetime | None = None) -> int:
        deleted = self._store.purge_terminal(self.retention, now=now)
        log.info("cleaned up %s old jobs", deleted, extra={"event": "cleanup_run"})
        return deleted
