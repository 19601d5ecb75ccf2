"""
Wiring for one deployment of the queue: store, registry, producer, worker,
cleanup and admin surface, built from ``Settings``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..models import TelegramChat
from ..integrations.mailer import EmailTransport
from ..integrations.telegram import TelegramTransport
from .admin import JobAdmin
from .cleanup import Cleanup
from .clock import utcnow
from .database import Base, build_session_factory
from .job_store import JobStore
from .job_types import JobTypeRegistry, default_registry
from .producer import Producer, ProducerReport
from .scheduler import NotificationScheduler
from .sources import CandidateSource, MachineDocumentSource
from .transport import LogTransport, NotificationTransport
from .worker import Worker, WorkerReport

log = logging.getLogger(__name__)


@dataclass
class CycleReport:
    started_at: datetime
    reclaimed: int = 0
    producer: ProducerReport | None = None
    producer_error: str | None = None
    worker: WorkerReport = field(default_factory=WorkerReport)


def build_transport(settings: Settings) -> NotificationTransport:
    kind = settings.transport.lower()
    if kind == "log":
        return LogTransport()
    if kind == "email":
        return EmailTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            from_address=settings.smtp_from,
            from_name=settings.smtp_from_name,
            timeout=settings.delivery_timeout_seconds,
        )
    if kind == "telegram":
        return TelegramTransport(
            token=settings.telegram_bot_token or "",
            api_base=settings.telegram_api_base,
            timeout=settings.delivery_timeout_seconds,
        )
    raise ValueError(f"unsupported transport {settings.transport!r}; expected log, email or telegram")


class NotificationService:
    def __init__(
        self,
        settings: Settings,
        engine: Engine,
        *,
        transport: NotificationTransport | None = None,
        source: CandidateSource | None = None,
        registry: JobTypeRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory = build_session_factory(engine)
        self.registry = registry or default_registry()
        self.transport = transport or build_transport(settings)
        self._clock = clock

        self.store = JobStore(
            self.session_factory,
            self.registry,
            default_max_attempts=settings.default_max_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            clock=clock,
        )
        self.source = source or MachineDocumentSource(
            self.session_factory,
            timezone=settings.timezone,
            clock=clock,
        )
        self.producer = Producer(
            self.store,
            self.source,
            lookahead_days=settings.lookahead_days,
            candidate_limit=settings.candidate_limit,
            timezone=settings.timezone,
            clock=clock,
        )
        self.worker = Worker(
            self.store,
            self.registry,
            self.transport,
            self.recipients,
            batch_size=settings.batch_size,
        )
        self.cleanup = Cleanup(self.store, retention_days=settings.retention_days)
        self.admin = JobAdmin(self.session_factory, clock=clock, timezone=settings.timezone)

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def recipients(self) -> List[str]:
        """Recipients for the active transport."""
        if self.settings.transport.lower() != "telegram":
            return self.settings.admin_email_list

        chat_ids = list(self.settings.telegram_chat_id_list)
        with self.session_factory() as db:
            chats = db.query(TelegramChat).filter(TelegramChat.enabled == True).all()  # noqa: E712
            for chat in chats:
                if str(chat.chat_id) not in chat_ids:
                    chat_ids.append(str(chat.chat_id))
        return chat_ids

    def run_cycle(self) -> CycleReport:
        """
        One producer/consumer cycle: reclaim stuck jobs, queue new candidates,
        then drain due jobs. A failing source does not stop already-queued
        jobs from being delivered; store errors abort the whole cycle.
        """
        report = CycleReport(started_at=self._clock())
        log.info("notification cycle started", extra={"event": "cycle_started"})

        report.reclaimed = self.store.reclaim_stuck(timedelta(minutes=self.settings.stuck_after_minutes))

        try:
            report.producer = self.producer.run()
        except SQLAlchemyError:
            raise
        except Exception as exc:
            report.producer_error = str(exc) or exc.__class__.__name__
            log.exception(
                "checking for new candidates failed; processing queued jobs anyway",
                extra={"event": "producer_failed"},
            )

        report.worker = self.worker.run_once()

        log.info("notification cycle finished", extra={"event": "cycle_finished"})
        return report

    def run_cleanup(self) -> int:
        return self.cleanup.run()

    def build_scheduler(self) -> NotificationScheduler:
        return NotificationScheduler(
            self.run_cycle,
            self.run_cleanup,
            cycle_crons=self.settings.cycle_cron_list,
            cleanup_cron=self.settings.cleanup_cron,
            timezone=self.settings.timezone,
            run_on_startup=self.settings.run_cycle_on_startup,
        )
