from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from notifyq.config import Settings
from notifyq.core.job_types import DOCUMENT_EXPIRY
from notifyq.core.service import NotificationService, build_transport
from notifyq.core.transport import DeliveryResult, LogTransport
from notifyq.integrations.mailer import EmailTransport
from notifyq.models import COMPLETED, FAILED, PENDING, PROCESSING, NotificationJob, TelegramChat

from conftest import RecordingTransport


def make_settings(**overrides):
    values = {
        "database_url": "sqlite://",
        "admin_emails": "ops@example.com",
        "scheduler_enabled": False,
        "log_json": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def make_service(engine, clock):
    def _make(transport=None, source=None, **overrides):
        return NotificationService(
            make_settings(**overrides),
            engine,
            transport=transport or RecordingTransport(),
            source=source,
            clock=clock,
        )

    return _make


def jobs_for(service, business_key):
    with service.session_factory() as db:
        return (
            db.query(NotificationJob)
            .filter(NotificationJob.business_key == business_key)
            .order_by(NotificationJob.id)
            .all()
        )


def test_scenario_alert_is_sent_once_per_day(make_service, add_document):
    transport = RecordingTransport()
    service = make_service(transport=transport)
    doc_id = add_document("CMR-007", date(2024, 5, 15))

    report = service.run_cycle()

    assert report.producer.queued == 1
    assert report.worker.completed == 1
    (job,) = jobs_for(service, str(doc_id))
    assert job.status == COMPLETED
    assert job.attempts == 1
    assert job.processed_at is not None
    assert transport.sent[0]["recipients"] == ["ops@example.com"]

    again = service.run_cycle()
    assert again.producer.queued == 0
    assert again.worker.claimed == 0
    assert len(jobs_for(service, str(doc_id))) == 1
    assert len(transport.sent) == 1


def test_scenario_failed_job_retried_by_operator(make_service):
    transport = RecordingTransport([DeliveryResult(success=False, error=f"attempt {n} failed") for n in (1, 2, 3)])
    service = make_service(transport=transport)
    job_id = service.store.enqueue(
        DOCUMENT_EXPIRY,
        {
            "document_id": 42,
            "machine_number": "CMR-007",
            "expiry_date": "2024-05-15",
            "days_until_expiry": 5,
        },
    )

    for _ in range(3):
        service.worker.run_once()

    failed = service.store.get(job_id)
    assert (failed.status, failed.attempts, failed.error) == (FAILED, 3, "attempt 3 failed")

    retried = service.admin.retry(job_id)
    assert (retried.status, retried.attempts, retried.error) == (PENDING, 0, None)

    assert service.worker.run_once().completed == 1
    assert service.store.get(job_id).status == COMPLETED


def test_scenario_crashed_claim_is_reclaimed_without_double_counting(make_service, clock):
    service = make_service(stuck_after_minutes=30)
    job_id = service.store.enqueue(
        DOCUMENT_EXPIRY,
        {"document_id": 42, "machine_number": "CMR-007", "expiry_date": "2024-05-15", "days_until_expiry": 5},
    )
    (claimed,) = service.store.claim_due_batch(DOCUMENT_EXPIRY, limit=1)
    assert claimed.attempts == 1
    # process dies here

    clock.advance(minutes=10)
    assert service.store.reclaim_stuck(timedelta(minutes=30)) == 0
    assert service.store.get(job_id).status == PROCESSING

    clock.advance(minutes=25)
    report = service.run_cycle()

    assert report.reclaimed == 1
    job = service.store.get(job_id)
    assert job.status == COMPLETED
    assert job.attempts == 1


def test_source_failure_does_not_stop_delivery(make_service):
    class BrokenSource:
        def list_candidates(self, lookahead_days):
            raise RuntimeError("documents service unavailable")

    service = make_service(source=BrokenSource())
    service.store.enqueue(
        DOCUMENT_EXPIRY,
        {"document_id": 1, "machine_number": "CMR-001", "expiry_date": "2024-05-12", "days_until_expiry": 2},
    )

    report = service.run_cycle()

    assert report.producer is None
    assert report.producer_error == "documents service unavailable"
    assert report.worker.completed == 1


def test_store_errors_abort_the_cycle(make_service):
    class DatabaseDownSource:
        def list_candidates(self, lookahead_days):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    service = make_service(source=DatabaseDownSource())

    with pytest.raises(OperationalError):
        service.run_cycle()


def test_cleanup_uses_retention(make_service, insert_job, clock):
    service = make_service(retention_days=30)
    insert_job(status=COMPLETED, created_at=clock.now - timedelta(days=31), business_key="1", attempts=1)
    insert_job(status=COMPLETED, created_at=clock.now - timedelta(days=29), business_key="2", attempts=1)

    assert service.run_cleanup() == 1


def test_email_recipients_come_from_settings(make_service):
    service = make_service(admin_emails="a@example.com, b@example.com", transport="email")
    assert service.recipients() == ["a@example.com", "b@example.com"]


def test_telegram_recipients_merge_settings_and_registered_chats(make_service, session_factory):
    with session_factory() as db:
        db.add_all(
            [
                TelegramChat(chat_id=200, enabled=True),
                TelegramChat(chat_id=300, enabled=False),
                TelegramChat(chat_id=100, enabled=True),
            ]
        )
        db.commit()

    service = make_service(transport="telegram", telegram_chat_ids="100")

    assert sorted(service.recipients()) == ["100", "200"]


def test_build_transport():
    assert isinstance(build_transport(make_settings(transport="log")), LogTransport)
    assert isinstance(build_transport(make_settings(transport="email")), EmailTransport)
    with pytest.raises(RuntimeError):
        build_transport(make_settings(transport="telegram", telegram_bot_token=None))
    with pytest.raises(ValueError):
        build_transport(make_settings(transport="pigeon"))


def test_scheduler_is_built_from_settings(make_service):
    service = make_service(cycle_crons="0 8 * * *;0 19 * * *", run_cycle_on_startup=False)
    scheduler = service.build_scheduler()

    assert scheduler.running is False
    assert scheduler.run_on_startup is False
