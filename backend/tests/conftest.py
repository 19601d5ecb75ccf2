import json
from datetime import date, datetime, timedelta

import pytest

from notifyq.core.database import Base, build_engine, build_session_factory
from notifyq.core.job_store import JobStore
from notifyq.core.job_types import DOCUMENT_EXPIRY, default_registry
from notifyq.core.transport import DeliveryResult
from notifyq.models import PENDING, Machine, MachineDocument, NotificationJob

# 09:30 in Asia/Kolkata
NOW = datetime(2024, 5, 10, 4, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingTransport:
    """Transport double: records every send and replays scripted outcomes."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.sent = []

    def send(self, recipients, subject, body, priority="normal"):
        self.sent.append(
            {"recipients": list(recipients), "subject": subject, "body": body, "priority": priority}
        )
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return DeliveryResult(success=True, message_id=str(len(self.sent)))


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def store(session_factory, registry, clock):
    return JobStore(session_factory, registry, default_max_attempts=3, clock=clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_payload():
    def _make(document_id=42, **overrides):
        payload = {
            "document_id": document_id,
            "machine_number": "CMR-007",
            "machine_name": "Excavator",
            "document_type": "Insurance",
            "expiry_date": "2024-05-15",
            "days_until_expiry": 5,
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def add_document(session_factory):
    """Create a machine (if needed) and one of its documents. Returns the document id."""

    def _add(machine_number, expiry_date: date, document_type="Insurance", name="Excavator", is_active=True):
        with session_factory() as db:
            machine = db.query(Machine).filter(Machine.machine_number == machine_number).first()
            if machine is None:
                machine = Machine(machine_number=machine_number, name=name, is_active=is_active)
                db.add(machine)
                db.flush()
            doc = MachineDocument(machine_id=machine.id, document_type=document_type, expiry_date=expiry_date)
            db.add(doc)
            db.commit()
            return doc.id

    return _add


@pytest.fixture
def insert_job(session_factory):
    """Insert a job row directly, bypassing the store's transitions."""

    def _insert(status=PENDING, created_at=NOW, business_key="1", attempts=0, max_attempts=3, **fields):
        job = NotificationJob(
            type=DOCUMENT_EXPIRY,
            business_key=business_key,
            schema_version=1,
            payload_json=json.dumps({"document_id": int(business_key)}),
            status=status,
            attempts=attempts,
            max_attempts=max_attempts,
            created_at=created_at,
            updated_at=created_at,
            scheduled_for=created_at,
            **fields,
        )
        with session_factory() as db:
            db.add(job)
            db.commit()
            return job.id

    return _insert
