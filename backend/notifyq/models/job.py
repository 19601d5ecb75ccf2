import json

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text, text

from ..core.clock import utcnow
from ..core.database import Base

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

JOB_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)
LIVE_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED)


class NotificationJob(Base):
    __tablename__ = "notification_jobs"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False)
    business_key = Column(String(128), nullable=True)
    schema_version = Column(Integer, nullable=False, default=1)
    payload_json = Column(Text, nullable=False)

    status = Column(String(16), nullable=False, default=PENDING)  # PENDING | PROCESSING | COMPLETED | FAILED
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error = Column(Text, nullable=True)

    locked_at = Column(DateTime, nullable=True)
    locked_by = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    scheduled_for = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_notification_jobs_claim", "type", "status", "scheduled_for"),
        Index("ix_notification_jobs_created_at", "created_at"),
        Index("ix_notification_jobs_key", "type", "business_key", "status"),
        # at most one live job per business key
        Index(
            "uq_notification_jobs_live_key",
            "type",
            "business_key",
            unique=True,
            sqlite_where=text("status IN ('pending', 'processing')"),
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
        CheckConstraint("attempts >= 0 AND attempts <= max_attempts", name="ck_notification_jobs_attempts"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_notification_jobs_status",
        ),
    )

    @property
    def payload(self) -> dict:
        return json.loads(self.payload_json)
