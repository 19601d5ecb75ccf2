"""
Registered job types.

Each job type ties a ``type`` tag to a versioned pydantic payload schema, the
business key used for deduplication, an optional builder that turns a source
candidate into a payload, and the handler that delivers the notification.
Payloads are validated once at enqueue; an unregistered type is rejected there
rather than discovered at claim time.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Literal, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import UnknownJobType, ValidationError
from .sources import Candidate
from .transport import DeliveryResult, NotificationTransport

DOCUMENT_EXPIRY = "document_expiry"


@dataclass(frozen=True)
class DeliveryContext:
    transport: NotificationTransport
    recipients: Sequence[str]


JobHandler = Callable[[BaseModel, DeliveryContext], DeliveryResult]


@dataclass(frozen=True)
class JobType:
    name: str
    payload_model: type[BaseModel]
    handler: JobHandler
    business_key: Callable[[BaseModel], str | None] = lambda payload: None
    from_candidate: Callable[[Candidate, date], Dict[str, Any]] | None = None

    @property
    def schema_version(self) -> int:
        field = self.payload_model.model_fields.get("schema_version")
        return field.default if field is not None else 1


class JobTypeRegistry:
    def __init__(self) -> None:
        self._types: Dict[str, JobType] = {}

    def register(self, job_type: JobType) -> JobType:
        if job_type.name in self._types:
            raise ValueError(f"job type {job_type.name!r} is already registered")
        self._types[job_type.name] = job_type
        return job_type

    def get(self, name: str) -> JobType:
        try:
            return self._types[name]
        except KeyError:
            raise UnknownJobType(f"unknown job type {name!r}") from None

    def names(self) -> List[str]:
        return list(self._types)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def validate(self, name: str, payload: Mapping[str, Any] | BaseModel) -> BaseModel:
        job_type = self.get(name)
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        try:
            return job_type.payload_model.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid payload for {name!r}: {exc}") from exc


# ---------- document_expiry ----------


class DocumentExpiryPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = 1
    document_id: int = Field(gt=0)
    machine_number: str = Field(min_length=1, max_length=50)
    machine_name: str = "Unknown Machine"
    document_type: str = Field(default="Unknown Document", min_length=1)
    expiry_date: date
    days_until_expiry: int


def document_expiry_from_candidate(candidate: Candidate, today: date) -> Dict[str, Any]:
    fields = candidate.display_fields
    return {
        "document_id": candidate.business_key,
        "machine_number": fields.get("machine_number"),
        "machine_name": fields.get("machine_name") or "Unknown Machine",
        "document_type": fields.get("document_type") or "Unknown Document",
        "expiry_date": candidate.deadline.isoformat(),
        "days_until_expiry": (candidate.deadline - today).days,
    }


def send_document_expiry_alert(payload: DocumentExpiryPayload, ctx: DeliveryContext) -> DeliveryResult:
    if not ctx.recipients:
        return DeliveryResult(success=False, error="No recipients configured")

    days = payload.days_until_expiry
    if days <= 0:
        headline = "This document has EXPIRED!"
    else:
        headline = f"This document expires in {days} days!"

    subject = f"Document Expiry Alert - {payload.machine_number} ({payload.document_type})"
    body = "\n".join(
        [
            headline,
            "",
            f"Machine: {payload.machine_number}",
            f"Machine Name: {payload.machine_name}",
            f"Document Type: {payload.document_type}",
            f"Expiry Date: {payload.expiry_date.strftime('%d/%m/%Y')}",
            "",
            "Please renew this document to avoid compliance issues.",
        ]
    )
    priority = "high" if days <= 7 else "normal"
    return ctx.transport.send(list(ctx.recipients), subject, body, priority)


DOCUMENT_EXPIRY_TYPE = JobType(
    name=DOCUMENT_EXPIRY,
    payload_model=DocumentExpiryPayload,
    handler=send_document_expiry_alert,
    business_key=lambda payload: str(payload.document_id),
    from_candidate=document_expiry_from_candidate,
)


def default_registry() -> JobTypeRegistry:
    registry = JobTypeRegistry()
    registry.register(DOCUMENT_EXPIRY_TYPE)
    return registry
