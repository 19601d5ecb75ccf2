from datetime import datetime, timedelta
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.admin import JobStats
from ..core.errors import DuplicateLiveJob, InvalidJobState, JobNotFound, ValidationError
from ..core.job_store import JobRecord
from ..core.service import NotificationService
from .deps import get_service

router = APIRouter(prefix="/admin/jobs", tags=["jobs"])


# ---------- Pydantic schemas ----------

class EnqueueRequest(BaseModel):
    type: str
    payload: Dict[str, Any]
    scheduled_for: datetime | None = None
    max_attempts: int | None = Field(default=None, ge=1)


class ProducerSummary(BaseModel):
    candidates: int
    queued: int
    skipped: int
    invalid: int


class WorkerSummary(BaseModel):
    claimed: int
    completed: int
    retried: int
    failed: int


class CycleResponse(BaseModel):
    started_at: datetime
    reclaimed: int
    producer: ProducerSummary | None = None
    producer_error: str | None = None
    worker: WorkerSummary


class CleanupResponse(BaseModel):
    deleted: int


# ---------- Routes ----------

@router.get("", response_model=List[JobRecord])
def list_jobs(
    limit: int = Query(default=20, ge=1, le=200),
    status_filter: str | None = Query(default=None, alias="status"),
    service: NotificationService = Depends(get_service),
):
    try:
        return service.admin.recent_jobs(limit=limit, status=status_filter)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.get("/stats", response_model=JobStats)
def job_stats(
    window_days: int | None = Query(default=None, ge=1, le=365),
    service: NotificationService = Depends(get_service),
):
    days = window_days or service.settings.stats_window_days
    return service.admin.stats(window=timedelta(days=days))


@router.get("/{job_id}", response_model=JobRecord)
def get_job(job_id: int, service: NotificationService = Depends(get_service)):
    try:
        return service.store.get(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/{job_id}/retry", response_model=JobRecord)
def retry_job(job_id: int, service: NotificationService = Depends(get_service)):
    try:
        return service.admin.retry(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except (InvalidJobState, DuplicateLiveJob) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("", response_model=JobRecord, status_code=status.HTTP_201_CREATED)
def enqueue_job(payload: EnqueueRequest, service: NotificationService = Depends(get_service)):
    try:
        job_id = service.store.enqueue(
            payload.type,
            payload.payload,
            scheduled_for=payload.scheduled_for,
            max_attempts=payload.max_attempts,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except DuplicateLiveJob as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return service.store.get(job_id)


@router.post("/run-cycle", response_model=CycleResponse)
def run_cycle(service: NotificationService = Depends(get_service)):
    report = service.run_cycle()
    producer = None
    if report.producer is not None:
        producer = ProducerSummary(
            candidates=report.producer.candidates,
            queued=report.producer.queued,
            skipped=report.producer.skipped,
            invalid=report.producer.invalid,
        )
    return CycleResponse(
        started_at=report.started_at,
        reclaimed=report.reclaimed,
        producer=producer,
        producer_error=report.producer_error,
        worker=WorkerSummary(
            claimed=report.worker.claimed,
            completed=report.worker.completed,
            retried=report.worker.retried,
            failed=report.worker.failed,
        ),
    )


@router.post("/cleanup", response_model=CleanupResponse)
def run_cleanup(service: NotificationService = Depends(get_service)):
    return CleanupResponse(deleted=service.run_cleanup())
