from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ..core.admin import JobStats
from ..core.clock import utcnow
from ..core.service import NotificationService
from .deps import get_service

router = APIRouter(tags=["status"])


class ScheduledRun(BaseModel):
    id: str
    next_run_time: datetime | None


class HealthResponse(BaseModel):
    status: str
    time: str
    transport: str
    scheduler_running: bool
    scheduled: list[ScheduledRun]
    jobs: JobStats


@router.get("/health", response_model=HealthResponse)
def health(request: Request, service: NotificationService = Depends(get_service)):
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="ok",
        time=utcnow().isoformat() + "Z",
        transport=service.settings.transport,
        scheduler_running=bool(scheduler and scheduler.running),
        scheduled=[ScheduledRun(**item) for item in scheduler.describe()] if scheduler else [],
        jobs=service.admin.stats(window=timedelta(days=service.settings.stats_window_days)),
    )
