import logging

from fastapi import FastAPI

from .api.routes_jobs import router as jobs_router
from .api.routes_status import router as status_router
from .api.routes_telegram import router as telegram_router
from .config import Settings, settings
from .core.database import build_engine
from .core.logging_utils import setup_logging
from .core.service import NotificationService

log = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    service: NotificationService | None = None,
) -> FastAPI:
    app_settings = app_settings or (service.settings if service else settings)
    setup_logging(app_settings.log_level, json_output=app_settings.log_json)

    if service is None:
        service = NotificationService(app_settings, build_engine(app_settings.database_url))

    app = FastAPI(
        title=app_settings.app_name,
        version="0.1.0",
    )
    app.state.service = service
    app.state.scheduler = None

    @app.on_event("startup")
    def startup_event():
        # Create tables
        service.create_schema()

        # Start cycle + cleanup triggers
        if app_settings.scheduler_enabled:
            scheduler = service.build_scheduler()
            scheduler.start()
            app.state.scheduler = scheduler
        else:
            log.info("scheduler disabled by configuration", extra={"event": "scheduler_disabled"})

    @app.on_event("shutdown")
    def shutdown_event():
        scheduler = app.state.scheduler
        if scheduler is not None:
            scheduler.stop()
            app.state.scheduler = None

        close = getattr(service.transport, "close", None)
        if close is not None:
            close()

    app.include_router(status_router)
    app.include_router(jobs_router)
    app.include_router(telegram_router)
    return app


app = create_app()
