"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

import dmpilot
from dmpilot.api.routes import dashboard, webhooks
from dmpilot.config import Settings, get_settings
from dmpilot.engine.pipeline import EventPipeline, build_pipeline
from dmpilot.models.base import get_session_factory
from dmpilot.services.maintenance_service import MaintenanceScheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[EventPipeline] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    run_maintenance: bool = True,
) -> FastAPI:
    """Build the application.

    A pipeline passed in is owned by the caller; one built here is closed on
    shutdown together with the maintenance scheduler.
    """
    settings = settings or get_settings()
    session_factory = session_factory or (
        pipeline.session_factory if pipeline else get_session_factory(settings.database_url)
    )
    owns_pipeline = pipeline is None
    pipeline = pipeline or build_pipeline(settings, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pipeline.recover()
        scheduler = None
        if run_maintenance:
            scheduler = MaintenanceScheduler(
                session_factory,
                settings=settings,
                idempotency=pipeline.idempotency,
            )
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()
            if owns_pipeline:
                pipeline.close()

    app = FastAPI(title="DM Pilot", version=dmpilot.__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.pipeline = pipeline

    app.include_router(webhooks.router)
    app.include_router(dashboard.router)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
