"""FastAPI dependencies backed by objects stored on ``app.state``."""

from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from dmpilot.config import Settings
from dmpilot.engine.pipeline import EventPipeline


def get_db(request: Request) -> Iterator[Session]:
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_pipeline(request: Request) -> EventPipeline:
    return request.app.state.pipeline


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
