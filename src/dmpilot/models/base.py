"""SQLAlchemy base configuration."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, create_engine, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """Mixin for adding created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def get_engine(database_url: str) -> Any:
    """Create SQLAlchemy engine.

    SQLite connections are shared with the sequencer's worker threads, so the
    same-thread check is disabled there.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, echo=False, connect_args=connect_args)


def get_session_factory(database_url: str) -> sessionmaker:
    """Create a session factory bound to a fresh engine."""
    return sessionmaker(bind=get_engine(database_url), expire_on_commit=False)


def init_db(database_url: str) -> None:
    """Initialize database tables."""
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
