"""Durable seen-set for provider event ids."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dmpilot.models.base import Base, utcnow


class EventStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    PROCESSED = "processed"
    FAILED = "failed"


class ProcessedEvent(Base):
    """One row per provider event id that passed the idempotency filter."""

    __tablename__ = "processed_events"

    provider_event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(nullable=True, index=True)
    external_user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        default=EventStatus.ACCEPTED,
        nullable=False,
    )
    accepted_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Normalized event, kept until processed so a restart can replay it
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ProcessedEvent(id='{self.provider_event_id}', status='{self.status.value}')>"
