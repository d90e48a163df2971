"""Repository for the provider event seen-set."""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dmpilot.models.base import utcnow
from dmpilot.models.event import EventStatus, ProcessedEvent
from dmpilot.repositories.base_repository import BaseRepository


class EventRepository(BaseRepository[ProcessedEvent]):
    """Repository for ProcessedEvent rows."""

    def __init__(self, session: Session):
        super().__init__(session, ProcessedEvent)

    def insert_if_absent(
        self,
        provider_event_id: str,
        account_id: Optional[int] = None,
        external_user_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> bool:
        """Record an event id and commit. Returns False if it was already recorded.

        The primary key makes this an atomic insert-if-absent: of several
        concurrent callers exactly one commit succeeds.
        """
        self.session.add(
            ProcessedEvent(
                provider_event_id=provider_event_id,
                account_id=account_id,
                external_user_id=external_user_id,
                status=EventStatus.ACCEPTED,
                accepted_at=utcnow(),
                payload=payload,
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return False
        return True

    def set_status(
        self,
        provider_event_id: str,
        status: EventStatus,
        error: Optional[str] = None,
    ) -> bool:
        """Update the processing status of a recorded event."""
        stmt = (
            update(ProcessedEvent)
            .where(ProcessedEvent.provider_event_id == provider_event_id)
            .values(status=status, processed_at=utcnow(), error=error)
        )
        return self.session.execute(stmt).rowcount == 1

    def delete_older_than(self, cutoff: datetime) -> int:
        """Evict seen-set rows accepted before the cutoff."""
        stmt = delete(ProcessedEvent).where(ProcessedEvent.accepted_at < cutoff)
        return self.session.execute(stmt).rowcount

    def count_pending(self, account_id: int, external_user_id: str) -> int:
        """Events accepted for a conversation but not processed yet."""
        stmt = select(func.count()).select_from(ProcessedEvent).where(
            ProcessedEvent.account_id == account_id,
            ProcessedEvent.external_user_id == external_user_id,
            ProcessedEvent.status == EventStatus.ACCEPTED,
        )
        return self.session.execute(stmt).scalar_one()

    def delete_event(self, provider_event_id: str) -> bool:
        """Forget one event id so a redelivery is accepted again."""
        stmt = delete(ProcessedEvent).where(ProcessedEvent.provider_event_id == provider_event_id)
        return self.session.execute(stmt).rowcount == 1

    def get_unfinished(self) -> list[ProcessedEvent]:
        """Accepted events that never reached a final status, oldest first."""
        stmt = (
            select(ProcessedEvent)
            .where(ProcessedEvent.status == EventStatus.ACCEPTED)
            .order_by(ProcessedEvent.accepted_at, ProcessedEvent.provider_event_id)
        )
        return list(self.session.execute(stmt).scalars().all())
