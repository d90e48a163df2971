"""Durable seen-set of provider event ids."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dmpilot.engine.errors import DuplicateEvent
from dmpilot.engine.events import InboundEvent
from dmpilot.models.base import utcnow
from dmpilot.models.event import EventStatus
from dmpilot.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)


class IdempotencyFilter:
    """Lets each provider event through exactly once within the horizon.

    Every call runs in its own short session so the insert is committed
    before the event is handed to a worker.
    """

    def __init__(self, session_factory: Callable[[], Session], horizon_days: int = 7):
        self.session_factory = session_factory
        self.horizon = timedelta(days=horizon_days)

    def accept(self, event: InboundEvent) -> None:
        """Record the event and keep its payload until it is processed.

        Raises:
            DuplicateEvent: if the id has been seen before
        """
        with self.session_factory() as session:
            accepted = EventRepository(session).insert_if_absent(
                event.provider_event_id,
                account_id=event.account_id,
                external_user_id=event.external_user_id,
                payload=event.to_dict(),
            )
        if not accepted:
            raise DuplicateEvent(f"Event {event.provider_event_id} already accepted")

    def should_process(
        self,
        provider_event_id: str,
        account_id: Optional[int] = None,
        external_user_id: Optional[str] = None,
    ) -> bool:
        """Record the event id. Returns False if it has been seen before."""
        with self.session_factory() as session:
            accepted = EventRepository(session).insert_if_absent(
                provider_event_id,
                account_id=account_id,
                external_user_id=external_user_id,
            )
        if not accepted:
            logger.info(f"Duplicate event {provider_event_id} dropped")
        return accepted

    def mark_processed(self, provider_event_id: str) -> None:
        """Record that the event's transition was committed."""
        self._set_status(provider_event_id, EventStatus.PROCESSED)

    def mark_failed(self, provider_event_id: str, error: str) -> None:
        """Record that the event can never be applied."""
        self._set_status(provider_event_id, EventStatus.FAILED, error=error[:500])

    def release(self, provider_event_id: str) -> None:
        """Forget the event so the provider's redelivery is processed."""
        with self.session_factory() as session:
            EventRepository(session).delete_event(provider_event_id)
            session.commit()
        logger.warning(f"Event {provider_event_id} released for redelivery")

    def unfinished(self) -> list[InboundEvent]:
        """Events accepted earlier whose processing never finished, oldest first."""
        with self.session_factory() as session:
            rows = EventRepository(session).get_unfinished()
            return [InboundEvent.from_dict(row.payload) for row in rows if row.payload]

    def _set_status(self, provider_event_id: str, status: EventStatus, error: Optional[str] = None) -> None:
        with self.session_factory() as session:
            EventRepository(session).set_status(provider_event_id, status, error=error)
            session.commit()

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Forget event ids older than the horizon. Returns the number removed."""
        cutoff = (now or utcnow()) - self.horizon
        with self.session_factory() as session:
            removed = EventRepository(session).delete_older_than(cutoff)
            session.commit()
        if removed:
            logger.info(f"Purged {removed} processed event ids older than {cutoff.isoformat()}")
        return removed
