"""Wires the engine together: webhook payload in, committed turns and sends out."""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dmpilot.config import Settings, get_settings
from dmpilot.engine.actions import SendMessage, Transition
from dmpilot.engine.automation import AutomationConfig
from dmpilot.engine.dispatcher import ActionDispatcher, DeliveryResult
from dmpilot.engine.errors import DuplicateEvent, EngineError
from dmpilot.engine.events import InboundEvent
from dmpilot.engine.idempotency import IdempotencyFilter
from dmpilot.engine.normalizer import EventNormalizer
from dmpilot.engine.sequencer import KeyedSequencer
from dmpilot.engine.transitions import is_allowed, transition
from dmpilot.models.account import InstagramAccount
from dmpilot.models.base import get_session_factory
from dmpilot.models.conversation import ConversationState, MessageRole
from dmpilot.repositories.account_repository import AccountRepository
from dmpilot.repositories.conversation_repository import ConversationRepository
from dmpilot.services.ai.claude_client import ClaudeClient
from dmpilot.services.ai.responder import ConversationResponder
from dmpilot.services.instagram.client import InstagramClient
from dmpilot.services.instagram.messenger import InstagramMessenger

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Counts reported back to the webhook caller, plus the scheduled work."""

    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
    futures: list[Future] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
        }


class EventPipeline:
    """Normalize, deduplicate and sequence inbound events, then apply them.

    ``ingest`` only does the cheap synchronous part so the webhook can be
    acknowledged right away; each accepted event is handled on the
    sequencer's pool, one at a time per conversation.
    """

    INGEST_LOCK_STRIPES = 64

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: ActionDispatcher,
        settings: Optional[Settings] = None,
        sequencer: Optional[KeyedSequencer] = None,
        idempotency: Optional[IdempotencyFilter] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.sequencer = sequencer or KeyedSequencer(max_workers=self.settings.worker_pool_size)
        self.idempotency = idempotency or IdempotencyFilter(
            session_factory,
            horizon_days=self.settings.idempotency_horizon_days,
        )
        self.normalizer = EventNormalizer(self.resolve_account)
        # Accept and enqueue under one lock so queue order matches acceptance order
        self._ingest_locks = [threading.Lock() for _ in range(self.INGEST_LOCK_STRIPES)]

    def resolve_account(self, instagram_account_id: str) -> Optional[int]:
        """Map a webhook routing id to an active account id."""
        with self.session_factory() as session:
            account = AccountRepository(session).get_by_instagram_id(instagram_account_id)
            if account is None or not account.is_active:
                return None
            return account.id

    def ingest(self, payload: Any) -> IngestResult:
        """Accept one webhook delivery.

        Raises:
            MalformedEvent: if the payload is not an Instagram envelope
        """
        normalized = self.normalizer.normalize(payload)
        result = IngestResult(rejected=len(normalized.rejections))

        for event in normalized.events:
            with self._ingest_lock(event.conversation_key):
                try:
                    self.idempotency.accept(event)
                except DuplicateEvent:
                    logger.info(f"Duplicate event {event.provider_event_id} dropped")
                    result.duplicates += 1
                    continue
                result.futures.append(
                    self.sequencer.run_exclusive(event.conversation_key, self.handle, event)
                )
            result.accepted += 1

        logger.info(
            f"Webhook ingested: {result.accepted} accepted, {result.duplicates} duplicate, "
            f"{result.rejected} rejected"
        )
        return result

    def recover(self) -> list[Future]:
        """Re-queue events accepted before a restart but never processed."""
        futures = []
        for event in self.idempotency.unfinished():
            with self._ingest_lock(event.conversation_key):
                futures.append(self.sequencer.run_exclusive(event.conversation_key, self.handle, event))
        if futures:
            logger.warning(f"Replaying {len(futures)} unfinished event(s)")
        return futures

    def handle(self, event: InboundEvent) -> list[DeliveryResult]:
        """Apply one event to its conversation and run the resulting actions.

        The user turn, the next state and the pending assistant turns are
        committed together before any external call is made. Database errors
        are retried; if they persist the event is released so the provider's
        redelivery gets another chance.
        """
        retrying = self.dispatcher.policy.retrying(retry_on=SQLAlchemyError)
        try:
            applied = retrying(self._apply, event)
        except SQLAlchemyError as e:
            logger.error(f"Could not store event {event.provider_event_id}: {e}")
            self.idempotency.release(event.provider_event_id)
            raise
        except Exception as e:
            self.idempotency.mark_failed(event.provider_event_id, str(e))
            raise

        self.idempotency.mark_processed(event.provider_event_id)
        if applied is None:
            logger.info(f"Event {event.provider_event_id} was already applied")
            return []

        previous_state, result, conversation_id, message_ids = applied
        if not result.actions:
            logger.info(
                f"Event {event.provider_event_id} recorded with no actions "
                f"(state {result.next_state.value})"
            )
            return []
        if previous_state != result.next_state:
            logger.info(
                f"Conversation {conversation_id}: {previous_state.value} -> {result.next_state.value}"
            )

        ids = iter(message_ids)
        planned = [
            (action, next(ids) if isinstance(action, SendMessage) else None)
            for action in result.actions
        ]
        return self.dispatcher.dispatch(conversation_id, event, planned)

    def _apply(self, event: InboundEvent) -> Optional[tuple[ConversationState, Transition, int, list[int]]]:
        # Commit is the last database step, so a retry never applies an event twice
        with self.session_factory() as session:
            accounts = AccountRepository(session)
            conversations = ConversationRepository(session)

            account = accounts.get(event.account_id)
            if account is None:
                raise EngineError(f"Account {event.account_id} no longer exists")
            config = AutomationConfig.from_account(account)

            conversation, created = conversations.get_or_create(
                event.account_id,
                event.external_user_id,
                username=event.username,
                origin_comment_id=event.comment_id,
            )
            if created:
                logger.info(
                    f"New conversation {conversation.id} for user {event.external_user_id} "
                    f"on account {event.account_id}"
                )
            elif conversations.has_user_turn(conversation.id, event.provider_event_id):
                return None
            elif event.username and not conversation.username:
                conversation.username = event.username

            snapshot = conversations.snapshot(conversation)
            result = transition(snapshot, event, config)
            if not is_allowed(snapshot.state, result.next_state):
                raise EngineError(
                    f"Illegal transition {snapshot.state.value} -> {result.next_state.value}"
                )

            conversations.append_message(
                conversation,
                MessageRole.USER,
                event.content,
                timestamp=event.occurred_at or event.received_at,
                provider_event_id=event.provider_event_id,
            )
            planned_sends = conversations.apply_transition(
                conversation, result, event.provider_event_id
            )
            conversation_id = conversation.id
            session.commit()
        return snapshot.state, result, conversation_id, [message_id for _, message_id in planned_sends]

    def _ingest_lock(self, key: tuple[int, str]) -> threading.Lock:
        return self._ingest_locks[hash(key) % self.INGEST_LOCK_STRIPES]

    def close(self, wait: bool = True) -> None:
        """Drain queued events and release outbound clients."""
        self.sequencer.shutdown(wait=wait)
        self.dispatcher.close()


def build_pipeline(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> EventPipeline:
    """Create a pipeline wired to the Graph API and, when configured, Claude."""
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory(settings.database_url)

    def messenger_factory(account: InstagramAccount) -> InstagramMessenger:
        client = InstagramClient(
            access_token=account.access_token,
            instagram_user_id=account.instagram_account_id,
            settings=settings,
        )
        return InstagramMessenger(client)

    responder = None
    if settings.is_anthropic_configured:
        responder = ConversationResponder(ClaudeClient(settings=settings))
    else:
        logger.warning("ANTHROPIC_API_KEY not set; ai_chat replies will use the fallback message")

    dispatcher = ActionDispatcher(
        session_factory,
        messenger_factory,
        responder=responder,
        settings=settings,
    )
    return EventPipeline(session_factory, dispatcher, settings=settings)
