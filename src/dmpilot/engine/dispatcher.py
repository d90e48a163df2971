"""Executes the actions chosen by the transition engine.

The transition and its outgoing turns are committed before the dispatcher
runs, so a failed delivery is recorded on the message row and never rolls
the conversation back.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from dmpilot.config import Settings, get_settings
from dmpilot.engine.actions import AIReply, CallAIResponder, PersistLead, SendMessage
from dmpilot.engine.automation import AutomationConfig
from dmpilot.engine.errors import DependencyFailure, FailureKind, TransientDependencyFailure
from dmpilot.engine.events import InboundEvent
from dmpilot.engine.transitions import after_ai_reply, is_allowed
from dmpilot.models.account import InstagramAccount
from dmpilot.models.conversation import ConversationState, DeliveryStatus
from dmpilot.repositories.account_repository import AccountRepository
from dmpilot.repositories.conversation_repository import ConversationRepository
from dmpilot.repositories.lead_repository import LeadRepository

logger = logging.getLogger(__name__)

# (action, message id) pairs; message id is None for actions without a turn
PlannedAction = tuple[Any, Optional[int]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for outbound calls."""

    max_attempts: int = 5
    max_delay: float = 30.0
    wait_multiplier: float = 0.5
    wait_max: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.dispatch_max_attempts,
            max_delay=settings.dispatch_max_delay_seconds,
        )

    def retrying(self, retry_on: type[BaseException] = TransientDependencyFailure) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts) | stop_after_delay(self.max_delay),
            wait=wait_exponential(multiplier=self.wait_multiplier, max=self.wait_max),
            retry=retry_if_exception_type(retry_on),
            reraise=True,
        )


@dataclass(frozen=True)
class DeliveryResult:
    message_id: Optional[int]
    status: DeliveryStatus
    attempts: int
    error: Optional[str] = None


class ActionDispatcher:
    """Runs sends, AI calls and lead writes for one conversation at a time."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        messenger_factory: Callable[[InstagramAccount], Any],
        responder: Optional[Any] = None,
        policy: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.messenger_factory = messenger_factory
        self.responder = responder
        self.settings = settings or get_settings()
        self.policy = policy or RetryPolicy.from_settings(self.settings)
        self._messengers: dict[tuple[int, str], Any] = {}
        self._messengers_lock = threading.Lock()

    def dispatch(
        self,
        conversation_id: int,
        event: InboundEvent,
        planned: Sequence[PlannedAction],
    ) -> list[DeliveryResult]:
        """Execute committed actions in order and record their outcome."""
        results: list[DeliveryResult] = []
        for action, message_id in planned:
            if isinstance(action, PersistLead):
                self.persist_lead(conversation_id, event, action)
            elif isinstance(action, SendMessage):
                results.append(self.send(event, action, message_id))
            elif isinstance(action, CallAIResponder):
                results.extend(self.call_ai(conversation_id, event, action))
            else:
                raise TypeError(f"Unknown action: {action!r}")
        return results

    def persist_lead(self, conversation_id: int, event: InboundEvent, action: PersistLead) -> None:
        """Write a captured field to the conversation and the lead, retrying on DB errors."""
        retrying = self.policy.retrying(retry_on=SQLAlchemyError)
        retrying(self._persist_lead, conversation_id, event, action)
        logger.info(f"Captured {action.field} for conversation {conversation_id}")

    def _persist_lead(self, conversation_id: int, event: InboundEvent, action: PersistLead) -> None:
        with self.session_factory() as session:
            try:
                ConversationRepository(session).record_collected(conversation_id, action.field, action.value)
                LeadRepository(session).upsert_field(
                    event.account_id,
                    event.external_user_id,
                    action.field,
                    action.value,
                    username=event.username,
                    source=event.kind.value,
                )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

    def send(self, event: InboundEvent, action: SendMessage, message_id: Optional[int]) -> DeliveryResult:
        """Deliver one outgoing turn and record the delivery status."""
        with self.session_factory() as session:
            account = AccountRepository(session).get(event.account_id)

        if account is None or not account.can_send:
            logger.warning(
                f"Not sending to {event.external_user_id}: account {event.account_id} cannot send"
            )
            return self._record(message_id, DeliveryStatus.DELIVERY_FAILED, 0, FailureKind.AUTH_EXPIRED)

        attempts = 0

        def attempt() -> None:
            nonlocal attempts
            attempts += 1
            messenger = self._messenger(account)
            if action.comment_id:
                messenger.send_private_reply(action.comment_id, action.text)
            else:
                messenger.send_message(event.external_user_id, action.text)

        try:
            self.policy.retrying()(attempt)
        except DependencyFailure as e:
            logger.error(
                f"Delivery to {event.external_user_id} failed after {attempts} attempt(s) "
                f"({e.kind}): {e}"
            )
            if e.kind == FailureKind.AUTH_EXPIRED:
                self._mark_expired(event.account_id)
            return self._record(message_id, DeliveryStatus.DELIVERY_FAILED, attempts, e.kind)

        return self._record(message_id, DeliveryStatus.SENT, attempts)

    def call_ai(
        self,
        conversation_id: int,
        event: InboundEvent,
        action: CallAIResponder,
    ) -> list[DeliveryResult]:
        """Ask the responder for a reply, commit the follow-up turn and send it."""
        reply = self._ai_reply(event, action)

        with self.session_factory() as session:
            repo = ConversationRepository(session)
            conversation = repo.get(conversation_id)
            snapshot = repo.snapshot(conversation)
            if snapshot.state != ConversationState.AI_CHAT:
                # A stop keyword or handoff landed first; drop the stale reply
                logger.info(f"Conversation {conversation_id} left ai_chat, discarding AI reply")
                return []
            result = after_ai_reply(snapshot, reply, event)
            if not is_allowed(snapshot.state, result.next_state):
                raise RuntimeError(f"Illegal transition {snapshot.state} -> {result.next_state}")
            planned = repo.apply_transition(conversation, result, event.provider_event_id)
            session.commit()

        if reply.handoff:
            logger.info(f"Conversation {conversation_id} handed off to a human")
        return [self.send(event, send, message_id) for send, message_id in planned]

    def _messenger(self, account: InstagramAccount) -> Any:
        # One messenger per credential; a refreshed token gets a new one
        key = (account.id, account.access_token)
        with self._messengers_lock:
            messenger = self._messengers.get(key)
            if messenger is None:
                messenger = self.messenger_factory(account)
                self._messengers[key] = messenger
        return messenger

    def close(self) -> None:
        """Close cached messenger clients."""
        with self._messengers_lock:
            messengers = list(self._messengers.values())
            self._messengers.clear()
        for messenger in messengers:
            close = getattr(messenger, "close", None)
            if callable(close):
                close()

    def _ai_reply(self, event: InboundEvent, action: CallAIResponder) -> AIReply:
        fallback = self._fallback_message(event.account_id)
        if self.responder is None:
            logger.warning("No AI responder configured, sending fallback reply")
            return AIReply(text=fallback)

        try:
            return self.policy.retrying()(
                self.responder.reply,
                action.history,
                action.system_instruction,
            )
        except DependencyFailure as e:
            logger.error(f"AI responder failed for {event.external_user_id}, sending fallback: {e}")
            return AIReply(text=fallback)

    def _fallback_message(self, account_id: int) -> str:
        with self.session_factory() as session:
            account = AccountRepository(session).get(account_id)
            config = AutomationConfig.from_account(account) if account else AutomationConfig()
        return config.fallback_message

    def _mark_expired(self, account_id: int) -> None:
        with self.session_factory() as session:
            if AccountRepository(session).mark_expired(account_id):
                logger.warning(f"Account {account_id} credential expired; sends paused until it is refreshed")
            session.commit()

    def _record(
        self,
        message_id: Optional[int],
        status: DeliveryStatus,
        attempts: int,
        error: Optional[str] = None,
    ) -> DeliveryResult:
        if message_id is not None:
            with self.session_factory() as session:
                ConversationRepository(session).update_delivery(
                    message_id, status, error=error, attempts=attempts
                )
                session.commit()
        return DeliveryResult(message_id=message_id, status=status, attempts=attempts, error=error)
