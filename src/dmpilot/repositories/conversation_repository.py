"""Conversation store: per-user automation state and message history."""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from dmpilot.engine.actions import CollectedData, ConversationSnapshot, SendMessage, Transition
from dmpilot.models.base import ensure_utc, utcnow
from dmpilot.models.conversation import (
    Conversation,
    ConversationMessage,
    ConversationState,
    DeliveryStatus,
    MessageRole,
)
from dmpilot.repositories.base_repository import BaseRepository

COLLECTED_COLUMNS = {
    "email": Conversation.collected_email,
    "phone": Conversation.collected_phone,
}


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for conversations keyed by (account_id, external_user_id)."""

    def __init__(self, session: Session):
        super().__init__(session, Conversation)

    def get_by_key(self, account_id: int, external_user_id: str) -> Optional[Conversation]:
        """Return the conversation for an account and Instagram user."""
        stmt = select(Conversation).where(
            Conversation.account_id == account_id,
            Conversation.external_user_id == external_user_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_or_create(
        self,
        account_id: int,
        external_user_id: str,
        username: Optional[str] = None,
        origin_comment_id: Optional[str] = None,
    ) -> tuple[Conversation, bool]:
        """Return ``(conversation, created)`` for the key, creating it in ``greeting``.

        Commits the new row so a concurrent creator loses on the unique key
        instead of producing a second thread for the same user.
        """
        conversation = self.get_by_key(account_id, external_user_id)
        if conversation is not None:
            return conversation, False

        conversation = Conversation(
            account_id=account_id,
            external_user_id=external_user_id,
            username=username,
            origin_comment_id=origin_comment_id,
            conversation_state=ConversationState.GREETING,
            reprompt_count=0,
            last_message_at=utcnow(),
        )
        self.session.add(conversation)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.get_by_key(account_id, external_user_id)
            if existing is None:
                raise
            return existing, False
        return conversation, True

    def get_messages(self, conversation_id: int) -> list[ConversationMessage]:
        """Return the ordered message history."""
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.index)
        )
        return list(self.session.execute(stmt).scalars().all())

    def has_user_turn(self, conversation_id: int, provider_event_id: str) -> bool:
        """Whether the event's user turn is already in the history."""
        stmt = select(ConversationMessage.id).where(
            ConversationMessage.conversation_id == conversation_id,
            ConversationMessage.role == MessageRole.USER,
            ConversationMessage.provider_event_id == provider_event_id,
        ).limit(1)
        return self.session.execute(stmt).first() is not None

    def append_message(
        self,
        conversation: Conversation,
        role: MessageRole,
        content: str,
        timestamp: Optional[datetime] = None,
        provider_event_id: Optional[str] = None,
        delivery_status: DeliveryStatus = DeliveryStatus.RECEIVED,
    ) -> ConversationMessage:
        """Append one turn at the next index.

        The stored timestamp is clamped to the previous turn's so history
        stays non-decreasing even when the provider clock lags ours.
        """
        last = self.session.execute(
            select(ConversationMessage.index, ConversationMessage.timestamp)
            .where(ConversationMessage.conversation_id == conversation.id)
            .order_by(ConversationMessage.index.desc())
            .limit(1)
        ).first()

        timestamp = ensure_utc(timestamp) or utcnow()
        next_index = 0
        if last is not None:
            next_index = last.index + 1
            previous = ensure_utc(last.timestamp)
            if previous is not None and timestamp < previous:
                timestamp = previous

        message = ConversationMessage(
            conversation_id=conversation.id,
            index=next_index,
            role=role,
            content=content,
            timestamp=timestamp,
            provider_event_id=provider_event_id,
            delivery_status=delivery_status,
            attempts=0,
        )
        self.session.add(message)
        conversation.last_message_at = timestamp
        self.session.flush()
        return message

    def set_state(
        self,
        conversation: Conversation,
        state: ConversationState,
        reprompt_count: int = 0,
    ) -> Conversation:
        """Store the state chosen by the transition engine."""
        conversation.conversation_state = state
        conversation.reprompt_count = reprompt_count
        self.session.flush()
        return conversation

    def record_collected(self, conversation_id: int, field: str, value: str) -> bool:
        """Write a collected field only if it is still empty (first value wins)."""
        column = COLLECTED_COLUMNS.get(field)
        if column is None:
            raise ValueError(f"Unknown collected field: {field}")
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id, column.is_(None))
            .values({column.key: value})
            .execution_options(synchronize_session="fetch")
        )
        return self.session.execute(stmt).rowcount == 1

    def update_delivery(
        self,
        message_id: int,
        status: DeliveryStatus,
        error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Optional[ConversationMessage]:
        """Record the delivery outcome of an assistant turn."""
        kwargs = {"delivery_status": status, "delivery_error": error}
        if attempts is not None:
            kwargs["attempts"] = attempts
        return self.update(message_id, **kwargs)

    def list_for_account(
        self,
        account_id: Optional[int] = None,
        limit: int = 50,
        state: Optional[ConversationState] = None,
    ) -> list[Conversation]:
        """Most recently active conversations, messages preloaded. All accounts when no id is given."""
        stmt = select(Conversation).options(selectinload(Conversation.messages))
        if account_id is not None:
            stmt = stmt.where(Conversation.account_id == account_id)
        if state is not None:
            stmt = stmt.where(Conversation.conversation_state == state)
        stmt = stmt.order_by(Conversation.last_message_at.desc(), Conversation.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def count_by_state(self, account_id: int) -> dict[str, int]:
        """Number of conversations per state for an account."""
        stmt = (
            select(Conversation.conversation_state, func.count())
            .where(Conversation.account_id == account_id)
            .group_by(Conversation.conversation_state)
        )
        return {state.value: count for state, count in self.session.execute(stmt).all()}

    def snapshot(self, conversation: Conversation) -> ConversationSnapshot:
        """Read the state the transition engine needs."""
        history = tuple(
            (message.role.value, message.content)
            for message in self.get_messages(conversation.id)
        )
        return ConversationSnapshot(
            state=conversation.conversation_state,
            collected=CollectedData(
                email=conversation.collected_email,
                phone=conversation.collected_phone,
            ),
            reprompt_count=conversation.reprompt_count,
            history=history,
        )

    def apply_transition(
        self,
        conversation: Conversation,
        result: Transition,
        provider_event_id: Optional[str] = None,
    ) -> list[tuple[SendMessage, int]]:
        """Store a transition's state, collected data and outgoing turns.

        Outgoing turns are appended as ``pending`` so the decision is durable
        before anything is sent. Returns each send with its message id.
        Does not commit.
        """
        for field_name, value in result.collected.as_dict().items():
            if value is not None and getattr(conversation, f"collected_{field_name}") is None:
                self.record_collected(conversation.id, field_name, value)
        self.set_state(conversation, result.next_state, result.reprompt_count)

        planned = []
        for send in result.sends:
            message = self.append_message(
                conversation,
                MessageRole.ASSISTANT,
                send.text,
                provider_event_id=provider_event_id,
                delivery_status=DeliveryStatus.PENDING,
            )
            planned.append((send, message.id))
        return planned
