"""Conversation and message models."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dmpilot.models.base import Base, TimestampMixin, utcnow

if TYPE_CHECKING:
    from dmpilot.models.account import InstagramAccount


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ConversationState(str, enum.Enum):
    GREETING = "greeting"
    COLLECTING_EMAIL = "collecting_email"
    COLLECTING_PHONE = "collecting_phone"
    AI_CHAT = "ai_chat"
    COMPLETED = "completed"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class DeliveryStatus(str, enum.Enum):
    RECEIVED = "received"
    PENDING = "pending"
    SENT = "sent"
    DELIVERY_FAILED = "delivery_failed"


class Conversation(Base, TimestampMixin):
    """One automation thread with one Instagram user under one account."""

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("account_id", "external_user_id", name="uq_conversations_account_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("instagram_accounts.id"), nullable=False)
    external_user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    conversation_state: Mapped[ConversationState] = mapped_column(
        Enum(ConversationState, values_callable=_enum_values, native_enum=False, length=32),
        default=ConversationState.GREETING,
        nullable=False,
    )
    reprompt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    collected_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    collected_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Comment that opened the thread; the first reply goes out as a private reply
    origin_comment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    last_message_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    account: Mapped["InstagramAccount"] = relationship("InstagramAccount", back_populates="conversations")
    messages: Mapped[list["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="conversation",
        order_by="ConversationMessage.index",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, user='{self.external_user_id}', "
            f"state='{self.conversation_state.value}')>"
        )

    @property
    def collected_data(self) -> dict[str, str]:
        """Captured lead fields, omitting the ones not collected yet."""
        data = {}
        if self.collected_email:
            data["email"] = self.collected_email
        if self.collected_phone:
            data["phone"] = self.collected_phone
        return data


class ConversationMessage(Base):
    """One turn of a conversation. Append-only; only delivery metadata changes."""

    __tablename__ = "conversation_messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "index", name="uq_conversation_messages_index"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id"), nullable=False)
    index: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[MessageRole] = mapped_column(
        Enum(MessageRole, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    provider_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Delivery tracking for assistant turns
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=DeliveryStatus.RECEIVED,
        nullable=False,
    )
    delivery_error: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")

    def __repr__(self) -> str:
        return f"<ConversationMessage(#{self.index}, role='{self.role.value}', status='{self.delivery_status.value}')>"
