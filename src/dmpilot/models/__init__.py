"""SQLAlchemy models for DM Pilot."""

from dmpilot.models.account import ConnectionStatus, InstagramAccount
from dmpilot.models.base import Base
from dmpilot.models.conversation import (
    Conversation,
    ConversationMessage,
    ConversationState,
    DeliveryStatus,
    MessageRole,
)
from dmpilot.models.event import EventStatus, ProcessedEvent
from dmpilot.models.lead import Lead

__all__ = [
    "Base",
    "InstagramAccount",
    "ConnectionStatus",
    "Conversation",
    "ConversationMessage",
    "ConversationState",
    "DeliveryStatus",
    "MessageRole",
    "ProcessedEvent",
    "EventStatus",
    "Lead",
]
