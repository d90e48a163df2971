"""Database repositories for CRUD operations."""

from dmpilot.repositories.account_repository import AccountRepository
from dmpilot.repositories.conversation_repository import ConversationRepository
from dmpilot.repositories.event_repository import EventRepository
from dmpilot.repositories.lead_repository import LeadRepository

__all__ = [
    "AccountRepository",
    "ConversationRepository",
    "EventRepository",
    "LeadRepository",
]
