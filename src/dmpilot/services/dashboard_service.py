"""Read API consumed by the dashboard.

Shapes are camelCase and match what the existing dashboard reads, so keys
and value formats here should not change.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from dmpilot.models.account import InstagramAccount
from dmpilot.models.base import ensure_utc
from dmpilot.models.conversation import Conversation, ConversationMessage, ConversationState
from dmpilot.repositories.account_repository import AccountRepository
from dmpilot.repositories.conversation_repository import ConversationRepository
from dmpilot.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


class ConfigValidationError(ValueError):
    """Instagram configuration is missing a required field."""

    pass


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None


def serialize_message(message: ConversationMessage) -> dict[str, Any]:
    data = {
        "role": message.role.value,
        "content": message.content,
        "timestamp": _isoformat(message.timestamp),
        "index": message.index,
        "deliveryStatus": message.delivery_status.value,
    }
    if message.delivery_error:
        data["deliveryError"] = message.delivery_error
    return data


def serialize_account(account: InstagramAccount) -> dict[str, Any]:
    """Account as the dashboard sees it. The access token is never included."""
    return {
        "id": account.id,
        "username": account.username,
        "instagramAccountId": account.instagram_account_id,
        "pageId": account.page_id,
        "connectionStatus": account.connection_status.value,
        "tokenExpiresAt": _isoformat(account.token_expires_at),
        "createdAt": _isoformat(account.created_at),
    }


class DashboardService:
    """Queries and commands behind the dashboard endpoints."""

    def __init__(self, session: Session):
        self.session = session
        self.accounts = AccountRepository(session)
        self.conversations = ConversationRepository(session)
        self.events = EventRepository(session)

    def get_conversations(
        self,
        account_id: Optional[int] = None,
        limit: int = 50,
        state: Optional[str] = None,
    ) -> dict[str, list[dict[str, Any]]]:
        """Most recently active conversations with their full history.

        Raises:
            ValueError: if ``state`` is not a conversation state
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        state_filter = ConversationState(state) if state else None
        conversations = self.conversations.list_for_account(account_id, limit=limit, state=state_filter)
        return {"conversations": [self.serialize_conversation(c) for c in conversations]}

    def serialize_conversation(self, conversation: Conversation) -> dict[str, Any]:
        return {
            "id": conversation.id,
            "accountId": conversation.account_id,
            "instagramUserId": conversation.external_user_id,
            "username": conversation.username,
            "conversationState": conversation.conversation_state.value,
            "collectedData": conversation.collected_data,
            "messages": [serialize_message(m) for m in conversation.messages],
            "lastMessageAt": _isoformat(conversation.last_message_at),
            "pendingEvents": self.events.count_pending(
                conversation.account_id, conversation.external_user_id
            ),
        }

    def get_user_accounts(self) -> list[dict[str, Any]]:
        """Connected Instagram accounts, without credentials."""
        return [serialize_account(a) for a in self.accounts.get_active_accounts()]

    def save_instagram_config(
        self,
        access_token: Optional[str],
        page_id: Optional[str],
        instagram_account_id: Optional[str],
        token_expires_at: Optional[datetime] = None,
    ) -> InstagramAccount:
        """Store or refresh the credential for an Instagram account.

        Raises:
            ConfigValidationError: if any of the three fields is missing
        """
        values = {
            "accessToken": (access_token or "").strip(),
            "pageId": (page_id or "").strip(),
            "instagramAccountId": (instagram_account_id or "").strip(),
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ConfigValidationError(f"Missing required fields: {', '.join(missing)}")

        account = self.accounts.save_config(
            access_token=values["accessToken"],
            page_id=values["pageId"],
            instagram_account_id=values["instagramAccountId"],
            token_expires_at=token_expires_at,
        )
        self.session.commit()
        logger.info(f"Saved Instagram config for account {account.instagram_account_id}")
        return account
