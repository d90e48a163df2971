"""Tests for SQLAlchemy models."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from dmpilot.engine.automation import DEFAULT_GREETING, AutomationConfig
from dmpilot.models.account import ConnectionStatus, InstagramAccount
from dmpilot.models.conversation import Conversation, ConversationState
from dmpilot.models.event import EventStatus, ProcessedEvent


class TestInstagramAccount:
    """Tests for InstagramAccount model."""

    def test_create_account(self, session, sample_account_data):
        """Test creating an Instagram account."""
        account = InstagramAccount(**sample_account_data)
        session.add(account)
        session.flush()

        assert account.id is not None
        assert account.connection_status == ConnectionStatus.CONNECTED
        assert account.collect_email is True
        assert account.max_reprompts == 3

    def test_is_token_expired_not_expired(self, session, sample_account_data):
        """Test token expiration check when not expired."""
        sample_account_data["token_expires_at"] = datetime.now(timezone.utc) + timedelta(days=30)
        account = InstagramAccount(**sample_account_data)

        assert account.is_token_expired is False

    def test_is_token_expired_expired(self, session, sample_account_data):
        """Test token expiration check when expired."""
        sample_account_data["token_expires_at"] = datetime.now(timezone.utc) - timedelta(days=1)
        account = InstagramAccount(**sample_account_data)

        assert account.is_token_expired is True

    def test_is_token_expired_naive_datetime(self, sample_account_data):
        """Test a naive expiry read back from SQLite is treated as UTC."""
        sample_account_data["token_expires_at"] = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=5)
        account = InstagramAccount(**sample_account_data)

        assert account.is_token_expired is True

    def test_can_send(self, session, sample_account_data):
        """Test only connected, active accounts can send."""
        account = InstagramAccount(**sample_account_data)
        session.add(account)
        session.flush()
        assert account.can_send is True

        account.connection_status = ConnectionStatus.EXPIRED
        assert account.can_send is False

    def test_repr(self, session, sample_account_data):
        """Test account string representation."""
        account = InstagramAccount(**sample_account_data)
        session.add(account)
        session.flush()

        assert sample_account_data["instagram_account_id"] in repr(account)


class TestAutomationConfig:
    """Tests for building the automation config from an account."""

    def test_defaults_for_empty_columns(self, session, sample_account_data):
        account = InstagramAccount(**sample_account_data)
        session.add(account)
        session.flush()

        config = AutomationConfig.from_account(account)

        assert config.greeting_message == DEFAULT_GREETING
        assert config.stop_keywords == ("stop", "unsubscribe", "talk to a human")
        assert config.trigger_keywords == ()

    def test_account_overrides(self, sample_account_data):
        account = InstagramAccount(
            **sample_account_data,
            greeting_message="Yo!",
            collect_phone=False,
            max_reprompts=1,
            stop_keywords=["halt"],
            trigger_keywords=["Info"],
        )

        config = AutomationConfig.from_account(account)

        assert config.greeting_message == "Yo!"
        assert config.collect_phone is False
        assert config.max_reprompts == 1
        assert config.stop_keywords == ("halt",)
        assert config.trigger_keywords == ("Info",)


class TestConversation:
    """Tests for Conversation model."""

    @pytest.fixture
    def account(self, session, sample_account_data):
        account = InstagramAccount(**sample_account_data)
        session.add(account)
        session.flush()
        return account

    def test_create_conversation(self, session, account):
        """Test a new conversation starts in greeting."""
        conversation = Conversation(account_id=account.id, external_user_id="user_1")
        session.add(conversation)
        session.flush()

        assert conversation.conversation_state == ConversationState.GREETING
        assert conversation.reprompt_count == 0
        assert conversation.collected_data == {}

    def test_collected_data(self, account):
        conversation = Conversation(
            account_id=account.id,
            external_user_id="user_1",
            collected_email="a@b.com",
        )

        assert conversation.collected_data == {"email": "a@b.com"}

    def test_state_stored_as_value(self, session, account):
        conversation = Conversation(
            account_id=account.id,
            external_user_id="user_1",
            conversation_state=ConversationState.AI_CHAT,
        )
        session.add(conversation)
        session.flush()

        raw = session.execute(text("SELECT conversation_state FROM conversations")).scalar_one()
        assert raw == "ai_chat"


class TestProcessedEvent:
    """Tests for ProcessedEvent model."""

    def test_defaults(self, session):
        event = ProcessedEvent(provider_event_id="mid.1")
        session.add(event)
        session.flush()

        assert event.status == EventStatus.ACCEPTED
        assert event.accepted_at is not None
