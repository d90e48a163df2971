"""Tests for action execution and delivery tracking."""

from unittest.mock import MagicMock

import pytest
from conftest import FAST_RETRIES, AlwaysFailing, FakeMessenger

from dmpilot.engine.actions import AIReply, CallAIResponder, PersistLead, SendMessage
from dmpilot.engine.automation import DEFAULT_FALLBACK
from dmpilot.engine.dispatcher import ActionDispatcher
from dmpilot.engine.errors import (
    AuthExpired,
    FailureKind,
    PermanentDependencyFailure,
    TransientDependencyFailure,
)
from dmpilot.engine.events import EventKind, InboundEvent
from dmpilot.models.account import ConnectionStatus, InstagramAccount
from dmpilot.models.conversation import (
    ConversationMessage,
    ConversationState,
    DeliveryStatus,
    MessageRole,
)
from dmpilot.models.lead import Lead
from dmpilot.repositories.conversation_repository import ConversationRepository
from dmpilot.repositories.lead_repository import LeadRepository


@pytest.fixture
def conversation_id(session_factory, account):
    """A conversation in ai_chat with one user turn."""
    with session_factory() as session:
        repo = ConversationRepository(session)
        conversation, _ = repo.get_or_create(account.id, "user_1")
        repo.append_message(conversation, MessageRole.USER, "hi")
        repo.set_state(conversation, ConversationState.AI_CHAT)
        session.commit()
        return conversation.id


@pytest.fixture
def event(account):
    return InboundEvent(
        provider_event_id="mid.1",
        account_id=account.id,
        external_user_id="user_1",
        kind=EventKind.DM,
        text="hi",
    )


@pytest.fixture
def make_dispatcher(session_factory, settings):
    def _make(messenger, responder=None):
        return ActionDispatcher(
            session_factory,
            lambda account: messenger,
            responder=responder,
            policy=FAST_RETRIES,
            settings=settings,
        )

    return _make


def pending_message(session_factory, conversation_id, text="Hello!"):
    with session_factory() as session:
        repo = ConversationRepository(session)
        message = repo.append_message(
            repo.get(conversation_id),
            MessageRole.ASSISTANT,
            text,
            delivery_status=DeliveryStatus.PENDING,
        )
        session.commit()
        return message.id


def load_message(session_factory, message_id):
    with session_factory() as session:
        return session.get(ConversationMessage, message_id)


class TestSend:
    """Tests for outbound message delivery."""

    def test_successful_send(self, session_factory, make_dispatcher, conversation_id, event):
        messenger = FakeMessenger()
        message_id = pending_message(session_factory, conversation_id)

        result = make_dispatcher(messenger).send(event, SendMessage("Hello!"), message_id)

        assert result.status == DeliveryStatus.SENT
        assert result.attempts == 1
        assert messenger.sent == [("user_1", "Hello!")]
        stored = load_message(session_factory, message_id)
        assert stored.delivery_status == DeliveryStatus.SENT
        assert stored.attempts == 1

    def test_transient_failure_is_retried(self, session_factory, make_dispatcher, conversation_id, event):
        messenger = FakeMessenger(
            failures=[TransientDependencyFailure("503"), TransientDependencyFailure("timeout")]
        )
        message_id = pending_message(session_factory, conversation_id)

        result = make_dispatcher(messenger).send(event, SendMessage("Hello!"), message_id)

        assert result.status == DeliveryStatus.SENT
        assert result.attempts == 3
        assert messenger.calls == 3

    def test_exhausted_retries_are_recorded(self, session_factory, make_dispatcher, conversation_id, event):
        """Test a send that never succeeds is flagged but the state stays put."""
        messenger = AlwaysFailing()
        message_id = pending_message(session_factory, conversation_id)

        result = make_dispatcher(messenger).send(event, SendMessage("Hello!"), message_id)

        assert result.status == DeliveryStatus.DELIVERY_FAILED
        assert result.error == FailureKind.TRANSIENT
        assert messenger.calls == FAST_RETRIES.max_attempts
        stored = load_message(session_factory, message_id)
        assert stored.delivery_status == DeliveryStatus.DELIVERY_FAILED
        assert stored.delivery_error == "transient"
        assert stored.attempts == FAST_RETRIES.max_attempts
        with session_factory() as session:
            conversation = ConversationRepository(session).get(conversation_id)
            assert conversation.conversation_state == ConversationState.AI_CHAT

    def test_rate_limit_is_recorded_as_rate_limited(
        self, session_factory, make_dispatcher, conversation_id, event
    ):
        messenger = AlwaysFailing(TransientDependencyFailure("429", kind=FailureKind.RATE_LIMITED))
        message_id = pending_message(session_factory, conversation_id)

        result = make_dispatcher(messenger).send(event, SendMessage("Hello!"), message_id)

        assert result.error == "rate_limited"

    def test_invalid_recipient_is_not_retried(self, session_factory, make_dispatcher, conversation_id, event):
        messenger = AlwaysFailing(PermanentDependencyFailure("user blocked messages"))
        message_id = pending_message(session_factory, conversation_id)

        result = make_dispatcher(messenger).send(event, SendMessage("Hello!"), message_id)

        assert result.status == DeliveryStatus.DELIVERY_FAILED
        assert result.error == "invalid_recipient"
        assert messenger.calls == 1

    def test_auth_expired_marks_account(self, session_factory, make_dispatcher, conversation_id, event, account):
        """Test a rejected credential pauses every later send for the account."""
        messenger = AlwaysFailing(AuthExpired("token expired"))
        dispatcher = make_dispatcher(messenger)
        first = pending_message(session_factory, conversation_id, "one")
        second = pending_message(session_factory, conversation_id, "two")

        first_result = dispatcher.send(event, SendMessage("one"), first)
        second_result = dispatcher.send(event, SendMessage("two"), second)

        assert first_result.error == "auth_expired"
        assert messenger.calls == 1
        assert second_result.status == DeliveryStatus.DELIVERY_FAILED
        assert second_result.error == "auth_expired"
        assert second_result.attempts == 0
        with session_factory() as session:
            stored = session.get(InstagramAccount, account.id)
            assert stored.connection_status == ConnectionStatus.EXPIRED

    def test_comment_reply_goes_out_as_private_reply(
        self, session_factory, make_dispatcher, conversation_id, event
    ):
        messenger = FakeMessenger()
        message_id = pending_message(session_factory, conversation_id)

        make_dispatcher(messenger).send(event, SendMessage("Hello!", comment_id="c_1"), message_id)

        assert messenger.private_replies == [("c_1", "Hello!")]
        assert messenger.sent == []

    def test_messenger_is_reused_per_account(self, session_factory, settings, conversation_id, event):
        factory = MagicMock(return_value=FakeMessenger())
        dispatcher = ActionDispatcher(session_factory, factory, policy=FAST_RETRIES, settings=settings)

        dispatcher.send(event, SendMessage("a"), None)
        dispatcher.send(event, SendMessage("b"), None)

        factory.assert_called_once()


class TestCallAI:
    """Tests for AI replies."""

    def test_reply_is_appended_and_sent(self, session_factory, make_dispatcher, conversation_id, event):
        messenger = FakeMessenger()
        responder = MagicMock()
        responder.reply.return_value = AIReply("We open at 9.")
        action = CallAIResponder(history=(("user", "hi"),), system_instruction="Be brief.")

        results = make_dispatcher(messenger, responder).call_ai(conversation_id, event, action)

        responder.reply.assert_called_once_with((("user", "hi"),), "Be brief.")
        assert messenger.texts == ["We open at 9."]
        assert [r.status for r in results] == [DeliveryStatus.SENT]
        with session_factory() as session:
            messages = ConversationRepository(session).get_messages(conversation_id)
            assert messages[-1].role == MessageRole.ASSISTANT
            assert messages[-1].content == "We open at 9."
            assert messages[-1].delivery_status == DeliveryStatus.SENT

    def test_handoff_completes_conversation(self, session_factory, make_dispatcher, conversation_id, event):
        responder = MagicMock()
        responder.reply.return_value = AIReply("A teammate will follow up.", handoff=True)
        action = CallAIResponder(history=(("user", "refund please"),))

        make_dispatcher(FakeMessenger(), responder).call_ai(conversation_id, event, action)

        with session_factory() as session:
            conversation = ConversationRepository(session).get(conversation_id)
            assert conversation.conversation_state == ConversationState.COMPLETED

    def test_failing_responder_sends_fallback(self, session_factory, make_dispatcher, conversation_id, event):
        """Test the fallback reply goes out when the AI keeps timing out."""
        messenger = FakeMessenger()
        responder = MagicMock()
        responder.reply.side_effect = TransientDependencyFailure("timeout")
        action = CallAIResponder(history=(("user", "hi"),))

        make_dispatcher(messenger, responder).call_ai(conversation_id, event, action)

        assert responder.reply.call_count == FAST_RETRIES.max_attempts
        assert messenger.texts == [DEFAULT_FALLBACK]

    def test_no_responder_sends_fallback(self, session_factory, make_dispatcher, conversation_id, event):
        messenger = FakeMessenger()
        action = CallAIResponder(history=(("user", "hi"),))

        make_dispatcher(messenger).call_ai(conversation_id, event, action)

        assert messenger.texts == [DEFAULT_FALLBACK]

    def test_account_fallback_message(
        self, session_factory, make_dispatcher, conversation_id, event, account
    ):
        with session_factory() as session:
            session.get(InstagramAccount, account.id).fallback_message = "Back soon!"
            session.commit()
        messenger = FakeMessenger()

        make_dispatcher(messenger).call_ai(conversation_id, event, CallAIResponder(history=()))

        assert messenger.texts == ["Back soon!"]

    def test_stale_reply_is_discarded(self, session_factory, make_dispatcher, conversation_id, event):
        """Test a reply is dropped if the conversation left ai_chat meanwhile."""
        with session_factory() as session:
            repo = ConversationRepository(session)
            repo.set_state(repo.get(conversation_id), ConversationState.COMPLETED)
            session.commit()
        messenger = FakeMessenger()
        responder = MagicMock()
        responder.reply.return_value = AIReply("late answer")

        results = make_dispatcher(messenger, responder).call_ai(
            conversation_id, event, CallAIResponder(history=())
        )

        assert results == []
        assert messenger.texts == []

    def test_comment_reply_is_private(self, session_factory, make_dispatcher, conversation_id, account):
        comment = InboundEvent(
            provider_event_id="c_5",
            account_id=account.id,
            external_user_id="user_1",
            kind=EventKind.COMMENT,
            text="price?",
            comment_id="c_5",
        )
        messenger = FakeMessenger()
        responder = MagicMock()
        responder.reply.return_value = AIReply("$49")

        make_dispatcher(messenger, responder).call_ai(
            conversation_id, comment, CallAIResponder(history=(), comment_id="c_5")
        )

        assert messenger.private_replies == [("c_5", "$49")]


class TestPersistLead:
    """Tests for lead writes."""

    def test_persist_lead(self, session_factory, make_dispatcher, conversation_id, event, account):
        dispatcher = make_dispatcher(FakeMessenger())

        dispatcher.persist_lead(conversation_id, event, PersistLead("email", "a@b.com"))
        dispatcher.persist_lead(conversation_id, event, PersistLead("email", "other@b.com"))

        with session_factory() as session:
            conversation = ConversationRepository(session).get(conversation_id)
            lead = LeadRepository(session).get_by_user(account.id, "user_1")
            assert conversation.collected_email == "a@b.com"
            assert lead.email == "a@b.com"
            assert lead.source == "dm"
            assert session.query(Lead).count() == 1

    def test_dispatch_runs_actions_in_order(self, session_factory, make_dispatcher, conversation_id, event):
        messenger = FakeMessenger()
        first = pending_message(session_factory, conversation_id, "Thanks!")
        second = pending_message(session_factory, conversation_id, "Phone?")

        results = make_dispatcher(messenger).dispatch(
            conversation_id,
            event,
            [
                (PersistLead("email", "a@b.com"), None),
                (SendMessage("Thanks!"), first),
                (SendMessage("Phone?"), second),
            ],
        )

        assert messenger.texts == ["Thanks!", "Phone?"]
        assert [r.message_id for r in results] == [first, second]
