"""Actions emitted by the transition engine and executed by the dispatcher."""

from dataclasses import dataclass, field
from typing import Optional, Union

from dmpilot.models.conversation import ConversationState


@dataclass(frozen=True)
class SendMessage:
    """Send a text reply. ``comment_id`` routes it as a private reply to a comment."""

    text: str
    comment_id: Optional[str] = None


@dataclass(frozen=True)
class CallAIResponder:
    """Ask the AI responder for the next reply given the full history."""

    history: tuple[tuple[str, str], ...]
    system_instruction: Optional[str] = None
    comment_id: Optional[str] = None


@dataclass(frozen=True)
class PersistLead:
    """Store a captured contact field on the conversation and the lead."""

    field: str
    value: str


Action = Union[SendMessage, CallAIResponder, PersistLead]


@dataclass(frozen=True)
class CollectedData:
    email: Optional[str] = None
    phone: Optional[str] = None

    def with_field(self, name: str, value: str) -> "CollectedData":
        """Return a copy with ``name`` set, unless it is already filled."""
        if getattr(self, name) is not None:
            return self
        return CollectedData(**{**self.as_dict(), name: value})

    def as_dict(self) -> dict[str, Optional[str]]:
        return {"email": self.email, "phone": self.phone}


@dataclass(frozen=True)
class ConversationSnapshot:
    """Everything the transition function reads about a conversation."""

    state: ConversationState
    collected: CollectedData = field(default_factory=CollectedData)
    reprompt_count: int = 0
    history: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Transition:
    """Result of applying one event: the next state and the actions to run."""

    next_state: ConversationState
    actions: tuple[Action, ...] = ()
    collected: CollectedData = field(default_factory=CollectedData)
    reprompt_count: int = 0

    @property
    def sends(self) -> list[SendMessage]:
        return [action for action in self.actions if isinstance(action, SendMessage)]


@dataclass(frozen=True)
class AIReply:
    """Reply from the AI responder. ``handoff`` ends the automation."""

    text: str
    handoff: bool = False
