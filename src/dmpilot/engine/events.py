"""Normalized inbound event and the conversation key it routes to."""

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from dmpilot.models.base import utcnow


class EventKind(str, enum.Enum):
    DM = "dm"
    POSTBACK = "postback"
    COMMENT = "comment"
    MENTION = "mention"


@dataclass(frozen=True)
class InboundEvent:
    """One provider event after validation, ready for the state machine."""

    provider_event_id: str
    account_id: int
    external_user_id: str
    kind: EventKind
    text: str = ""
    postback_payload: Optional[str] = None
    comment_id: Optional[str] = None
    username: Optional[str] = None
    occurred_at: Optional[datetime] = None
    received_at: datetime = field(default_factory=utcnow)

    @property
    def conversation_key(self) -> tuple[int, str]:
        return (self.account_id, self.external_user_id)

    @property
    def content(self) -> str:
        """Text recorded in the conversation history for this event."""
        if self.kind == EventKind.COMMENT:
            return f"[Comment] {self.text}"
        if self.kind == EventKind.MENTION:
            return f"[Mention] {self.text}"
        if self.kind == EventKind.POSTBACK and not self.text:
            return f"[Postback] {self.postback_payload or ''}".rstrip()
        return self.text

    def sort_key(self) -> tuple:
        """Order used within one delivery: provider time, then receipt, then id."""
        occurred = self.occurred_at or self.received_at
        return (occurred, self.received_at, self.provider_event_id)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form stored with the seen-set row."""
        data = asdict(self)
        data["kind"] = self.kind.value
        data["occurred_at"] = self.occurred_at.isoformat() if self.occurred_at else None
        data["received_at"] = self.received_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InboundEvent":
        values = dict(data)
        values["kind"] = EventKind(values["kind"])
        if values.get("occurred_at"):
            values["occurred_at"] = datetime.fromisoformat(values["occurred_at"])
        values["received_at"] = datetime.fromisoformat(values["received_at"])
        return cls(**values)
