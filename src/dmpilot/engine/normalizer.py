"""Webhook payload normalization.

Turns a Meta webhook delivery for the ``instagram`` object into a list of
``InboundEvent`` values, rejecting events that cannot be routed or are
missing required fields. Nothing is written here; the only lookup is the
account resolution callback.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from dmpilot.engine.errors import EngineError, MalformedEvent, UnknownAccount
from dmpilot.engine.events import EventKind, InboundEvent
from dmpilot.engine.validators import sanitize_input
from dmpilot.models.base import utcnow

logger = logging.getLogger(__name__)

# Returns the internal account id for an Instagram account id, or None
AccountResolver = Callable[[str], Optional[int]]

# Messaging entries that carry no user input
IGNORED_MESSAGING_KEYS = ("read", "reaction", "message_edit", "standby", "delivery")


@dataclass
class EventRejection:
    """A dropped event and the reason it was dropped."""

    reason: str
    error: EngineError
    raw: Optional[dict] = None


@dataclass
class NormalizationResult:
    events: list[InboundEvent] = field(default_factory=list)
    rejections: list[EventRejection] = field(default_factory=list)
    ignored: int = 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp (epoch seconds or milliseconds, or ISO 8601)."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            # Graph API sends offsets without a colon, e.g. +0000
            try:
                parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


class EventNormalizer:
    """Converts webhook envelopes into inbound events."""

    def __init__(self, resolve_account: AccountResolver):
        self.resolve_account = resolve_account

    def normalize(self, payload: Any, received_at: Optional[datetime] = None) -> NormalizationResult:
        """Normalize one webhook delivery.

        Args:
            payload: Parsed JSON body of the webhook request
            received_at: Receipt time; defaults to now

        Returns:
            NormalizationResult with events sorted by provider time, receipt
            time, then provider event id

        Raises:
            MalformedEvent: if the payload is not an Instagram webhook envelope
        """
        if not isinstance(payload, dict):
            raise MalformedEvent("Webhook payload is not an object")
        if payload.get("object") != "instagram":
            raise MalformedEvent(f"Unsupported webhook object: {payload.get('object')!r}")
        entries = payload.get("entry")
        if not isinstance(entries, list):
            raise MalformedEvent("Webhook payload has no entry list", raw=payload)

        received_at = received_at or utcnow()
        result = NormalizationResult()

        for entry in entries:
            if not isinstance(entry, dict):
                self._reject(result, MalformedEvent("Entry is not an object"), None)
                continue
            for item in entry.get("messaging") or []:
                self._collect(result, self._from_messaging, entry, item, received_at)
            for change in entry.get("changes") or []:
                self._collect(result, self._from_change, entry, change, received_at)

        result.events.sort(key=lambda event: event.sort_key())
        return result

    def _collect(
        self,
        result: NormalizationResult,
        parse: Callable[[dict, dict, datetime], Optional[InboundEvent]],
        entry: dict,
        item: Any,
        received_at: datetime,
    ) -> None:
        if not isinstance(item, dict):
            self._reject(result, MalformedEvent("Event is not an object"), None)
            return
        try:
            event = parse(entry, item, received_at)
        except (MalformedEvent, UnknownAccount) as e:
            self._reject(result, e, item)
            return
        if event is None:
            result.ignored += 1
        else:
            result.events.append(event)

    @staticmethod
    def _reject(result: NormalizationResult, error: EngineError, raw: Optional[dict]) -> None:
        reason = "unknown_account" if isinstance(error, UnknownAccount) else "malformed"
        logger.warning(f"Dropping webhook event ({reason}): {error}")
        result.rejections.append(EventRejection(reason=reason, error=error, raw=raw))

    def _account_id(self, instagram_account_id: Optional[str]) -> int:
        if not instagram_account_id:
            raise MalformedEvent("Event has no account routing id")
        account_id = self.resolve_account(str(instagram_account_id))
        if account_id is None:
            raise UnknownAccount(str(instagram_account_id))
        return account_id

    def _from_messaging(self, entry: dict, item: dict, received_at: datetime) -> Optional[InboundEvent]:
        message = item.get("message")
        postback = item.get("postback")

        if isinstance(message, dict) and (message.get("is_echo") or message.get("is_deleted")):
            return None
        if message is None and postback is None:
            if not any(key in item for key in IGNORED_MESSAGING_KEYS):
                logger.info(f"Ignoring messaging event with keys {sorted(item)}")
            return None

        sender_id = (item.get("sender") or {}).get("id")
        if not sender_id:
            raise MalformedEvent("Messaging event has no sender id", raw=item)
        recipient_id = (item.get("recipient") or {}).get("id") or entry.get("id")
        account_id = self._account_id(recipient_id)

        timestamp = item.get("timestamp")
        occurred_at = parse_timestamp(timestamp)

        if isinstance(postback, dict):
            payload = sanitize_input(postback.get("payload"))
            if not payload:
                raise MalformedEvent("Postback has no payload", raw=item)
            event_id = postback.get("mid") or f"postback:{sender_id}:{timestamp}:{payload}"
            return InboundEvent(
                provider_event_id=event_id,
                account_id=account_id,
                external_user_id=str(sender_id),
                kind=EventKind.POSTBACK,
                text=sanitize_input(postback.get("title")),
                postback_payload=payload,
                occurred_at=occurred_at,
                received_at=received_at,
            )

        if not isinstance(message, dict):
            raise MalformedEvent("Message is not an object", raw=item)
        mid = message.get("mid")
        if not mid:
            raise MalformedEvent("Message has no mid", raw=item)

        text = sanitize_input(message.get("text"))
        quick_reply = message.get("quick_reply")
        if isinstance(quick_reply, dict) and quick_reply.get("payload"):
            return InboundEvent(
                provider_event_id=mid,
                account_id=account_id,
                external_user_id=str(sender_id),
                kind=EventKind.POSTBACK,
                text=text,
                postback_payload=sanitize_input(quick_reply["payload"]),
                occurred_at=occurred_at,
                received_at=received_at,
            )

        return InboundEvent(
            provider_event_id=mid,
            account_id=account_id,
            external_user_id=str(sender_id),
            kind=EventKind.DM,
            text=text,
            occurred_at=occurred_at,
            received_at=received_at,
        )

    def _from_change(self, entry: dict, change: dict, received_at: datetime) -> Optional[InboundEvent]:
        field_name = change.get("field")
        if field_name not in ("comments", "mentions"):
            return None
        value = change.get("value")
        if not isinstance(value, dict):
            raise MalformedEvent(f"{field_name} change has no value", raw=change)

        author = value.get("from") or {}
        author_id = author.get("id")
        if not author_id:
            raise MalformedEvent(f"{field_name} change has no author id", raw=change)
        # Comments written by the account itself (our own replies)
        if str(author_id) == str(entry.get("id")):
            return None

        account_id = self._account_id(entry.get("id"))
        occurred_at = parse_timestamp(value.get("timestamp") or entry.get("time"))

        if field_name == "comments":
            comment_id = value.get("id")
            if not comment_id:
                raise MalformedEvent("Comment has no id", raw=change)
            return InboundEvent(
                provider_event_id=str(comment_id),
                account_id=account_id,
                external_user_id=str(author_id),
                kind=EventKind.COMMENT,
                text=sanitize_input(value.get("text")),
                comment_id=str(comment_id),
                username=author.get("username"),
                occurred_at=occurred_at,
                received_at=received_at,
            )

        comment_id = value.get("comment_id")
        source_id = comment_id or value.get("media_id")
        if not source_id:
            raise MalformedEvent("Mention has neither comment_id nor media_id", raw=change)
        return InboundEvent(
            provider_event_id=f"mention:{source_id}",
            account_id=account_id,
            external_user_id=str(author_id),
            kind=EventKind.MENTION,
            text=sanitize_input(value.get("text")),
            comment_id=str(comment_id) if comment_id else None,
            username=author.get("username"),
            occurred_at=occurred_at,
            received_at=received_at,
        )
