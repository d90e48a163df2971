"""Conversation state machine.

``transition`` is a pure function of the conversation snapshot, the inbound
event and the account's automation config. Given the same inputs it always
returns the same next state and action list, which is what lets the pipeline
commit the decision first and deliver afterwards.

States::

    greeting -> collecting_email -> collecting_phone -> ai_chat -> completed

Capture states may be skipped when the account does not collect that field,
and any state can jump to ``completed`` when the user opts out. Accounts with
trigger keywords stay in ``greeting`` until a message contains one.
"""

import logging
from typing import Optional

from dmpilot.engine.actions import (
    Action,
    AIReply,
    CallAIResponder,
    CollectedData,
    ConversationSnapshot,
    PersistLead,
    SendMessage,
    Transition,
)
from dmpilot.engine.automation import STOP_POSTBACKS, AutomationConfig
from dmpilot.engine.events import EventKind, InboundEvent
from dmpilot.engine.validators import extract_email, extract_phone, match_keyword
from dmpilot.models.conversation import ConversationState

logger = logging.getLogger(__name__)

GREETING = ConversationState.GREETING
COLLECTING_EMAIL = ConversationState.COLLECTING_EMAIL
COLLECTING_PHONE = ConversationState.COLLECTING_PHONE
AI_CHAT = ConversationState.AI_CHAT
COMPLETED = ConversationState.COMPLETED

ALLOWED_TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    GREETING: frozenset({GREETING, COLLECTING_EMAIL, COLLECTING_PHONE, AI_CHAT, COMPLETED}),
    COLLECTING_EMAIL: frozenset({COLLECTING_EMAIL, COLLECTING_PHONE, AI_CHAT, COMPLETED}),
    COLLECTING_PHONE: frozenset({COLLECTING_PHONE, AI_CHAT, COMPLETED}),
    AI_CHAT: frozenset({AI_CHAT, COMPLETED}),
    COMPLETED: frozenset({COMPLETED}),
}

CAPTURE_FIELDS = {
    COLLECTING_EMAIL: "email",
    COLLECTING_PHONE: "phone",
}


def is_allowed(current: ConversationState, next_state: ConversationState) -> bool:
    """Check an edge against the enumerated transitions."""
    return next_state in ALLOWED_TRANSITIONS[current]


def transition(
    snapshot: ConversationSnapshot,
    event: InboundEvent,
    config: AutomationConfig,
) -> Transition:
    """Apply one inbound event to a conversation."""
    state = snapshot.state

    if state == COMPLETED:
        return _stay(snapshot)

    # A valid capture beats an opt-out keyword in the same message
    if state in CAPTURE_FIELDS:
        captured = _capture(state, event)
        if captured is not None:
            result = _on_captured(snapshot, state, captured, config)
            return _route_replies(result, event)

    if _wants_out(event, config):
        actions: tuple[Action, ...] = ()
        collected = snapshot.collected
        if state == AI_CHAT:
            actions, collected = _volunteered(snapshot, event, config)
        result = Transition(
            next_state=COMPLETED,
            actions=actions + (SendMessage(config.opt_out_message),),
            collected=collected,
        )
        return _route_replies(result, event)

    if state == GREETING and not _triggers_flow(event, config):
        logger.info(f"No trigger keyword in {event.kind.value} {event.provider_event_id}, flow not started")
        return _stay(snapshot)

    if state == GREETING:
        result = _on_greeting(snapshot, config)
    elif state in CAPTURE_FIELDS:
        result = _on_invalid_capture(snapshot, state, config)
    else:
        result = _on_ai_chat(snapshot, event, config)
    return _route_replies(result, event)


def after_ai_reply(
    snapshot: ConversationSnapshot,
    reply: AIReply,
    event: Optional[InboundEvent] = None,
) -> Transition:
    """Turn an AI reply into the follow-up transition from ``ai_chat``."""
    if snapshot.state != AI_CHAT:
        raise ValueError(f"AI replies only apply in ai_chat, not {snapshot.state.value}")

    next_state = COMPLETED if reply.handoff else AI_CHAT
    actions: tuple[Action, ...] = ()
    if reply.text:
        actions = (SendMessage(reply.text),)
    result = Transition(next_state=next_state, actions=actions, collected=snapshot.collected)
    if event is not None:
        return _route_replies(result, event)
    return result


def _stay(snapshot: ConversationSnapshot) -> Transition:
    return Transition(
        next_state=snapshot.state,
        collected=snapshot.collected,
        reprompt_count=snapshot.reprompt_count,
    )


def _event_text(event: InboundEvent) -> str:
    return event.text or event.postback_payload or ""


def _capture(state: ConversationState, event: InboundEvent) -> Optional[str]:
    text = _event_text(event)
    if state == COLLECTING_EMAIL:
        return extract_email(text)
    return extract_phone(text)


def _wants_out(event: InboundEvent, config: AutomationConfig) -> bool:
    if event.kind == EventKind.POSTBACK and event.postback_payload:
        action = event.postback_payload.split(":", 1)[0].strip().lower()
        if action in STOP_POSTBACKS:
            return True
    return match_keyword(event.text, config.stop_keywords) is not None


def _triggers_flow(event: InboundEvent, config: AutomationConfig) -> bool:
    """Accounts with trigger keywords only start the flow on a match."""
    if not config.trigger_keywords:
        return True
    return match_keyword(_event_text(event), config.trigger_keywords) is not None


def _after(state: ConversationState, config: AutomationConfig) -> ConversationState:
    """Next step of the scripted flow after ``state``, skipping disabled captures."""
    if state == GREETING and config.collect_email:
        return COLLECTING_EMAIL
    if state in (GREETING, COLLECTING_EMAIL) and config.collect_phone:
        return COLLECTING_PHONE
    return AI_CHAT


def _prompt_for(state: ConversationState, config: AutomationConfig) -> Optional[str]:
    if state == COLLECTING_EMAIL:
        return config.email_prompt
    if state == COLLECTING_PHONE:
        return config.phone_prompt
    return None


def _on_greeting(snapshot: ConversationSnapshot, config: AutomationConfig) -> Transition:
    next_state = _after(GREETING, config)
    actions: list[Action] = [SendMessage(config.greeting_message)]
    prompt = _prompt_for(next_state, config)
    if prompt:
        actions.append(SendMessage(prompt))
    return Transition(next_state=next_state, actions=tuple(actions), collected=snapshot.collected)


def _on_captured(
    snapshot: ConversationSnapshot,
    state: ConversationState,
    value: str,
    config: AutomationConfig,
) -> Transition:
    field_name = CAPTURE_FIELDS[state]
    actions: list[Action] = []

    existing = getattr(snapshot.collected, field_name)
    if existing is None:
        actions.append(PersistLead(field_name, value))
    elif existing != value:
        logger.info(f"Ignoring new {field_name} value; first captured value is kept")

    next_state = _after(state, config)
    prompt = _prompt_for(next_state, config)
    if prompt:
        actions.append(SendMessage(config.email_ack))
        actions.append(SendMessage(prompt))
    else:
        actions.append(SendMessage(config.thank_you_message))

    return Transition(
        next_state=next_state,
        actions=tuple(actions),
        collected=snapshot.collected.with_field(field_name, value),
    )


def _on_invalid_capture(
    snapshot: ConversationSnapshot,
    state: ConversationState,
    config: AutomationConfig,
) -> Transition:
    if snapshot.reprompt_count < config.max_reprompts:
        reprompt = config.email_reprompt if state == COLLECTING_EMAIL else config.phone_reprompt
        return Transition(
            next_state=state,
            actions=(SendMessage(reprompt),),
            collected=snapshot.collected,
            reprompt_count=snapshot.reprompt_count + 1,
        )

    # Out of re-prompts: move on rather than stall the user
    next_state = _after(state, config)
    prompt = _prompt_for(next_state, config) or config.skip_message
    return Transition(
        next_state=next_state,
        actions=(SendMessage(prompt),),
        collected=snapshot.collected,
    )


def _on_ai_chat(
    snapshot: ConversationSnapshot,
    event: InboundEvent,
    config: AutomationConfig,
) -> Transition:
    actions, collected = _volunteered(snapshot, event, config)
    history = snapshot.history + (("user", event.content),)
    actions = actions + (CallAIResponder(history=history, system_instruction=config.system_prompt),)
    return Transition(next_state=AI_CHAT, actions=actions, collected=collected)


def _volunteered(
    snapshot: ConversationSnapshot,
    event: InboundEvent,
    config: AutomationConfig,
) -> tuple[tuple[Action, ...], CollectedData]:
    """Contact details offered outside a capture state, for fields still empty."""
    actions: list[Action] = []
    collected = snapshot.collected
    text = _event_text(event)
    if config.collect_email and collected.email is None:
        email = extract_email(text)
        if email:
            actions.append(PersistLead("email", email))
            collected = collected.with_field("email", email)
    if config.collect_phone and collected.phone is None:
        phone = extract_phone(text)
        if phone:
            actions.append(PersistLead("phone", phone))
            collected = collected.with_field("phone", phone)
    return tuple(actions), collected


def _route_replies(result: Transition, event: InboundEvent) -> Transition:
    """Replies to a comment go out as one private reply to that comment.

    Instagram accepts a single private reply per comment, so the scripted
    messages of the transition are joined into one.
    """
    if not event.comment_id or event.kind not in (EventKind.COMMENT, EventKind.MENTION):
        return result

    sends = result.sends
    others: list[Action] = []
    for action in result.actions:
        if isinstance(action, CallAIResponder):
            others.append(
                CallAIResponder(
                    history=action.history,
                    system_instruction=action.system_instruction,
                    comment_id=event.comment_id,
                )
            )
        elif not isinstance(action, SendMessage):
            others.append(action)

    actions = tuple(others)
    if sends:
        joined = SendMessage("\n\n".join(send.text for send in sends), comment_id=event.comment_id)
        actions = actions + (joined,)
    return Transition(
        next_state=result.next_state,
        actions=actions,
        collected=result.collected,
        reprompt_count=result.reprompt_count,
    )
