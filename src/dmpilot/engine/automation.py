"""Per-account automation settings consumed by the transition engine."""

from dataclasses import dataclass, fields
from typing import Any, Optional

from dmpilot.models.account import DEFAULT_STOP_KEYWORDS

DEFAULT_GREETING = "Hey! Thanks for reaching out."
DEFAULT_EMAIL_PROMPT = "I'd love to send you more info! What's your email address?"
DEFAULT_EMAIL_REPROMPT = "Hmm, that doesn't look like a valid email. Could you try again?"
DEFAULT_EMAIL_ACK = "Thanks! I've got your email."
DEFAULT_PHONE_PROMPT = "What's the best phone number to reach you on?"
DEFAULT_PHONE_REPROMPT = "I couldn't recognize that as a phone number. Could you try again?"
DEFAULT_THANK_YOU = "Got it, thanks! Ask me anything else you'd like to know."
DEFAULT_SKIP_MESSAGE = "No worries, we can skip that. What else can I help you with?"
DEFAULT_OPT_OUT = "No problem! You won't receive any more automated messages from us."
DEFAULT_FALLBACK = "Thanks for your message! I'll get back to you soon."
DEFAULT_SYSTEM_PROMPT = """You are a friendly Instagram DM assistant.
Keep responses brief, helpful and conversational, under 200 characters.
Be warm and authentic, not robotic."""

STOP_POSTBACKS = ("stop", "talk_to_human")


@dataclass(frozen=True)
class AutomationConfig:
    """What the flow collects and what it says at each step."""

    collect_email: bool = True
    collect_phone: bool = True
    max_reprompts: int = 3
    greeting_message: str = DEFAULT_GREETING
    email_prompt: str = DEFAULT_EMAIL_PROMPT
    email_reprompt: str = DEFAULT_EMAIL_REPROMPT
    email_ack: str = DEFAULT_EMAIL_ACK
    phone_prompt: str = DEFAULT_PHONE_PROMPT
    phone_reprompt: str = DEFAULT_PHONE_REPROMPT
    thank_you_message: str = DEFAULT_THANK_YOU
    skip_message: str = DEFAULT_SKIP_MESSAGE
    opt_out_message: str = DEFAULT_OPT_OUT
    fallback_message: str = DEFAULT_FALLBACK
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    stop_keywords: tuple[str, ...] = tuple(DEFAULT_STOP_KEYWORDS)
    trigger_keywords: tuple[str, ...] = ()

    @classmethod
    def from_account(cls, account: Any) -> "AutomationConfig":
        """Build the config from an account row; empty columns keep the defaults."""
        overrides: dict[str, Any] = {}
        for config_field in fields(cls):
            value: Optional[Any] = getattr(account, config_field.name, None)
            if value is None or value == "":
                continue
            if config_field.name in ("stop_keywords", "trigger_keywords"):
                value = tuple(value)
            overrides[config_field.name] = value
        return cls(**overrides)
