"""AI chat responder for conversations in the ai_chat state."""

import logging
from typing import Optional, Sequence

from dmpilot.engine.actions import AIReply
from dmpilot.engine.automation import DEFAULT_SYSTEM_PROMPT
from dmpilot.engine.errors import PermanentDependencyFailure, TransientDependencyFailure
from dmpilot.services.ai.claude_client import ClaudeClient, ClaudeClientError

logger = logging.getLogger(__name__)

HANDOFF_MARKER = "[HANDOFF]"

HANDOFF_INSTRUCTIONS = f"""

If the person asks to speak with a human, is upset, or needs something you
cannot help with, reply with a short message saying someone from the team
will follow up, and end your reply with {HANDOFF_MARKER}."""


def parse_reply(raw: str) -> AIReply:
    """Strip the handoff marker from a model reply and flag the handoff."""
    text = raw.strip()
    handoff = HANDOFF_MARKER in text
    if handoff:
        text = text.replace(HANDOFF_MARKER, "").strip()
    return AIReply(text=text, handoff=handoff)


class ConversationResponder:
    """Generates AI replies from the stored conversation history using Claude."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        self._claude = claude_client

    @property
    def claude(self) -> ClaudeClient:
        # Created lazily so a missing API key only matters once a chat reaches ai_chat
        if self._claude is None:
            self._claude = ClaudeClient()
        return self._claude

    def reply(
        self,
        history: Sequence[tuple[str, str]],
        system_instruction: Optional[str] = None,
    ) -> AIReply:
        """Generate the next assistant turn.

        Args:
            history: Ordered (role, content) pairs, role being 'user' or 'assistant'
            system_instruction: Account system prompt; the default prompt when empty

        Returns:
            AIReply with the text to send and whether to hand off to a human

        Raises:
            TransientDependencyFailure: the backend timed out or was unavailable
            PermanentDependencyFailure: the request was rejected
        """
        messages = build_messages(history)
        if not messages:
            raise PermanentDependencyFailure("No user turn to reply to")

        system_prompt = (system_instruction or DEFAULT_SYSTEM_PROMPT) + HANDOFF_INSTRUCTIONS
        try:
            raw = self.claude.generate_with_context(
                messages=messages,
                system_prompt=system_prompt,
                temperature=0.8,
            )
        except ClaudeClientError as e:
            logger.warning(f"AI responder failed: {e}")
            if e.retryable:
                raise TransientDependencyFailure(str(e)) from e
            raise PermanentDependencyFailure(str(e)) from e

        reply = parse_reply(raw)
        if not reply.text and not reply.handoff:
            raise TransientDependencyFailure("AI responder returned an empty reply")
        return reply


def build_messages(history: Sequence[tuple[str, str]]) -> list[dict[str, str]]:
    """Turn the history into alternating API messages starting with a user turn."""
    messages: list[dict[str, str]] = []
    for role, content in history:
        if role not in ("user", "assistant") or not content:
            continue
        if not messages and role != "user":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n" + content
        else:
            messages.append({"role": role, "content": content})
    return messages
