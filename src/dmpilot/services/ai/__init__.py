"""AI services for conversation replies."""

from dmpilot.services.ai.claude_client import ClaudeClient, ClaudeClientError
from dmpilot.services.ai.responder import ConversationResponder

__all__ = [
    "ClaudeClient",
    "ClaudeClientError",
    "ConversationResponder",
]
