"""Claude API client wrapper."""

from typing import Optional

import anthropic

from dmpilot.config import Settings, get_settings


class ClaudeClientError(Exception):
    """Error from Claude API."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ClaudeClient:
    """Wrapper for Anthropic Claude API."""

    MAX_TOKENS = 300

    def __init__(
        self,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.api_key = api_key or self.settings.anthropic_api_key

        if not self.api_key:
            raise ClaudeClientError(
                "Anthropic API key not configured. "
                "Set ANTHROPIC_API_KEY environment variable."
            )

        # Retries happen in the dispatcher, so the SDK's own are disabled
        self.client = anthropic.Anthropic(
            api_key=self.api_key,
            timeout=self.settings.ai_timeout_seconds,
            max_retries=0,
        )

    def generate_with_context(
        self,
        messages: list[dict[str, str]],
        system_prompt: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = 0.7,
        model: Optional[str] = None,
    ) -> str:
        """Generate text with multi-turn context.

        Args:
            messages: List of message dicts with 'role' and 'content'
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature
            model: Model to use (defaults to the configured ``ai_model``)

        Returns:
            Generated text response
        """
        model = model or self.settings.ai_model

        try:
            message = self.client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt or "",
                messages=messages,
            )
        except (
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        ) as e:
            raise ClaudeClientError(f"Temporary API error: {e}", retryable=True) from e
        except anthropic.APIError as e:
            raise ClaudeClientError(f"API error: {e}") from e

        if message.content and len(message.content) > 0:
            return message.content[0].text
        return ""
