"""Instagram messaging service: DMs and private replies to comments."""

import logging
from typing import Any

from dmpilot.engine.errors import (
    AuthExpired,
    DependencyFailure,
    FailureKind,
    PermanentDependencyFailure,
    TransientDependencyFailure,
)
from dmpilot.engine.validators import truncate_message
from dmpilot.services.instagram.client import (
    AuthenticationError,
    InstagramClient,
    InstagramClientError,
    RateLimitError,
    ServerError,
)

logger = logging.getLogger(__name__)


def classify_failure(exc: Exception) -> str:
    """Map a send error to its failure class."""
    if isinstance(exc, DependencyFailure):
        return exc.kind
    if isinstance(exc, RateLimitError):
        return FailureKind.RATE_LIMITED
    if isinstance(exc, AuthenticationError):
        return FailureKind.AUTH_EXPIRED
    if isinstance(exc, ServerError):
        return FailureKind.TRANSIENT
    if isinstance(exc, InstagramClientError):
        return FailureKind.INVALID_RECIPIENT
    return FailureKind.TRANSIENT


def to_dependency_failure(exc: Exception) -> DependencyFailure:
    """Wrap a send error in the engine's error taxonomy."""
    kind = classify_failure(exc)
    if kind == FailureKind.AUTH_EXPIRED:
        return AuthExpired(str(exc))
    if kind == FailureKind.INVALID_RECIPIENT:
        return PermanentDependencyFailure(str(exc))
    return TransientDependencyFailure(str(exc), kind=kind)


class InstagramMessenger:
    """Wraps the Graph API messaging endpoint for one account."""

    def __init__(self, client: InstagramClient):
        self.client = client

    def _post_message(self, recipient: dict[str, str], message: str) -> dict[str, Any]:
        url = f"{self.client.graph_url}/me/messages"
        json_body = {
            "recipient": recipient,
            "message": {"text": truncate_message(message)},
        }
        try:
            return self.client._make_request("POST", url, json=json_body)
        except InstagramClientError as e:
            raise to_dependency_failure(e) from e

    def send_message(self, recipient_ig_user_id: str, message: str) -> dict[str, Any]:
        """Send a DM to an Instagram user.

        Args:
            recipient_ig_user_id: The Instagram-scoped user ID of the recipient
            message: Text to send, truncated to the DM length limit

        Returns:
            API response dict

        Raises:
            DependencyFailure: classified as transient, auth_expired or invalid_recipient
        """
        response = self._post_message({"id": recipient_ig_user_id}, message)
        logger.info(f"Sent DM to user {recipient_ig_user_id}")
        return response

    def send_private_reply(self, comment_id: str, message: str) -> dict[str, Any]:
        """Send a private reply (DM) to the author of a comment.

        This bypasses the 24-hour messaging window, but only one private
        reply is accepted per comment.
        """
        response = self._post_message({"comment_id": comment_id}, message)
        logger.info(f"Sent private reply to comment {comment_id}")
        return response

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.client.close()
