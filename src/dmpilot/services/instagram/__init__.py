"""Instagram services."""

from dmpilot.services.instagram.client import InstagramClient
from dmpilot.services.instagram.messenger import InstagramMessenger, classify_failure

__all__ = [
    "InstagramClient",
    "InstagramMessenger",
    "classify_failure",
]
