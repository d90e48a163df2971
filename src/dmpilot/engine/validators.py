"""Text helpers for lead capture and keyword matching."""

import re
from typing import Iterable, Optional

EMAIL_PATTERN = re.compile(
    r"[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*\.[A-Za-z]{2,}"
)
PHONE_CANDIDATE = re.compile(r"\+?\d[\d\s\-.()]{5,20}\d")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{6,14}$")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

MAX_INPUT_LENGTH = 5000
MAX_MESSAGE_LENGTH = 1000


def extract_email(text: str) -> Optional[str]:
    """Return the first syntactically valid email address in the text, lowercased."""
    match = EMAIL_PATTERN.search(text or "")
    if not match:
        return None
    return match.group(0).rstrip(".").lower()


def extract_phone(text: str) -> Optional[str]:
    """Return the first phone number in the text with formatting stripped."""
    for match in PHONE_CANDIDATE.finditer(text or ""):
        cleaned = re.sub(r"[\s\-.()]", "", match.group(0))
        if PHONE_PATTERN.match(cleaned):
            return cleaned
    return None


def sanitize_input(text: Optional[str]) -> str:
    """Strip control characters and cap the length of user-supplied text."""
    if not text:
        return ""
    return CONTROL_CHARS.sub("", text).strip()[:MAX_INPUT_LENGTH]


def truncate_message(message: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate an outbound message to the Instagram DM limit."""
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


def match_keyword(text: str, keywords: Iterable[str]) -> Optional[str]:
    """Return the first keyword present in the text as whole words, case-insensitive."""
    lowered = (text or "").lower()
    for keyword in keywords:
        keyword = keyword.strip().lower()
        if not keyword:
            continue
        if re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", lowered):
            return keyword
    return None
