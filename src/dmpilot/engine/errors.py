"""Error taxonomy for the event pipeline and the action dispatcher."""

from typing import Optional


class EngineError(Exception):
    """Base exception for engine errors."""

    pass


class MalformedEvent(EngineError):
    """Inbound payload is missing a required field. Dropped and acked."""

    def __init__(self, message: str, raw: Optional[dict] = None):
        super().__init__(message)
        self.raw = raw


class UnknownAccount(EngineError):
    """Routing id does not map to a configured account. Dropped and acked."""

    def __init__(self, instagram_account_id: str):
        super().__init__(f"No active account for Instagram id {instagram_account_id}")
        self.instagram_account_id = instagram_account_id


class DuplicateEvent(EngineError):
    """Event id was already accepted. Not an error; never surfaced to the provider."""

    pass


class FailureKind:
    RATE_LIMITED = "rate_limited"
    INVALID_RECIPIENT = "invalid_recipient"
    AUTH_EXPIRED = "auth_expired"
    TRANSIENT = "transient"


class DependencyFailure(EngineError):
    """Failure of an external dependency, tagged with its failure class."""

    kind = FailureKind.TRANSIENT

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class TransientDependencyFailure(DependencyFailure):
    """Timeout, 5xx or rate limit. Retried with backoff."""

    pass


class AuthExpired(DependencyFailure):
    """Credential rejected (401/403). Marks the account expired."""

    kind = FailureKind.AUTH_EXPIRED


class PermanentDependencyFailure(DependencyFailure):
    """Failure that retrying cannot fix, e.g. an invalid recipient."""

    kind = FailureKind.INVALID_RECIPIENT
