"""Instagram account model."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, Boolean, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dmpilot.models.base import Base, TimestampMixin, ensure_utc, utcnow

if TYPE_CHECKING:
    from dmpilot.models.conversation import Conversation


class ConnectionStatus(str, enum.Enum):
    CONNECTED = "connected"
    EXPIRED = "expired"
    ERROR = "error"


DEFAULT_STOP_KEYWORDS = ["stop", "unsubscribe", "talk to a human"]


class InstagramAccount(Base, TimestampMixin):
    """Connected Instagram Business identity and its automation settings."""

    __tablename__ = "instagram_accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    instagram_account_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    page_id: Mapped[str] = mapped_column(String(50), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Credential, owned and rotated outside the engine
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Status
    connection_status: Mapped[ConnectionStatus] = mapped_column(
        Enum(ConnectionStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        default=ConnectionStatus.CONNECTED,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Automation settings
    collect_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    collect_phone: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_reprompts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    greeting_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email_reprompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone_reprompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thank_you_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    opt_out_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fallback_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stop_keywords: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # Empty or unset: every new conversation starts the flow
    trigger_keywords: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Relationships
    conversations: Mapped[list["Conversation"]] = relationship(
        "Conversation",
        back_populates="account",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<InstagramAccount(id={self.id}, ig='{self.instagram_account_id}', "
            f"status='{self.connection_status.value}')>"
        )

    @property
    def is_token_expired(self) -> bool:
        """Check if the access token is past its known expiry."""
        if self.token_expires_at is None:
            return False
        return utcnow() >= ensure_utc(self.token_expires_at)

    @property
    def can_send(self) -> bool:
        """Outbound sends are only attempted for connected accounts."""
        return self.is_active and self.connection_status == ConnectionStatus.CONNECTED
