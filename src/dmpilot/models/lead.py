"""Lead captured from an automated conversation."""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dmpilot.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from dmpilot.models.account import InstagramAccount


class Lead(Base, TimestampMixin):
    """Contact details collected from one Instagram user."""

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("account_id", "external_user_id", name="uq_leads_account_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("instagram_accounts.id"), nullable=False)
    external_user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    source: Mapped[str] = mapped_column(String(20), default="dm", nullable=False)

    account: Mapped["InstagramAccount"] = relationship("InstagramAccount")

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, user='{self.external_user_id}', email='{self.email}')>"
